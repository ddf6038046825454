"""
ULID generation and clock utilities (stdlib-only).

Shared primitives for time-sortable report IDs and for reading time. Every
stateful component (cache entries, circuit breakers, metrics) reads time
through a ``Clock`` so that tests can substitute a controllable one.

Features:
    - **generate_ulid():** Time-sortable unique IDs (26-char, base32)
    - **utc_now():** Timezone-aware UTC datetime
    - **monotonic_clock():** Default ``Clock`` (seconds, monotonic)
    - **wall_clock():** Epoch seconds, used for diagnostic timestamps

Tags:
    timestamps, ulid, utc, clock, stdlib-only
"""

import random
import time
from collections.abc import Callable
from datetime import UTC, datetime

# A clock returns the current time in seconds as a float.
Clock = Callable[[], float]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def monotonic_clock() -> float:
    """Monotonic seconds; immune to wall-clock adjustments."""
    return time.monotonic()


def wall_clock() -> float:
    """Seconds since the epoch."""
    return time.time()


def to_iso8601(ts: float | None) -> str | None:
    """Convert epoch seconds to an ISO 8601 UTC string."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    # Time component: milliseconds since epoch (48 bits -> 10 chars)
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)

    # Random component (80 bits -> 16 chars)
    random_part = "".join(random.choices(_ENCODING, k=16))

    return timestamp_chars + random_part


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


__all__ = [
    "Clock",
    "generate_ulid",
    "monotonic_clock",
    "to_iso8601",
    "utc_now",
    "wall_clock",
]
