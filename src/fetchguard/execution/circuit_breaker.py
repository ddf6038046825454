"""Circuit breaker pattern for fault tolerance.

Prevents cascading failures by failing fast when a fetch path keeps failing.

States:
    CLOSED: Normal operation, requests pass through
    OPEN: Failing fast, requests rejected immediately
    HALF_OPEN: One trial request allowed to test recovery

Transitions:
    CLOSED    -> OPEN       failure_count >= failure_threshold
    OPEN      -> HALF_OPEN  first query after recovery_timeout since last failure
    HALF_OPEN -> CLOSED     success_threshold successes (default 1)
    HALF_OPEN -> OPEN       any failure

Breakers are used from a single asyncio thread. Every method is synchronous
and completes without suspending, so no locking is needed.

Example:
    >>> from fetchguard.execution.circuit_breaker import CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker("listings", failure_threshold=5, recovery_timeout=60.0)
    >>>
    >>> if breaker.allow_request():
    ...     try:
    ...         result = await fetch_listings()
    ...         breaker.record_success()
    ...     except Exception:
    ...         breaker.record_failure()
    ...         raise
    ... else:
    ...     raise CircuitOpenError(key="listings")
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from fetchguard.core.errors import CircuitOpenError
from fetchguard.core.logging import get_logger
from fetchguard.core.settings import CircuitBreakerSettings
from fetchguard.core.timestamps import Clock, monotonic_clock

T = TypeVar("T")

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None
    last_state_change: float | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass
class CircuitBreaker:
    """Circuit breaker for one operation key.

    Attributes:
        name: Identifier for this circuit
        failure_threshold: Number of failures before opening
        recovery_timeout: Seconds to wait before testing recovery
        success_threshold: Successes needed in half-open to close
        half_open_max_calls: Trial calls admitted while half-open
        clock: Time source in seconds
    """

    name: str = "default"
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 1
    half_open_max_calls: int = 1
    clock: Clock = field(default=monotonic_clock, repr=False)

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    @property
    def state(self) -> CircuitState:
        """Get current circuit state (may move OPEN to HALF_OPEN)."""
        self._check_state_transition()
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    @property
    def stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return self._stats

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def _check_state_transition(self) -> None:
        """Check if state should transition based on timeout."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = self.clock() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state."""
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = self.clock()

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._half_open_calls = 0

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "circuit_state_changed",
            circuit=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
            failures=self._failure_count,
        )

    def allow_request(self) -> bool:
        """Check if a request should be allowed.

        Returns:
            True if request can proceed, False if circuit is open
        """
        self._check_state_transition()
        self._stats.total_requests += 1

        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            self._stats.rejected_requests += 1
            return False

        # Half-open: admit a limited number of trial requests
        if self._half_open_calls < self.half_open_max_calls:
            self._half_open_calls += 1
            return True

        self._stats.rejected_requests += 1
        return False

    def record_success(self) -> None:
        """Record a successful request.

        Closed circuits decay one failure per success; half-open circuits
        close once ``success_threshold`` is reached.
        """
        self._stats.successful_requests += 1
        self._stats.last_success_time = self.clock()

        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._transition_to(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = max(0, self._failure_count - 1)

    def record_failure(self, error: BaseException | None = None) -> None:
        """Record a failed request."""
        now = self.clock()
        self._failure_count += 1
        self._stats.failed_requests += 1
        self._stats.last_failure_time = now
        self._last_failure_time = now

        if self._state == CircuitState.CLOSED:
            if self._failure_count >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)

        elif self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Reset circuit to closed state."""
        if self._state != CircuitState.CLOSED:
            self._transition_to(CircuitState.CLOSED)
        self._failure_count = 0
        self._last_failure_time = None

    def force_open(self) -> None:
        """Force circuit to open state (for testing/maintenance)."""
        self._last_failure_time = self.clock()
        self._transition_to(CircuitState.OPEN)

    def snapshot(self) -> dict[str, Any]:
        """Current state as a plain dict for stats and health output."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "last_failure_at": self._last_failure_time,
            "rejected_requests": self._stats.rejected_requests,
            "failure_rate": round(self._stats.failure_rate, 2),
        }

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Execute an async function through the circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open
        """
        if not self.allow_request():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open, rejecting request", key=self.name
            )

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result


class CircuitBreakerRegistry:
    """Registry of named circuit breakers sharing one configuration."""

    def __init__(
        self,
        settings: CircuitBreakerSettings | None = None,
        *,
        clock: Clock = monotonic_clock,
    ):
        self._settings = settings or CircuitBreakerSettings()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    @property
    def settings(self) -> CircuitBreakerSettings:
        return self._settings

    def get(self, name: str) -> CircuitBreaker | None:
        """Get a circuit breaker by name, returns None if not found."""
        return self._breakers.get(name)

    def get_or_create(self, name: str) -> CircuitBreaker:
        """Get or create a circuit breaker by name."""
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name=name,
                failure_threshold=self._settings.failure_threshold,
                recovery_timeout=self._settings.recovery_timeout,
                clock=self._clock,
            )
        return self._breakers[name]

    def allow_request(self, name: str) -> bool:
        """Unknown keys have never failed and are always allowed."""
        breaker = self._breakers.get(name)
        return breaker is None or breaker.allow_request()

    def is_open(self, name: str) -> bool:
        breaker = self._breakers.get(name)
        return breaker is not None and breaker.is_open

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.snapshot() for name, breaker in self._breakers.items()}

    def clear(self) -> None:
        """Remove all circuit breakers."""
        self._breakers.clear()


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
]
