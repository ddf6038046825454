"""
Keyed cache store with TTL, LRU eviction, tags and stale-while-revalidate.

``CacheStore`` is the cache-aside half of the fault-tolerance layer. It holds
any Python value under a string key and never raises from its basic
operations: an internal failure is reported at low severity and degrades to
a miss (``get``) or a no-op (``set``).

Manifesto:
    A cache in front of an unreliable source must be *safe before it is
    fast*. A broken cache may cost a round-trip, never a failed request.

    - **Bounded:** ``max_size`` enforced on insert by evicting one LRU entry
    - **Expiring:** TTL checked on read, expired entries swept periodically
    - **Taggable:** Invalidate groups of entries without knowing their keys
    - **Observable:** hit/miss/eviction counters and access-time samples

Architecture:
    ::

        CacheStore
        ├── _entries   dict[key, CacheEntry]   (insertion-ordered)
        ├── _metrics   CacheMetrics            (hits, misses, evictions, sets)
        ├── _sweeper   asyncio.Task            (periodic expiry pass)
        └── _background set[asyncio.Task]      (stale-while-revalidate refreshes)

        get_or_set(key, fetcher)
            hit ──► return (optionally spawn background refresh)
            miss ─► coordinator.with_retry(fetcher) ─► set ─► return
                     └─ failure ─► fallback? cache briefly : re-raise

Concurrency:
    Every read-check-write on ``_entries`` happens without an ``await`` in
    between, so operations sharing a key on the event loop cannot interleave
    inside one. A background refresh and a foreground ``set`` of the same key
    race; the last write wins.

Examples:
    >>> store = CacheStore(CacheSettings(default_ttl=900, max_size=500), name="listings")
    >>> store.set("listing:p1", {"v": 1}, tags=["listings"])
    >>> store.get("listing:p1")
    {'v': 1}
    >>> store.invalidate_by_tags(["listings"])
    1

    Cache-aside with a fallback:

    >>> listing = await store.get_or_set(
    ...     "listing:p1",
    ...     lambda: client.get_listing("p1"),
    ...     fallback={"v": 0},
    ... )

Guardrails:
    ❌ DON'T: Cache ``None``; it is indistinguishable from a miss
    ✅ DO: Cache an explicit empty value (``[]``, ``{}``) for "no data"

    ❌ DON'T: Mutate a value after caching it; entries hold references
    ✅ DO: Treat cached values as immutable

Tags:
    cache, ttl, lru, tags, stale-while-revalidate, cache-aside
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
import zlib
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from fetchguard.core.errors import (
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    error_message,
    is_network_failure,
)
from fetchguard.core.logging import get_logger
from fetchguard.core.settings import CacheSettings
from fetchguard.core.timestamps import Clock, wall_clock
from fetchguard.execution.retry import RetryPolicy

if TYPE_CHECKING:
    from fetchguard.execution.resilience import ResilienceCoordinator
    from fetchguard.observability.metrics import GuardMetrics

T = TypeVar("T")

logger = get_logger(__name__)

_MISSING: Any = object()

# Retry policy for cache fills: short, and only for network-ish failures.
FILL_RETRY_POLICY = RetryPolicy(
    max_retries=2,
    base_delay=0.5,
    max_delay=30.0,
    backoff_factor=2.0,
    retry_predicate=is_network_failure,
)

_ACCESS_SAMPLES = 100
_TOP_KEYS = 10


@dataclass
class CacheEntry(Generic[T]):
    """One cached value plus its bookkeeping."""

    data: T
    created_at: float
    ttl: float
    hit_count: int = 0
    last_accessed_at: float = 0.0
    tags: frozenset[str] = frozenset()
    size_estimate_bytes: int = 0
    source_label: str = "application"
    compressed: bool = False
    is_text: bool = False

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


@dataclass
class CacheMetrics:
    """Running counters for one store."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    sets: int = 0
    hit_rate: float = 0.0
    avg_access_time_ms: float = 0.0
    _access_times: deque[float] = field(
        default_factory=lambda: deque(maxlen=_ACCESS_SAMPLES), repr=False
    )

    def record_hit(self, access_time_ms: float) -> None:
        self.hits += 1
        self._access_times.append(access_time_ms)
        self.avg_access_time_ms = sum(self._access_times) / len(self._access_times)
        self._update_hit_rate()

    def record_miss(self) -> None:
        self.misses += 1
        self._update_hit_rate()

    def _update_hit_rate(self) -> None:
        total = self.hits + self.misses
        self.hit_rate = self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "sets": self.sets,
            "hit_rate": self.hit_rate,
            "avg_access_time_ms": self.avg_access_time_ms,
        }


def estimate_size(data: Any) -> int:
    """Rough serialized size in bytes; 0 when the value can't be serialized."""
    if isinstance(data, bytes):
        return len(data)
    if isinstance(data, str):
        return len(data.encode("utf-8"))
    try:
        return len(json.dumps(data, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        return 0


class CacheStore:
    """In-process cache with TTL, capacity eviction, tags and refresh.

    Attributes:
        name: Label used in logs, metrics and circuit keys
        settings: CacheSettings in effect
    """

    def __init__(
        self,
        settings: CacheSettings | None = None,
        *,
        name: str = "default",
        coordinator: ResilienceCoordinator | None = None,
        metrics: GuardMetrics | None = None,
        clock: Clock = wall_clock,
    ):
        """Initialize the store.

        Args:
            settings: Capacity, TTL and sweep options
            name: Label for logs and metrics
            coordinator: Used for retrying fills and reporting errors; when
                omitted fills run once and errors are only logged
            metrics: Optional metrics sink
            clock: Time source in seconds
        """
        self.name = name
        self._settings = settings or CacheSettings()
        self._coordinator = coordinator
        self._sink = metrics
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._metrics = CacheMetrics()
        self._sweeper: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()

    @property
    def settings(self) -> CacheSettings:
        return self._settings

    @property
    def metrics(self) -> CacheMetrics:
        return self._metrics

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> list[str]:
        return list(self._entries)

    # ------------------------------------------------------------------ #
    # Basic operations
    # ------------------------------------------------------------------ #

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` on miss or expiry."""
        start = time.perf_counter()
        try:
            entry = self._entries.get(key)
            if entry is None:
                self._miss()
                return default

            now = self._clock()
            if entry.is_expired(now):
                del self._entries[key]
                self._evicted(1)
                self._miss()
                return default

            value = self._decode(entry)
            entry.hit_count += 1
            entry.last_accessed_at = now
            self._metrics.record_hit((time.perf_counter() - start) * 1000)
            if self._sink is not None:
                self._sink.cache_hits.labels(cache=self.name).inc()
            return value
        except Exception as exc:
            self._report_internal(exc, "cache.get", key)
            self._miss()
            return default

    def set(
        self,
        key: str,
        data: Any,
        *,
        ttl: float | None = None,
        tags: Iterable[str] = (),
        source: str | None = None,
    ) -> None:
        """Store ``data`` under ``key``. Never raises."""
        try:
            if key not in self._entries and len(self._entries) >= self._settings.max_size:
                self._evict_lru()

            size = estimate_size(data)
            stored, compressed = self._encode(data, size)
            now = self._clock()

            self._entries[key] = CacheEntry(
                data=stored,
                created_at=now,
                ttl=self._settings.default_ttl if ttl is None else ttl,
                last_accessed_at=now,
                tags=frozenset(tags),
                size_estimate_bytes=size,
                source_label=source or "application",
                compressed=compressed,
                is_text=isinstance(data, str),
            )
            self._metrics.sets += 1
            self._update_size_gauge()
        except Exception as exc:
            self._report_internal(exc, "cache.set", key)

    def delete(self, key: str) -> bool:
        """Remove ``key``; returns whether it existed."""
        existed = self._entries.pop(key, None) is not None
        if existed:
            self._update_size_gauge()
        return existed

    def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """Remove every entry carrying any of ``tags``; returns the count."""
        wanted = frozenset(tags)
        doomed = [key for key, entry in self._entries.items() if entry.tags & wanted]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("cache_invalidated", cache=self.name, tags=sorted(wanted), removed=len(doomed))
            self._update_size_gauge()
        return len(doomed)

    def delete_matching(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern``."""
        doomed = [key for key in self._entries if pattern in key]
        for key in doomed:
            del self._entries[key]
        if doomed:
            self._update_size_gauge()
        return len(doomed)

    def clear(self) -> int:
        """Remove all entries; returns how many there were."""
        removed = len(self._entries)
        self._entries.clear()
        self._update_size_gauge()
        return removed

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Values for the keys that hit; misses are omitted."""
        results = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                results[key] = value
        return results

    def set_many(self, items: Mapping[str, Any], **options: Any) -> None:
        for key, data in items.items():
            self.set(key, data, **options)

    # ------------------------------------------------------------------ #
    # Cache-aside
    # ------------------------------------------------------------------ #

    async def get_or_set(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        *,
        ttl: float | None = None,
        tags: Iterable[str] = (),
        stale_while_revalidate: bool = False,
        fallback: Any = _MISSING,
        source: str | None = None,
    ) -> T:
        """Return the cached value for ``key``, fetching and caching it on a miss.

        Args:
            key: Cache key
            fetcher: Zero-argument async callable producing the value
            ttl: Entry TTL (defaults to ``settings.default_ttl``)
            tags: Tags for later invalidation
            stale_while_revalidate: On a hit, also refresh in the background
            fallback: Value to return (and cache for ``settings.fallback_ttl``)
                if the fetch ultimately fails
            source: Source label recorded on the entry

        Raises:
            Exception: The fetch failure, when no fallback was given
        """
        tags = tuple(tags)
        cached = self.get(key)
        if cached is not None:
            if stale_while_revalidate:
                self._spawn_refresh(key, fetcher, ttl=ttl, tags=tags, source=source)
            return cached

        try:
            if self._coordinator is not None:
                data = await self._coordinator.with_retry(
                    fetcher, FILL_RETRY_POLICY, circuit_key=f"cache:{self.name}"
                )
            else:
                data = await fetcher()
        except Exception as exc:
            if fallback is not _MISSING:
                self._report_fetch(exc, key, ErrorSeverity.MEDIUM, handled=True, has_fallback=True)
                self.set(key, fallback, ttl=self._settings.fallback_ttl, tags=tags, source=source)
                return fallback

            self._report_fetch(exc, key, ErrorSeverity.HIGH, handled=False, has_fallback=False)
            raise

        self.set(key, data, ttl=ttl, tags=tags, source=source)
        return data

    def _spawn_refresh(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        **options: Any,
    ) -> None:
        task = asyncio.get_running_loop().create_task(
            self._refresh(key, fetcher, **options), name=f"fetchguard-refresh:{key}"
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(self, key: str, fetcher: Callable[[], Awaitable[Any]], **options: Any) -> None:
        try:
            fresh = await fetcher()
        except Exception as exc:
            self._report(
                exc,
                {"operation": "background_refresh", "key": key, "cache": self.name},
                ErrorSeverity.LOW,
                ErrorCategory.LOGIC,
                handled=True,
            )
            return
        self.set(key, fresh, **options)
        logger.debug("cache_refreshed", cache=self.name, key=key)

    async def wait_for_background(self) -> None:
        """Wait until every pending background refresh has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Expiry sweep
    # ------------------------------------------------------------------ #

    def sweep(self) -> int:
        """Remove all expired entries in one pass; returns the count."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._evicted(len(expired))
            self._update_size_gauge()
            logger.debug("cache_swept", cache=self.name, evicted=len(expired))
        return len(expired)

    def start(self) -> None:
        """Start the periodic sweeper on the running loop (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(
                self._sweep_forever(), name=f"fetchguard-sweeper:{self.name}"
            )

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._settings.cleanup_interval)
            self.sweep()

    async def close(self) -> None:
        """Stop the sweeper and drain background refreshes."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.wait_for_background()

    async def __aenter__(self) -> CacheStore:
        self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Stats
    # ------------------------------------------------------------------ #

    def stats(self) -> dict[str, Any]:
        """Entry count, metrics, configuration and the 10 most-hit keys."""
        top = sorted(self._entries.items(), key=lambda item: item[1].hit_count, reverse=True)
        return {
            "name": self.name,
            "entries": len(self._entries),
            "metrics": self._metrics.to_dict(),
            "config": self._settings.model_dump(),
            "top_keys": [
                {
                    "key": key,
                    "hits": entry.hit_count,
                    "last_accessed_at": entry.last_accessed_at,
                    "size_bytes": entry.size_estimate_bytes,
                }
                for key, entry in top[:_TOP_KEYS]
            ],
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        # min() keeps the first of equal timestamps, i.e. the oldest insert.
        oldest_key = min(self._entries, key=lambda k: self._entries[k].last_accessed_at)
        del self._entries[oldest_key]
        self._evicted(1)
        logger.debug("cache_evicted", cache=self.name, key=oldest_key)

    def _encode(self, data: Any, size: int) -> tuple[Any, bool]:
        threshold = self._settings.compression_threshold_bytes
        if threshold and size > threshold and isinstance(data, (str, bytes)):
            raw = data.encode("utf-8") if isinstance(data, str) else data
            return zlib.compress(raw), True
        return data, False

    def _decode(self, entry: CacheEntry[Any]) -> Any:
        if not entry.compressed:
            return entry.data
        raw = zlib.decompress(entry.data)
        return raw.decode("utf-8") if entry.is_text else raw

    def _miss(self) -> None:
        self._metrics.record_miss()
        if self._sink is not None:
            self._sink.cache_misses.labels(cache=self.name).inc()

    def _evicted(self, count: int) -> None:
        self._metrics.evictions += count
        if self._sink is not None:
            self._sink.cache_evictions.labels(cache=self.name).inc(count)

    def _update_size_gauge(self) -> None:
        if self._sink is not None:
            self._sink.cache_entries.labels(cache=self.name).set(len(self._entries))

    def _report_internal(self, exc: Exception, operation: str, key: str) -> None:
        self._report(
            exc,
            {"operation": operation, "key": key, "cache": self.name},
            ErrorSeverity.LOW,
            ErrorCategory.LOGIC,
            handled=True,
        )

    def _report_fetch(
        self,
        exc: Exception,
        key: str,
        severity: ErrorSeverity,
        *,
        handled: bool,
        has_fallback: bool,
    ) -> None:
        operation = "fetch_fallback" if has_fallback else "fetch_failed"
        self._report(
            exc,
            {"operation": operation, "key": key, "cache": self.name, "has_fallback": has_fallback},
            severity,
            ErrorCategory.NETWORK,
            handled=handled,
        )

    def _report(
        self,
        exc: Exception,
        data: dict[str, Any],
        severity: ErrorSeverity,
        category: ErrorCategory,
        *,
        handled: bool,
    ) -> None:
        if self._coordinator is not None:
            self._coordinator.handle_error(
                exc,
                ErrorContext(additional_data=data),
                severity=severity,
                category=category,
                handled=handled,
            )
            return

        log = logger.warning if severity.is_reportable else logger.info
        log(
            "cache_error",
            severity=severity.value,
            category=category.value,
            handled=handled,
            error=error_message(exc),
            **data,
        )


__all__ = [
    "CacheEntry",
    "CacheMetrics",
    "CacheStore",
    "FILL_RETRY_POLICY",
    "estimate_size",
]
