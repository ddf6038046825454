"""Query execution wrapper: caching, retry, timing and slow-operation detection.

``QueryExecutor.execute_query`` wraps one zero-argument async data access
function. It never raises; success and failure both come back as a
``QueryResult``.

Flow::

    cache_key hit? ──yes──► QueryResult(data, cached=True)   metric: 0 ms
        │no
        ▼
    coordinator.with_retry(query_fn, circuit_key="query:<name>", report=False)
        │ok                                   │error
        ▼                                     ▼
    cache non-None data                  report high/api
    slow? warn + breadcrumb              QueryResult(None, error)
    QueryResult(data)

Every execution appends a ``QueryMetric`` to a bounded buffer; metrics older
than ``metrics_retention`` are pruned as new ones arrive.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from fetchguard.core.errors import ErrorCategory, ErrorContext, ErrorSeverity, error_message
from fetchguard.core.logging import get_logger
from fetchguard.core.settings import QuerySettings
from fetchguard.core.timestamps import Clock, to_iso8601, wall_clock

if TYPE_CHECKING:
    from fetchguard.core.cache import CacheStore
    from fetchguard.execution.resilience import ResilienceCoordinator
    from fetchguard.observability.metrics import GuardMetrics

T = TypeVar("T")

logger = get_logger(__name__)

_TOP_SLOW = 10


@dataclass
class QueryMetric:
    """One recorded execution."""

    operation_name: str
    execution_time_ms: float
    timestamp: float
    success: bool
    cached: bool = False
    row_count: int | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryResult(Generic[T]):
    """Outcome of ``execute_query``: data or the error that prevented it."""

    data: T | None = None
    error: Exception | None = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class QueryExecutor:
    """Wraps data access calls with caching, retries and performance metrics."""

    def __init__(
        self,
        cache: CacheStore,
        coordinator: ResilienceCoordinator,
        settings: QuerySettings | None = None,
        *,
        metrics: GuardMetrics | None = None,
        clock: Clock = wall_clock,
    ):
        self._cache = cache
        self._coordinator = coordinator
        self._settings = settings or QuerySettings()
        self._sink = metrics
        self._clock = clock
        self._metrics: deque[QueryMetric] = deque(maxlen=self._settings.max_metrics)

    @property
    def settings(self) -> QuerySettings:
        return self._settings

    @property
    def cache(self) -> CacheStore:
        return self._cache

    @property
    def coordinator(self) -> ResilienceCoordinator:
        return self._coordinator

    @property
    def metrics(self) -> list[QueryMetric]:
        return list(self._metrics)

    async def execute_query(
        self,
        query_fn: Callable[[], Awaitable[T]],
        *,
        name: str = "unknown",
        enable_cache: bool | None = None,
        cache_key: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        tags: Iterable[str] = (),
    ) -> QueryResult[T]:
        """Run ``query_fn`` with caching, retry and timing.

        Args:
            query_fn: Zero-argument async callable performing the access
            name: Operation name for metrics, logs and the circuit key
            enable_cache: Overrides ``settings.enable_query_caching``
            cache_key: Key to read/write; caching is skipped without one
            metadata: Extra fields recorded on the metric and error report
            tags: Extra cache tags; ``query:<name>`` is always added

        Returns:
            QueryResult with ``data`` on success or ``error`` on failure
        """
        metadata = dict(metadata or {})
        use_cache = self._settings.enable_query_caching if enable_cache is None else enable_cache
        use_cache = use_cache and cache_key is not None

        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._record(name, 0.0, success=True, cached=True, metadata=metadata)
                return QueryResult(data=cached, cached=True)

        start = self._clock()
        try:
            if self._settings.enable_retry:
                data = await self._coordinator.with_retry(
                    query_fn, circuit_key=f"query:{name}", report=False
                )
            else:
                data = await query_fn()
        except Exception as exc:
            duration_ms = (self._clock() - start) * 1000
            self._record(
                name,
                duration_ms,
                success=False,
                error=error_message(exc),
                metadata=metadata,
            )
            self._coordinator.handle_error(
                exc,
                ErrorContext(
                    additional_data={
                        "operation": name,
                        "duration_ms": round(duration_ms, 2),
                        **metadata,
                    }
                ),
                severity=ErrorSeverity.HIGH,
                category=ErrorCategory.API,
            )
            return QueryResult(error=exc)

        duration_ms = (self._clock() - start) * 1000
        self._record(
            name,
            duration_ms,
            success=True,
            row_count=len(data) if isinstance(data, list) else None,
            metadata=metadata,
        )

        if use_cache and data is not None:
            self._cache.set(
                cache_key,
                data,
                ttl=self._settings.cache_ttl,
                tags=(f"query:{name}", *tags),
                source=f"query:{name}",
            )

        threshold = self._settings.slow_operation_threshold_ms
        if self._settings.enable_slow_detection and duration_ms > threshold:
            logger.warning(
                "slow_query_detected",
                operation=name,
                duration_ms=round(duration_ms, 2),
                threshold_ms=threshold,
            )
            self._coordinator.add_breadcrumb(
                "slow_query_detected", operation=name, duration_ms=round(duration_ms, 2)
            )
            if self._sink is not None:
                self._sink.slow_queries.labels(operation=name).inc()

        return QueryResult(data=data)

    def _record(
        self,
        operation: str,
        duration_ms: float,
        *,
        success: bool,
        cached: bool = False,
        row_count: int | None = None,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        now = self._clock()
        self._metrics.append(
            QueryMetric(
                operation_name=operation,
                execution_time_ms=duration_ms,
                timestamp=now,
                success=success,
                cached=cached,
                row_count=row_count,
                error_message=error,
                metadata=metadata or {},
            )
        )
        self.prune_metrics(now)
        if self._sink is not None:
            self._sink.record_query(operation, success=success, cached=cached, duration_ms=duration_ms)

    def prune_metrics(self, now: float | None = None) -> int:
        """Drop metrics older than ``metrics_retention``; returns the count."""
        cutoff = (self._clock() if now is None else now) - self._settings.metrics_retention
        removed = 0
        while self._metrics and self._metrics[0].timestamp < cutoff:
            self._metrics.popleft()
            removed += 1
        return removed

    def get_database_stats(self, window: float = 3600.0) -> dict[str, Any]:
        """Rollup of executions in the last ``window`` seconds."""
        cutoff = self._clock() - window
        threshold = self._settings.slow_operation_threshold_ms
        recent = [m for m in self._metrics if m.timestamp > cutoff]
        successful = [m for m in recent if m.success]

        average = sum(m.execution_time_ms for m in successful) / len(successful) if successful else 0.0

        by_operation: dict[str, list[QueryMetric]] = defaultdict(list)
        for metric in successful:
            by_operation[metric.operation_name].append(metric)

        slowest = []
        for operation, runs in by_operation.items():
            avg = sum(m.execution_time_ms for m in runs) / len(runs)
            if avg > threshold:
                slowest.append(
                    {
                        "operation": operation,
                        "average_time_ms": round(avg, 2),
                        "count": len(runs),
                        "last_executed": to_iso8601(max(m.timestamp for m in runs)),
                    }
                )
        slowest.sort(key=lambda item: item["average_time_ms"], reverse=True)

        return {
            "total_queries": len(recent),
            "successful_queries": len(successful),
            "failed_queries": len(recent) - len(successful),
            "average_execution_time_ms": round(average, 2),
            "slow_queries": sum(1 for m in recent if m.execution_time_ms > threshold),
            "cached_queries": sum(1 for m in recent if m.cached),
            "top_slow_queries": slowest[:_TOP_SLOW],
        }

    def clear_cache(self, pattern: str | None = None) -> int:
        """Drop cached results whose key contains ``pattern`` (everything if None)."""
        if pattern is None:
            removed = self._cache.clear()
        else:
            removed = self._cache.delete_matching(pattern)
        logger.info("query_cache_cleared", pattern=pattern, removed=removed)
        return removed


__all__ = ["QueryExecutor", "QueryMetric", "QueryResult"]
