"""
fetchguard - Fault-tolerance layer for async data fetching.

Wraps unreliable, zero-argument async fetch operations with:

- fetchguard.core: errors, settings, logging, clock helpers and the cache store
- fetchguard.execution: circuit breakers, retry policy, resilience coordinator
- fetchguard.query: query execution wrapper and cached entity lookups
- fetchguard.observability: Prometheus-style metrics
- fetchguard.health: health checks over a running stack

Example:
    >>> from fetchguard import CacheStore, GuardSettings, QueryExecutor, ResilienceCoordinator
    >>>
    >>> settings = GuardSettings()
    >>> configure_logging(settings.log_level)
    >>> coordinator = ResilienceCoordinator(settings)
    >>> cache = CacheStore(settings.cache, coordinator=coordinator)
    >>> executor = QueryExecutor(cache, coordinator, settings.query)
"""

__version__ = "0.1.0"

from fetchguard.core.cache import CacheEntry, CacheMetrics, CacheStore
from fetchguard.core.errors import (
    ApiError,
    AuthError,
    CircuitOpenError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    ErrorReport,
    ErrorSeverity,
    FetchGuardError,
    NetworkError,
    ValidationError,
)
from fetchguard.core.logging import configure_logging, get_logger
from fetchguard.core.settings import (
    CacheSettings,
    CircuitBreakerSettings,
    GuardSettings,
    QuerySettings,
    RetrySettings,
)
from fetchguard.execution.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from fetchguard.execution.resilience import ResilienceCoordinator, handle_async_errors
from fetchguard.execution.retry import RetryPolicy
from fetchguard.health import HealthMonitor, HealthResponse
from fetchguard.observability.metrics import GuardMetrics, MetricsRegistry
from fetchguard.query import EntityQueries, EntitySource, QueryExecutor, QueryMetric, QueryResult

__all__ = [
    "ApiError",
    "AuthError",
    "CacheEntry",
    "CacheMetrics",
    "CacheSettings",
    "CacheStore",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerSettings",
    "CircuitOpenError",
    "CircuitState",
    "ConfigError",
    "EntityQueries",
    "EntitySource",
    "ErrorCategory",
    "ErrorContext",
    "ErrorReport",
    "ErrorSeverity",
    "FetchGuardError",
    "GuardMetrics",
    "GuardSettings",
    "HealthMonitor",
    "HealthResponse",
    "MetricsRegistry",
    "NetworkError",
    "QueryExecutor",
    "QueryMetric",
    "QueryResult",
    "QuerySettings",
    "ResilienceCoordinator",
    "RetryPolicy",
    "RetrySettings",
    "ValidationError",
    "__version__",
    "configure_logging",
    "get_logger",
    "handle_async_errors",
]
