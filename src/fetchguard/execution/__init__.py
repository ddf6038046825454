"""fetchguard execution -- retry, circuit breaking and error coordination.

::

    ResilienceCoordinator
      ├── CircuitBreakerRegistry ─ one lazily created breaker per key
      ├── RetryPolicy            ─ exponential backoff, no jitter
      └── ErrorReport ring       ─ classified, breadcrumbed diagnostics
"""

from fetchguard.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)
from fetchguard.execution.resilience import (
    GLOBAL_CIRCUIT_KEY,
    ResilienceCoordinator,
    handle_async_errors,
    log_report_sink,
)
from fetchguard.execution.retry import RetryPolicy, RetryPredicate

__all__ = [
    "GLOBAL_CIRCUIT_KEY",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "ResilienceCoordinator",
    "RetryPolicy",
    "RetryPredicate",
    "handle_async_errors",
    "log_report_sink",
]
