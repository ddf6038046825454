"""Observability for fetchguard: metrics sink. Logging lives in ``fetchguard.core.logging``."""

from fetchguard.observability.metrics import (
    Counter,
    Gauge,
    GuardMetrics,
    Histogram,
    MetricsRegistry,
)

__all__ = ["Counter", "Gauge", "GuardMetrics", "Histogram", "MetricsRegistry"]
