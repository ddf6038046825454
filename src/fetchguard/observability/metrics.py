"""Prometheus-style metrics for cache and query observability.

This is the metrics sink of the fault-tolerance layer: the cache store and
the query executor push counters and durations here, and an exporter can
scrape ``export_prometheus()``.

Metric types:
- Counter: Monotonically increasing value
- Gauge: Value that can go up or down
- Histogram: Distribution of values

Example:
    >>> from fetchguard.observability.metrics import GuardMetrics, MetricsRegistry
    >>>
    >>> metrics = GuardMetrics(MetricsRegistry())
    >>> metrics.record_query("get_listing", success=True, cached=False, duration_ms=42.0)
    >>> metrics.cache_hits.labels(cache="listings").inc()
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Labels:
    """Immutable label set for metrics."""

    _labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str] | None) -> "Labels":
        """Create from dictionary."""
        if not d:
            return cls(())
        return cls(tuple(sorted(d.items())))

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return dict(self._labels)


class Metric(ABC):
    """Base class for metrics."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description

    @abstractmethod
    def collect(self) -> list[dict[str, Any]]:
        """Collect metric values for export."""
        ...


class Counter(Metric):
    """A monotonically increasing counter."""

    def __init__(self, name: str, description: str = ""):
        super().__init__(name, description)
        self._values: dict[Labels, float] = {}

    def labels(self, **kwargs: str) -> "CounterChild":
        """Get counter with specific labels."""
        return CounterChild(self, Labels.from_dict(kwargs))

    def inc(self, value: float = 1.0) -> None:
        """Increment counter (no labels)."""
        self.labels().inc(value)

    def collect(self) -> list[dict[str, Any]]:
        return [
            {"name": self.name, "type": "counter", "labels": labels.to_dict(), "value": value}
            for labels, value in self._values.items()
        ]


class CounterChild:
    """Counter with fixed labels."""

    def __init__(self, counter: Counter, labels: Labels):
        self._counter = counter
        self._labels = labels

    def inc(self, value: float = 1.0) -> None:
        """Increment the counter."""
        if value < 0:
            raise ValueError("Counter can only increase")
        values = self._counter._values
        values[self._labels] = values.get(self._labels, 0.0) + value

    @property
    def value(self) -> float:
        return self._counter._values.get(self._labels, 0.0)


class Gauge(Metric):
    """A value that can go up or down."""

    def __init__(self, name: str, description: str = ""):
        super().__init__(name, description)
        self._values: dict[Labels, float] = {}

    def labels(self, **kwargs: str) -> "GaugeChild":
        """Get gauge with specific labels."""
        return GaugeChild(self, Labels.from_dict(kwargs))

    def set(self, value: float) -> None:
        """Set gauge value (no labels)."""
        self.labels().set(value)

    def collect(self) -> list[dict[str, Any]]:
        return [
            {"name": self.name, "type": "gauge", "labels": labels.to_dict(), "value": value}
            for labels, value in self._values.items()
        ]


class GaugeChild:
    """Gauge with fixed labels."""

    def __init__(self, gauge: Gauge, labels: Labels):
        self._gauge = gauge
        self._labels = labels

    def set(self, value: float) -> None:
        self._gauge._values[self._labels] = value

    def inc(self, value: float = 1.0) -> None:
        self.set(self.value + value)

    def dec(self, value: float = 1.0) -> None:
        self.inc(-value)

    @property
    def value(self) -> float:
        return self._gauge._values.get(self._labels, 0.0)


class Histogram(Metric):
    """A distribution of values (milliseconds by default)."""

    DEFAULT_BUCKETS = (
        1.0,
        5.0,
        10.0,
        25.0,
        50.0,
        100.0,
        250.0,
        500.0,
        1000.0,
        2500.0,
        5000.0,
        10000.0,
        float("inf"),
    )

    def __init__(
        self,
        name: str,
        description: str = "",
        buckets: tuple[float, ...] | None = None,
    ):
        super().__init__(name, description)
        self._buckets = buckets or self.DEFAULT_BUCKETS
        self._data: dict[Labels, dict[str, Any]] = {}

    def labels(self, **kwargs: str) -> "HistogramChild":
        """Get histogram with specific labels."""
        return HistogramChild(self, Labels.from_dict(kwargs))

    def observe(self, value: float) -> None:
        """Record an observation (no labels)."""
        self.labels().observe(value)

    def _empty(self) -> dict[str, Any]:
        return {"buckets": dict.fromkeys(self._buckets, 0), "sum": 0.0, "count": 0}

    def _observe(self, labels: Labels, value: float) -> None:
        data = self._data.setdefault(labels, self._empty())
        data["sum"] += value
        data["count"] += 1
        for bucket in self._buckets:
            if value <= bucket:
                data["buckets"][bucket] += 1

    def collect(self) -> list[dict[str, Any]]:
        return [
            {
                "name": self.name,
                "type": "histogram",
                "labels": labels.to_dict(),
                "buckets": dict(data["buckets"]),
                "sum": data["sum"],
                "count": data["count"],
            }
            for labels, data in self._data.items()
        ]


class HistogramChild:
    """Histogram with fixed labels."""

    def __init__(self, histogram: Histogram, labels: Labels):
        self._histogram = histogram
        self._labels = labels

    def observe(self, value: float) -> None:
        self._histogram._observe(self._labels, value)

    @property
    def data(self) -> dict[str, Any]:
        return self._histogram._data.get(self._labels, self._histogram._empty())


class MetricsRegistry:
    """Registry of all metrics for collection and export."""

    def __init__(self):
        self._metrics: dict[str, Metric] = {}

    def counter(self, name: str, description: str = "") -> Counter:
        """Get or create a counter."""
        if name not in self._metrics:
            self._metrics[name] = Counter(name, description)
        return self._metrics[name]

    def gauge(self, name: str, description: str = "") -> Gauge:
        """Get or create a gauge."""
        if name not in self._metrics:
            self._metrics[name] = Gauge(name, description)
        return self._metrics[name]

    def histogram(
        self,
        name: str,
        description: str = "",
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        """Get or create a histogram."""
        if name not in self._metrics:
            self._metrics[name] = Histogram(name, description, buckets)
        return self._metrics[name]

    def collect(self) -> list[dict[str, Any]]:
        """Collect all metrics."""
        results = []
        for metric in self._metrics.values():
            results.extend(metric.collect())
        return results

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        for data in self.collect():
            name = data["name"]
            labels = data.get("labels", {})

            if labels:
                label_str = "{" + ",".join(f'{k}="{v}"' for k, v in labels.items()) + "}"
            else:
                label_str = ""

            if data["type"] in ("counter", "gauge"):
                lines.append(f"{name}{label_str} {data['value']}")

            elif data["type"] == "histogram":
                for bucket, count in data["buckets"].items():
                    bucket_labels = f'{label_str[:-1]},le="{bucket}"}}' if label_str else f'{{le="{bucket}"}}'
                    lines.append(f"{name}_bucket{bucket_labels} {count}")
                lines.append(f"{name}_sum{label_str} {data['sum']}")
                lines.append(f"{name}_count{label_str} {data['count']}")

        return "\n".join(lines)


class GuardMetrics:
    """Pre-defined metrics for cache and query tracking."""

    def __init__(self, registry: MetricsRegistry | None = None):
        self.registry = registry or MetricsRegistry()
        reg = self.registry

        self.cache_hits = reg.counter("fetchguard_cache_hits_total", "Cache hits")
        self.cache_misses = reg.counter("fetchguard_cache_misses_total", "Cache misses")
        self.cache_evictions = reg.counter(
            "fetchguard_cache_evictions_total", "Entries removed by expiry or capacity"
        )
        self.cache_entries = reg.gauge("fetchguard_cache_entries", "Entries currently stored")

        self.queries = reg.counter("fetchguard_queries_total", "Wrapped operations executed")
        self.query_duration = reg.histogram(
            "fetchguard_query_duration_ms", "Wrapped operation duration in milliseconds"
        )
        self.slow_queries = reg.counter("fetchguard_slow_queries_total", "Operations over the slow threshold")

    def record_query(self, operation: str, *, success: bool, cached: bool, duration_ms: float) -> None:
        """Record one wrapped operation outcome."""
        status = "success" if success else "failure"
        self.queries.labels(operation=operation, status=status, cached=str(cached).lower()).inc()
        if not cached:
            self.query_duration.labels(operation=operation).observe(duration_ms)


__all__ = [
    "Counter",
    "Gauge",
    "GuardMetrics",
    "Histogram",
    "MetricsRegistry",
]
