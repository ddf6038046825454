"""Tests for the Prometheus-style metrics registry and GuardMetrics."""

import pytest

from fetchguard.observability.metrics import Counter, Gauge, GuardMetrics, Histogram, MetricsRegistry


class TestCounter:
    def test_labels_are_independent(self):
        counter = Counter("hits")
        counter.labels(cache="a").inc()
        counter.labels(cache="a").inc(2)
        counter.labels(cache="b").inc()

        assert counter.labels(cache="a").value == 3
        assert counter.labels(cache="b").value == 1

    def test_label_order_irrelevant(self):
        counter = Counter("c")
        counter.labels(a="1", b="2").inc()
        assert counter.labels(b="2", a="1").value == 1

    def test_cannot_decrease(self):
        with pytest.raises(ValueError):
            Counter("c").inc(-1)


class TestGauge:
    def test_set_inc_dec(self):
        gauge = Gauge("entries")
        child = gauge.labels(cache="a")
        child.set(10)
        child.inc(5)
        child.dec(3)
        assert child.value == 12


class TestHistogram:
    def test_buckets_cumulative(self):
        hist = Histogram("duration", buckets=(10.0, 100.0, float("inf")))
        for value in (5, 50, 500):
            hist.observe(value)

        data = hist.labels().data
        assert data["count"] == 3
        assert data["sum"] == 555
        assert data["buckets"] == {10.0: 1, 100.0: 2, float("inf"): 3}


class TestRegistry:
    def test_get_or_create(self):
        registry = MetricsRegistry()
        assert registry.counter("x") is registry.counter("x")

    def test_export_prometheus(self):
        registry = MetricsRegistry()
        registry.counter("hits").labels(cache="a").inc()
        registry.gauge("size").set(3)
        registry.histogram("dur", buckets=(1.0, float("inf"))).observe(0.5)

        text = registry.export_prometheus()

        assert 'hits{cache="a"} 1.0' in text
        assert "size 3" in text
        assert 'dur_bucket{le="1.0"} 1' in text
        assert "dur_count 1" in text


class TestGuardMetrics:
    def test_record_query(self):
        metrics = GuardMetrics()
        metrics.record_query("get_listing", success=True, cached=False, duration_ms=42.0)
        metrics.record_query("get_listing", success=True, cached=True, duration_ms=0.0)
        metrics.record_query("get_listing", success=False, cached=False, duration_ms=7.0)

        queries = metrics.queries
        assert queries.labels(operation="get_listing", status="success", cached="false").value == 1
        assert queries.labels(operation="get_listing", status="success", cached="true").value == 1
        assert queries.labels(operation="get_listing", status="failure", cached="false").value == 1
        assert metrics.query_duration.labels(operation="get_listing").data["count"] == 2

    def test_shared_registry(self):
        registry = MetricsRegistry()
        GuardMetrics(registry).cache_hits.labels(cache="a").inc()
        assert any(m["name"] == "fetchguard_cache_hits_total" for m in registry.collect())
