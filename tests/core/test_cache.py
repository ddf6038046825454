"""
Tests for fetchguard.core.cache module.

Covers:
- get/set/delete with TTL expiry at the exact boundary
- LRU eviction of exactly one entry, only for new keys at capacity
- Tag and pattern invalidation
- zlib compression of large text payloads
- get_or_set: cache-aside, retry, fallback, stale-while-revalidate
- Sweeper lifecycle and stats
"""

import asyncio

import pytest

from fetchguard.core.cache import CacheStore, estimate_size
from fetchguard.core.errors import ErrorCategory, ErrorSeverity
from fetchguard.core.settings import CacheSettings
from fetchguard.observability.metrics import GuardMetrics


class Counted:
    """Async fetcher that counts calls and can fail a number of times first."""

    def __init__(self, value, *, failures=0, error=None):
        self.value = value
        self.failures = failures
        self.error = error or ConnectionError("network unreachable")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


class TestGetSet:
    """Basic get/set/delete behaviour."""

    def test_basic_get_set(self, cache):
        """Cache should store and retrieve values."""
        cache.set("key1", {"data": [1, 2, 3]})
        assert cache.get("key1") == {"data": [1, 2, 3]}

    def test_get_missing_key_counts_miss(self, cache):
        assert cache.get("missing") is None
        assert cache.metrics.misses == 1
        assert cache.metrics.hits == 0

    def test_get_default(self, cache):
        assert cache.get("missing", default="fallback") == "fallback"

    def test_hit_updates_entry(self, cache, clock):
        """A hit bumps hit_count and last_accessed_at."""
        cache.set("k", 1)
        clock.advance(5)
        cache.get("k")
        cache.get("k")

        entry = cache._entries["k"]
        assert entry.hit_count == 2
        assert entry.last_accessed_at == clock.now
        assert cache.metrics.hits == 2
        assert cache.metrics.hit_rate == 1.0

    def test_delete(self, cache):
        cache.set("k", 1)
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_contains_and_len(self, cache, clock):
        cache.set("k", 1, ttl=10)
        assert "k" in cache
        assert len(cache) == 1
        clock.advance(10)
        assert "k" not in cache

    def test_source_and_tags_recorded(self, cache):
        cache.set("k", 1, tags=["a", "b"], source="listings-api")
        entry = cache._entries["k"]
        assert entry.tags == frozenset({"a", "b"})
        assert entry.source_label == "listings-api"

    def test_get_many_and_set_many(self, cache):
        cache.set_many({"a": 1, "b": 2}, ttl=30)
        assert cache.get_many(["a", "b", "c"]) == {"a": 1, "b": 2}
        assert cache._entries["a"].ttl == 30

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert len(cache) == 0
        assert cache.keys() == []


class TestExpiry:
    """TTL boundary: alive strictly before ttl, gone at or after it."""

    def test_alive_just_before_ttl(self, cache, clock):
        cache.set("k", "v", ttl=10)
        clock.advance(9.999)
        assert cache.get("k") == "v"

    def test_gone_exactly_at_ttl(self, cache, clock):
        cache.set("k", "v", ttl=10)
        clock.advance(10)
        assert cache.get("k") is None

    def test_expired_get_counts_miss_and_eviction(self, cache, clock):
        cache.set("k", "v", ttl=1)
        clock.advance(2)
        cache.get("k")

        assert "k" not in cache._entries
        assert cache.metrics.misses == 1
        assert cache.metrics.evictions == 1

    def test_default_ttl_from_settings(self, clock):
        store = CacheStore(CacheSettings(default_ttl=5), clock=clock)
        store.set("k", 1)
        clock.advance(4)
        assert store.get("k") == 1
        clock.advance(1)
        assert store.get("k") is None

    def test_sweep_removes_only_expired(self, cache, clock):
        cache.set("short", 1, ttl=5)
        cache.set("long", 2, ttl=50)
        clock.advance(10)

        assert cache.sweep() == 1
        assert cache.keys() == ["long"]
        assert cache.metrics.evictions == 1

    def test_sweep_with_nothing_expired(self, cache):
        cache.set("k", 1)
        assert cache.sweep() == 0
        assert cache.metrics.evictions == 0


class TestEviction:
    """Capacity bound evicts the least recently accessed entry."""

    def test_evicts_oldest_accessed(self, cache, clock):
        for key in ("a", "b", "c"):
            cache.set(key, key)
            clock.advance(1)
        cache.get("a")
        clock.advance(1)

        cache.set("d", "d")

        assert sorted(cache.keys()) == ["a", "c", "d"]
        assert cache.metrics.evictions == 1

    def test_evicts_exactly_one(self, cache, clock):
        for key in ("a", "b", "c", "d", "e"):
            cache.set(key, key)
            clock.advance(1)

        assert len(cache) == 3
        assert sorted(cache.keys()) == ["c", "d", "e"]
        assert cache.metrics.evictions == 2

    def test_overwrite_at_capacity_does_not_evict(self, cache, clock):
        for key in ("a", "b", "c"):
            cache.set(key, key)
            clock.advance(1)

        cache.set("a", "A")

        assert sorted(cache.keys()) == ["a", "b", "c"]
        assert cache.get("a") == "A"
        assert cache.metrics.evictions == 0

    def test_end_to_end_capacity_scenario(self, clock):
        """TTL then capacity on a 500-entry store."""
        store = CacheStore(CacheSettings(max_size=500), clock=clock)
        start = clock.now

        store.set("p1", {"v": 1}, ttl=1.0)
        clock.now = start + 0.5
        assert store.get("p1") == {"v": 1}
        clock.now = start + 1.2
        assert store.get("p1") is None

        for i in range(500):
            store.set(f"k{i}", i)
            clock.advance(0.001)
        store.get("k0")
        clock.advance(0.001)

        store.set("k500", 500)

        assert len(store) == 500
        assert "k0" in store
        assert "k1" not in store
        assert "k500" in store


class TestTagInvalidation:
    """Tag invalidation removes all and only tagged entries."""

    def test_removes_exactly_tagged(self):
        store = CacheStore(CacheSettings(max_size=10))
        store.set("a", 1, tags=["x"])
        store.set("b", 2, tags=["y"])
        store.set("c", 3, tags=["x", "y"])
        store.set("d", 4)

        assert store.invalidate_by_tags(["x"]) == 2
        assert sorted(store.keys()) == ["b", "d"]

    def test_any_tag_matches(self):
        store = CacheStore(CacheSettings(max_size=10))
        store.set("a", 1, tags=["x"])
        store.set("b", 2, tags=["y"])
        store.set("c", 3, tags=["z"])

        assert store.invalidate_by_tags(["x", "y"]) == 2
        assert store.keys() == ["c"]

    def test_no_match(self, cache):
        cache.set("a", 1, tags=["x"])
        assert cache.invalidate_by_tags(["nope"]) == 0
        assert cache.keys() == ["a"]

    def test_delete_matching(self):
        store = CacheStore(CacheSettings(max_size=10))
        store.set("listing_1", 1)
        store.set("listing_2", 2)
        store.set("search_x", 3)

        assert store.delete_matching("listing_") == 2
        assert store.keys() == ["search_x"]


class TestCompression:
    """Large str/bytes payloads are stored compressed."""

    def test_large_text_compressed_transparently(self):
        store = CacheStore(CacheSettings(compression_threshold_bytes=16))
        text = "abc" * 100

        store.set("k", text)

        entry = store._entries["k"]
        assert entry.compressed is True
        assert isinstance(entry.data, bytes)
        assert len(entry.data) < len(text)
        assert store.get("k") == text

    def test_large_bytes_round_trip(self):
        store = CacheStore(CacheSettings(compression_threshold_bytes=16))
        payload = b"\x00\x01" * 200

        store.set("k", payload)

        assert store._entries["k"].compressed is True
        assert store.get("k") == payload

    def test_small_and_structured_values_not_compressed(self):
        store = CacheStore(CacheSettings(compression_threshold_bytes=16))
        store.set("small", "hi")
        store.set("dict", {"text": "x" * 100})

        assert store._entries["small"].compressed is False
        assert store._entries["dict"].compressed is False
        assert store.get("dict") == {"text": "x" * 100}

    def test_threshold_zero_disables(self):
        store = CacheStore(CacheSettings(compression_threshold_bytes=0))
        store.set("k", "x" * 10_000)
        assert store._entries["k"].compressed is False

    def test_estimate_size(self):
        assert estimate_size(b"abcd") == 4
        assert estimate_size("é") == 2
        assert estimate_size({"a": 1}) == len('{"a": 1}')


class TestFailureContainment:
    """Basic operations never raise."""

    def test_set_failure_reported_low(self, coordinator):
        def broken_clock():
            raise RuntimeError("clock exploded")

        store = CacheStore(coordinator=coordinator, clock=broken_clock)
        store.set("k", 1)

        report = coordinator.reports[-1]
        assert report.severity == ErrorSeverity.LOW
        assert report.category == ErrorCategory.LOGIC
        assert report.context.additional_data["operation"] == "cache.set"
        assert len(store) == 0

    def test_get_failure_degrades_to_miss(self, coordinator, clock):
        store = CacheStore(coordinator=coordinator, clock=clock)
        store.set("k", 1)
        store._entries["k"].compressed = True  # data is not valid zlib

        assert store.get("k") is None
        assert store.metrics.misses == 1
        assert coordinator.reports[-1].context.additional_data["operation"] == "cache.get"

    def test_failure_without_coordinator_is_logged(self):
        def broken_clock():
            raise RuntimeError("clock exploded")

        store = CacheStore(clock=broken_clock)
        store.set("k", 1)
        assert len(store) == 0


class TestGetOrSet:
    """Cache-aside through the coordinator."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_caches(self, coordinator, clock):
        store = CacheStore(coordinator=coordinator, clock=clock)
        fetcher = Counted({"v": 1})

        assert await store.get_or_set("k", fetcher) == {"v": 1}
        assert await store.get_or_set("k", fetcher) == {"v": 1}
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_ttl_and_tags_applied(self, coordinator, clock):
        store = CacheStore(coordinator=coordinator, clock=clock)
        await store.get_or_set("k", Counted(1), ttl=7, tags=["listings"])

        entry = store._entries["k"]
        assert entry.ttl == 7
        assert entry.tags == frozenset({"listings"})

    @pytest.mark.asyncio
    async def test_network_failures_retried(self, coordinator, clock, sleep):
        store = CacheStore(coordinator=coordinator, clock=clock)
        fetcher = Counted("ok", failures=2)

        assert await store.get_or_set("k", fetcher) == "ok"
        assert fetcher.calls == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_network_failure_not_retried(self, coordinator, clock, sleep):
        store = CacheStore(coordinator=coordinator, clock=clock)
        fetcher = Counted("ok", failures=1, error=ValueError("bad payload"))

        with pytest.raises(ValueError):
            await store.get_or_set("k", fetcher)
        assert fetcher.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_failure_without_fallback_raises(self, coordinator, clock, sink):
        store = CacheStore(coordinator=coordinator, clock=clock)
        fetcher = Counted("ok", failures=10)

        with pytest.raises(ConnectionError):
            await store.get_or_set("k", fetcher)

        assert "k" not in store
        fetch_report = coordinator.reports[-1]
        assert fetch_report.severity == ErrorSeverity.HIGH
        assert fetch_report.handled is False
        assert fetch_report.context.additional_data["has_fallback"] is False
        assert fetch_report in sink

    @pytest.mark.asyncio
    async def test_fallback_cached_briefly(self, coordinator, clock):
        store = CacheStore(CacheSettings(fallback_ttl=300), coordinator=coordinator, clock=clock)
        fetcher = Counted("ok", failures=10, error=ValueError("bad payload"))

        assert await store.get_or_set("k", fetcher, fallback=[]) == []

        report = coordinator.reports[-1]
        assert report.severity == ErrorSeverity.MEDIUM
        assert report.handled is True

        clock.advance(299)
        assert store.get("k") == []
        clock.advance(1)
        assert store.get("k") is None

    @pytest.mark.asyncio
    async def test_fallback_none_is_returned(self, coordinator, clock):
        store = CacheStore(coordinator=coordinator, clock=clock)
        fetcher = Counted("ok", failures=10, error=ValueError("bad"))

        assert await store.get_or_set("k", fetcher, fallback=None) is None

    @pytest.mark.asyncio
    async def test_without_coordinator_fetches_once(self, clock):
        store = CacheStore(clock=clock)
        fetcher = Counted("ok", failures=1)

        with pytest.raises(ConnectionError):
            await store.get_or_set("k", fetcher)
        assert fetcher.calls == 1

        assert await store.get_or_set("k", fetcher) == "ok"


class TestStaleWhileRevalidate:
    """Background refresh on hit."""

    @pytest.mark.asyncio
    async def test_returns_cached_and_refreshes_once(self, clock):
        store = CacheStore(clock=clock)
        store.set("k", "old")
        fetcher = Counted("new")

        value = await store.get_or_set("k", fetcher, stale_while_revalidate=True)

        assert value == "old"
        assert fetcher.calls == 0
        await store.wait_for_background()
        assert fetcher.calls == 1
        assert store.get("k") == "new"

    @pytest.mark.asyncio
    async def test_refresh_failure_is_contained(self, coordinator, clock):
        store = CacheStore(coordinator=coordinator, clock=clock)
        store.set("k", "old")
        fetcher = Counted("new", failures=1)

        assert await store.get_or_set("k", fetcher, stale_while_revalidate=True) == "old"
        await store.wait_for_background()

        assert store.get("k") == "old"
        report = coordinator.reports[-1]
        assert report.severity == ErrorSeverity.LOW
        assert report.context.additional_data["operation"] == "background_refresh"

    @pytest.mark.asyncio
    async def test_miss_fetches_in_foreground(self, clock):
        store = CacheStore(clock=clock)
        fetcher = Counted("v")

        assert await store.get_or_set("k", fetcher, stale_while_revalidate=True) == "v"
        assert fetcher.calls == 1
        assert not store._background


class TestLifecycle:
    """Periodic sweeper task."""

    @pytest.mark.asyncio
    async def test_sweeper_removes_expired(self, clock):
        store = CacheStore(CacheSettings(cleanup_interval=0.01), clock=clock)
        store.set("k", 1, ttl=1)
        clock.advance(2)

        async with store:
            await asyncio.sleep(0.05)
            assert len(store) == 0

        assert store._sweeper is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, clock):
        store = CacheStore(clock=clock)
        store.start()
        first = store._sweeper
        store.start()
        assert store._sweeper is first
        await store.close()


class TestStats:
    """stats() shape and metrics sink wiring."""

    def test_stats_shape(self, clock):
        store = CacheStore(CacheSettings(max_size=50), name="listings", clock=clock)
        for i in range(12):
            store.set(f"k{i}", i)
        for _ in range(3):
            store.get("k5")
        store.get("k7")
        store.get("missing")

        stats = store.stats()

        assert stats["name"] == "listings"
        assert stats["entries"] == 12
        assert stats["config"]["max_size"] == 50
        assert stats["metrics"]["hits"] == 4
        assert stats["metrics"]["misses"] == 1
        assert stats["metrics"]["sets"] == 12
        assert stats["metrics"]["hit_rate"] == pytest.approx(0.8)
        assert len(stats["top_keys"]) == 10
        assert [k["key"] for k in stats["top_keys"][:2]] == ["k5", "k7"]

    def test_metrics_sink_counts(self, clock):
        metrics = GuardMetrics()
        store = CacheStore(CacheSettings(max_size=1), name="c", metrics=metrics, clock=clock)

        store.set("a", 1)
        store.get("a")
        store.get("b")
        store.set("b", 2)

        assert metrics.cache_hits.labels(cache="c").value == 1
        assert metrics.cache_misses.labels(cache="c").value == 1
        assert metrics.cache_evictions.labels(cache="c").value == 1
        assert metrics.cache_entries.labels(cache="c").value == 1
