"""
Shared pytest fixtures and configuration for fetchguard tests.

This module provides:
- A controllable fake clock (every component reads time through a ``Clock``)
- A recording sleep that captures backoff delays instead of waiting
- Pre-wired settings, coordinator and cache fixtures

Usage:
    Fixtures are auto-discovered by pytest:

    def test_expiry(clock, cache):
        cache.set("k", 1, ttl=10)
        clock.advance(10)
        assert cache.get("k") is None
"""

from pathlib import Path

import pytest

from fetchguard.core.cache import CacheStore
from fetchguard.core.errors import ErrorReport
from fetchguard.core.settings import CacheSettings, GuardSettings
from fetchguard.execution.resilience import ResilienceCoordinator


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Time Fixtures
# =============================================================================


class FakeClock:
    """Callable clock returning a settable epoch-seconds value."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement: records delays and advances the clock."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.advance(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def settings() -> GuardSettings:
    return GuardSettings()


@pytest.fixture
def sink() -> list[ErrorReport]:
    """Report sink collecting every forwarded (high/critical) report."""
    return []


@pytest.fixture
def coordinator(settings, clock, sleep, sink) -> ResilienceCoordinator:
    return ResilienceCoordinator(settings, report_sink=sink.append, clock=clock, sleep=sleep)


@pytest.fixture
def cache(clock) -> CacheStore:
    """Small standalone store without a coordinator."""
    return CacheStore(CacheSettings(default_ttl=60, max_size=3), name="test", clock=clock)
