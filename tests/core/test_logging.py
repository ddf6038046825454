"""
Tests for fetchguard.core.logging.

Tests verify:
- configure_logging sets up structlog for JSON and console output
- bind/unbind/clear manage context variables
- LogContext scopes context for sync and async blocks
"""

import pytest
import structlog
from structlog.testing import capture_logs

from fetchguard.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


@pytest.fixture(autouse=True)
def _reset_structlog():
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()


class TestConfigureLogging:
    """configure_logging output formats."""

    def test_json_output_is_ecs_shaped(self, capsys):
        configure_logging(level="INFO", json_format=True, service="listings")

        get_logger("test").info("cache_swept", evicted=3)

        out = capsys.readouterr().out
        assert '"event": "cache_swept"' in out
        assert '"evicted": 3' in out
        assert '"service.name": "listings"' in out
        assert '"log.level": "info"' in out
        assert "@timestamp" in out

    def test_console_output_logs_without_error(self, capsys):
        configure_logging(level="INFO", json_format=False)

        logger = get_logger("fetchguard.test")
        logger.info("hello", key="listings")
        logger.warning("retry_scheduled", attempt=1, delay_s=0.1)

        out = capsys.readouterr().out
        assert "hello" in out
        assert "retry_scheduled" in out

    def test_level_filters_debug(self, capsys):
        configure_logging(level="INFO", json_format=True)

        get_logger("test").debug("noise")

        assert "noise" not in capsys.readouterr().out


class TestContext:
    """Context variable helpers."""

    def test_bind_and_unbind(self):
        bind_context(request_id="r1", cache="listings")
        assert structlog.contextvars.get_contextvars() == {"request_id": "r1", "cache": "listings"}

        unbind_context("cache")
        assert structlog.contextvars.get_contextvars() == {"request_id": "r1"}

    def test_log_context_scopes_values(self):
        with LogContext(operation="search_listings"):
            assert structlog.contextvars.get_contextvars()["operation"] == "search_listings"
        assert "operation" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_async_log_context(self):
        async with LogContext(operation="get_listing"):
            assert structlog.contextvars.get_contextvars()["operation"] == "get_listing"
        assert structlog.contextvars.get_contextvars() == {}

    def test_events_are_capturable(self):
        with capture_logs() as logs:
            get_logger("test").warning("slow_query_detected", operation="x")
        assert logs == [{"event": "slow_query_detected", "operation": "x", "log_level": "warning"}]
