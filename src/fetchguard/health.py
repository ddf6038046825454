"""Health checks for a running fetchguard stack.

Provides:

- **Response models**: ``HealthResponse`` and ``CheckResult``, the JSON
  envelope a host service can return from its own health endpoint.
- **``HealthCheck``**: a declarative description of a single check with
  ``required`` / ``timeout_s`` knobs.
- **``HealthMonitor``**: built-in checks for the cache store, the resilience
  coordinator and the query executor, plus an optional caller-supplied probe
  of the real data source.

Quick start::

    monitor = HealthMonitor(cache, coordinator, executor, probe=ping_listings_api)
    response = await monitor.check()
    if response.status == "unhealthy":
        ...
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from fetchguard.core.logging import get_logger

if TYPE_CHECKING:
    from fetchguard.core.cache import CacheStore
    from fetchguard.execution.resilience import ResilienceCoordinator
    from fetchguard.query.executor import QueryExecutor

logger = get_logger(__name__)

Status = Literal["healthy", "degraded", "unhealthy"]

_PROBE_KEY = "__fetchguard_health_probe__"


# ── Response Models ──────────────────────────────────────────────────────


class CheckResult(BaseModel):
    """Result of a single health check."""

    status: Status
    latency_ms: float | None = None
    message: str = ""
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Aggregate health envelope.

    Fields
    ──────
    status    : ``healthy`` | ``degraded`` | ``unhealthy``
    service   : Human-readable service name
    version   : Package version
    uptime_s  : Seconds since the monitor was created
    timestamp : ISO-8601 UTC
    checks    : Per-check breakdown (name → CheckResult)
    """

    status: Status = "healthy"
    service: str = ""
    version: str = ""
    uptime_s: float = 0.0
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    checks: dict[str, CheckResult] = Field(default_factory=dict)

    @property
    def summary(self) -> dict[str, int]:
        counts = {"total": len(self.checks), "healthy": 0, "degraded": 0, "unhealthy": 0}
        for result in self.checks.values():
            counts[result.status] += 1
        return counts


# ── Health Check Definition ──────────────────────────────────────────────


@dataclass
class HealthCheck:
    """Declarative description of a single health check.

    Parameters
    ----------
    name : str
        Check name (e.g. ``"cache"``, ``"probe"``).
    check_fn : () -> Awaitable[CheckResult]
        Async callable returning the check's result. Raising counts as
        unhealthy.
    required : bool
        If *True* (default), an unhealthy result makes the overall status
        ``unhealthy``. If *False*, it only causes ``degraded``.
    timeout_s : float
        Max seconds to wait before the check is considered failed.
    """

    name: str
    check_fn: Callable[[], Awaitable[CheckResult]]
    required: bool = True
    timeout_s: float = 5.0


async def run_checks(checks: list[HealthCheck]) -> dict[str, CheckResult]:
    """Execute all checks concurrently and return a mapping of name → result."""

    async def _one(hc: HealthCheck) -> tuple[str, CheckResult]:
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(hc.check_fn(), timeout=hc.timeout_s)
        except TimeoutError:
            return hc.name, CheckResult(status="unhealthy", message="timed out", error="timeout")
        except Exception as exc:
            elapsed = (time.monotonic() - start) * 1000
            logger.warning("health_check_failed", check=hc.name, error=str(exc))
            return hc.name, CheckResult(
                status="unhealthy",
                latency_ms=round(elapsed, 2),
                message=f"{hc.name} check failed",
                error=str(exc)[:200],
            )
        if result.latency_ms is None:
            result.latency_ms = round((time.monotonic() - start) * 1000, 2)
        return hc.name, result

    pairs = await asyncio.gather(*[_one(hc) for hc in checks])
    return dict(pairs)


def compute_status(check_results: dict[str, CheckResult], checks: list[HealthCheck]) -> Status:
    """Derive aggregate status from individual check results."""
    check_map = {hc.name: hc for hc in checks}
    any_required_down = False
    any_degraded = False

    for name, result in check_results.items():
        if result.status == "unhealthy":
            hc = check_map.get(name)
            if hc is None or hc.required:
                any_required_down = True
            else:
                any_degraded = True
        elif result.status == "degraded":
            any_degraded = True

    if any_required_down:
        return "unhealthy"
    if any_degraded:
        return "degraded"
    return "healthy"


# ── Monitor ──────────────────────────────────────────────────────────────


class HealthMonitor:
    """Runs the built-in checks against one cache/coordinator/executor set."""

    def __init__(
        self,
        cache: CacheStore,
        coordinator: ResilienceCoordinator,
        executor: QueryExecutor | None = None,
        *,
        probe: Callable[[], Awaitable[Any]] | None = None,
        probe_timeout: float = 5.0,
        probe_required: bool = True,
        max_failure_rate: float = 0.5,
        service: str = "fetchguard",
    ):
        from fetchguard import __version__

        self._cache = cache
        self._coordinator = coordinator
        self._max_failure_rate = max_failure_rate
        self._service = service
        self._version = __version__
        self._started = time.monotonic()

        self._checks = [
            HealthCheck("cache", self._check_cache),
            HealthCheck("resilience", self._check_resilience),
        ]
        if executor is not None:
            self._checks.append(HealthCheck("queries", functools.partial(self._check_queries, executor)))
        if probe is not None:
            self._probe = probe
            self._checks.append(
                HealthCheck("probe", self._check_probe, required=probe_required, timeout_s=probe_timeout)
            )

    @property
    def checks(self) -> list[HealthCheck]:
        return list(self._checks)

    async def check(self) -> HealthResponse:
        results = await run_checks(self._checks)
        status = compute_status(results, self._checks)
        if status != "healthy":
            logger.warning(
                "health_degraded",
                status=status,
                failing=[name for name, r in results.items() if r.status != "healthy"],
            )
        return HealthResponse(
            status=status,
            service=self._service,
            version=self._version,
            uptime_s=round(time.monotonic() - self._started, 1),
            checks=results,
        )

    async def _check_cache(self) -> CheckResult:
        token = {"probe": time.monotonic()}
        self._cache.set(_PROBE_KEY, token, ttl=60)
        retrieved = self._cache.get(_PROBE_KEY)
        self._cache.delete(_PROBE_KEY)
        stats = self._cache.stats()

        ok = retrieved == token
        return CheckResult(
            status="healthy" if ok else "unhealthy",
            message="cache operations working" if ok else "cache round-trip failed",
            details={"entries": stats["entries"], "hit_rate": stats["metrics"]["hit_rate"]},
        )

    async def _check_resilience(self) -> CheckResult:
        stats = self._coordinator.get_error_stats(3600.0)
        period = self._coordinator.settings.circuit_breaker.monitoring_period
        recent = self._coordinator.get_error_stats(period)["total_errors"]
        open_circuits = sorted(
            name
            for name, snapshot in self._coordinator.circuit_states().items()
            if snapshot["state"] == "open"
        )
        critical = stats["errors_by_severity"].get("critical", 0)

        degraded = bool(open_circuits) or critical > 0
        return CheckResult(
            status="degraded" if degraded else "healthy",
            message="circuits open or critical errors" if degraded else "resilience operational",
            details={
                "total_errors": stats["total_errors"],
                "errors_in_monitoring_period": recent,
                "critical_errors": critical,
                "open_circuits": open_circuits,
            },
        )

    async def _check_queries(self, executor: QueryExecutor) -> CheckResult:
        stats = executor.get_database_stats(3600.0)
        total = stats["total_queries"]
        failure_rate = stats["failed_queries"] / total if total else 0.0

        degraded = failure_rate > self._max_failure_rate
        return CheckResult(
            status="degraded" if degraded else "healthy",
            message=f"failure rate {failure_rate:.0%}",
            details={
                "total_queries": total,
                "failed_queries": stats["failed_queries"],
                "slow_queries": stats["slow_queries"],
                "average_execution_time_ms": stats["average_execution_time_ms"],
            },
        )

    async def _check_probe(self) -> CheckResult:
        ok = await self._probe()
        if ok is False:
            return CheckResult(status="unhealthy", message="probe reported failure")
        return CheckResult(status="healthy", message="probe succeeded")


__all__ = [
    "CheckResult",
    "HealthCheck",
    "HealthMonitor",
    "HealthResponse",
    "compute_status",
    "run_checks",
]
