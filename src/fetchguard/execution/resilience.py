"""Resilience coordinator: error reporting, retry, circuit breaking, degradation.

``ResilienceCoordinator`` is the single place where failures are classified,
recorded and turned into decisions:

- ``handle_error``           classify → store ErrorReport → sink → log → breaker
- ``with_retry``             circuit check → attempts with exponential backoff
- ``with_graceful_degradation``  primary, then fallback; never hides a total failure
- ``add_breadcrumb``         bounded trail attached to subsequent reports
- ``get_error_stats``        windowed rollup of stored reports

All state (reports, breadcrumbs, breakers) is owned by the coordinator
instance and mutated synchronously; the only suspension points are the
awaited operation and the backoff sleep. Construct one coordinator per
independent fault domain and pass it to the components that need it.

Example:
    >>> coordinator = ResilienceCoordinator()
    >>> listing = await coordinator.with_retry(
    ...     lambda: client.get_listing("p1"),
    ...     RetryPolicy(max_retries=3, base_delay=0.1),
    ...     circuit_key="listings",
    ... )
"""

from __future__ import annotations

import asyncio
import functools
import json
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from fetchguard.core.errors import (
    CircuitOpenError,
    ErrorCategory,
    ErrorContext,
    ErrorReport,
    ErrorSeverity,
    assess_severity,
    categorize_error,
    error_message,
    error_stack,
)
from fetchguard.core.logging import get_logger
from fetchguard.core.settings import GuardSettings
from fetchguard.core.timestamps import Clock, generate_ulid, to_iso8601, wall_clock
from fetchguard.execution.circuit_breaker import CircuitBreakerRegistry
from fetchguard.execution.retry import RetryPolicy

T = TypeVar("T")

ReportSink = Callable[[ErrorReport], None]
Sleep = Callable[[float], Awaitable[None]]

GLOBAL_CIRCUIT_KEY = "global_operation"

logger = get_logger(__name__)


def log_report_sink(report: ErrorReport) -> None:
    """Default report sink: emit the report as a structured log event."""
    logger.error("error_reported", **report.to_dict())


class ResilienceCoordinator:
    """Error reporting, retry and circuit breaking for one fault domain."""

    def __init__(
        self,
        settings: GuardSettings | None = None,
        *,
        report_sink: ReportSink | None = None,
        clock: Clock = wall_clock,
        sleep: Sleep = asyncio.sleep,
    ):
        self._settings = settings or GuardSettings()
        self._clock = clock
        self._sleep = sleep
        self._report_sink = report_sink or log_report_sink
        self._default_policy = RetryPolicy.from_settings(self._settings.retry)
        self._breakers = CircuitBreakerRegistry(self._settings.circuit_breaker, clock=clock)
        self._reports: deque[ErrorReport] = deque(maxlen=self._settings.max_reports)
        self._breadcrumbs: deque[str] = deque(maxlen=self._settings.max_breadcrumbs)

    @property
    def settings(self) -> GuardSettings:
        return self._settings

    @property
    def default_policy(self) -> RetryPolicy:
        return self._default_policy

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def reports(self) -> list[ErrorReport]:
        return list(self._reports)

    @property
    def breadcrumbs(self) -> list[str]:
        return list(self._breadcrumbs)

    # ------------------------------------------------------------------ #
    # Classification
    # ------------------------------------------------------------------ #

    def categorize_error(self, error: BaseException) -> ErrorCategory:
        return categorize_error(error)

    def assess_severity(self, error: BaseException, category: ErrorCategory) -> ErrorSeverity:
        return assess_severity(error, category)

    # ------------------------------------------------------------------ #
    # Breadcrumbs
    # ------------------------------------------------------------------ #

    def add_breadcrumb(self, action: str, **metadata: Any) -> None:
        """Append ``"<iso-ts>: action (metadata)"`` to the trail."""
        crumb = f"{to_iso8601(self._clock())}: {action}"
        if metadata:
            crumb += f" ({json.dumps(metadata, default=str, sort_keys=True)})"
        self._breadcrumbs.append(crumb)

    # ------------------------------------------------------------------ #
    # Error handling
    # ------------------------------------------------------------------ #

    def handle_error(
        self,
        error: BaseException | str,
        context: ErrorContext | None = None,
        *,
        severity: ErrorSeverity | None = None,
        category: ErrorCategory | None = None,
        handled: bool = True,
        report: bool = True,
        retry_count: int = 0,
    ) -> ErrorReport:
        """Record, report and log one error.

        Args:
            error: The exception (a bare string is wrapped in ``Exception``)
            context: Origin label and extra data; timestamp is filled in
            severity: Overrides the assessed severity
            category: Overrides the categorized category
            handled: Whether the caller recovered from the error
            report: Set False to keep high/critical errors away from the sink
            retry_count: Retries performed before giving up

        Returns:
            The stored ErrorReport
        """
        exc = Exception(error) if isinstance(error, str) else error

        ctx = context or ErrorContext()
        if ctx.timestamp is None:
            ctx.timestamp = self._clock()

        category = category or self.categorize_error(exc)
        severity = severity or self.assess_severity(exc, category)

        error_report = ErrorReport(
            id=f"error_{generate_ulid()}",
            message=error_message(exc),
            stack=error_stack(exc),
            context=ctx,
            severity=severity,
            category=category,
            handled=handled,
            retry_count=retry_count,
            breadcrumbs=list(self._breadcrumbs),
            error_type=type(exc).__name__,
        )
        self._reports.append(error_report)

        if report and severity.is_reportable:
            self._emit(error_report)

        self._log(error_report)

        if ctx.origin_label:
            failed = severity == ErrorSeverity.CRITICAL or category == ErrorCategory.NETWORK
            if failed:
                self._breakers.get_or_create(ctx.origin_label).record_failure(exc)
            else:
                breaker = self._breakers.get(ctx.origin_label)
                if breaker is not None:
                    breaker.record_success()

        return error_report

    def _emit(self, error_report: ErrorReport) -> None:
        # Sinks must not break the caller; a failing sink is logged instead.
        try:
            self._report_sink(error_report)
        except Exception as exc:
            logger.error("report_sink_failed", report_id=error_report.id, error=str(exc))

    def _log(self, error_report: ErrorReport) -> None:
        if error_report.severity == ErrorSeverity.CRITICAL:
            log = logger.error
        elif error_report.severity == ErrorSeverity.HIGH:
            log = logger.warning
        else:
            log = logger.info

        log(
            "error_handled",
            severity=error_report.severity.value,
            category=error_report.category.value,
            message=error_report.message,
            handled=error_report.handled,
            origin_label=error_report.context.origin_label,
        )

    # ------------------------------------------------------------------ #
    # Retry
    # ------------------------------------------------------------------ #

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        circuit_key: str = GLOBAL_CIRCUIT_KEY,
        report: bool = True,
    ) -> T:
        """Run ``operation`` with exponential backoff behind a circuit breaker.

        The circuit for ``circuit_key`` is consulted once, before the first
        attempt; an open circuit fails immediately with ``CircuitOpenError``.
        Every failed attempt counts against the circuit. Retrying stops when
        the predicate refuses the error, retries are exhausted, or the
        circuit has opened in the meantime.

        With ``report=False`` the rejection or final failure is only
        raised; the caller is expected to record it with ``handle_error``.

        Raises:
            CircuitOpenError: The circuit rejected the call
            Exception: The last error raised by ``operation``
        """
        policy = policy or self._default_policy

        if not self._breakers.allow_request(circuit_key):
            self.add_breadcrumb("Circuit open, operation rejected", circuit_key=circuit_key)
            rejection = CircuitOpenError(
                f"Circuit breaker '{circuit_key}' is open - operation temporarily disabled",
                key=circuit_key,
            )
            if report:
                self.handle_error(
                    rejection,
                    ErrorContext(additional_data={"circuit_key": circuit_key}),
                    severity=ErrorSeverity.HIGH,
                    handled=False,
                )
            raise rejection

        last_error: Exception | None = None
        attempt = 0
        for attempt in range(policy.max_attempts):
            self.add_breadcrumb(
                f"Attempting operation (attempt {attempt + 1}/{policy.max_attempts})"
            )
            try:
                result = await operation()
            except Exception as exc:
                last_error = exc
                self.add_breadcrumb(f"Operation failed (attempt {attempt + 1}): {error_message(exc)}")
                breaker = self._breakers.get_or_create(circuit_key)
                breaker.record_failure(exc)

                if not policy.should_retry(attempt, exc) or breaker.is_open:
                    break

                delay = policy.next_delay(attempt)
                self.add_breadcrumb(f"Retrying in {delay:.3f}s")
                logger.info(
                    "retry_scheduled",
                    circuit_key=circuit_key,
                    attempt=attempt + 1,
                    delay_s=delay,
                    error=error_message(exc),
                )
                await self._sleep(delay)
                continue

            self.add_breadcrumb("Operation succeeded")
            breaker = self._breakers.get(circuit_key)
            if breaker is not None:
                if attempt > 0:
                    breaker.reset()
                else:
                    breaker.record_success()
            return result

        if last_error is None:
            raise ValueError(f"retry policy allows no attempts: {policy!r}")
        if report:
            self.handle_error(
                last_error,
                ErrorContext(additional_data={"circuit_key": circuit_key, "attempts": attempt + 1}),
                severity=ErrorSeverity.HIGH,
                handled=False,
                retry_count=attempt,
            )
        raise last_error

    # ------------------------------------------------------------------ #
    # Graceful degradation
    # ------------------------------------------------------------------ #

    async def with_graceful_degradation(
        self,
        primary: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]],
        label: str = "unknown",
    ) -> T:
        """Run ``primary``; on failure run ``fallback``.

        A primary failure is reported as handled/medium. A fallback failure
        is reported as unhandled/high and re-raised.
        """
        try:
            self.add_breadcrumb(f"Attempting primary operation: {label}")
            result = await primary()
            self.add_breadcrumb(f"Primary operation succeeded: {label}")
            return result
        except Exception as exc:
            logger.warning("primary_operation_failed", label=label, error=error_message(exc))
            self.add_breadcrumb(f"Primary operation failed, using fallback: {label}")
            self.handle_error(
                exc,
                ErrorContext(additional_data={"context": label, "operation": "primary"}),
                severity=ErrorSeverity.MEDIUM,
                category=ErrorCategory.LOGIC,
                handled=True,
            )

        try:
            result = await fallback()
        except Exception as fallback_exc:
            logger.error("fallback_operation_failed", label=label, error=error_message(fallback_exc))
            self.add_breadcrumb(f"Fallback operation failed: {label}")
            self.handle_error(
                fallback_exc,
                ErrorContext(additional_data={"context": label, "operation": "fallback"}),
                severity=ErrorSeverity.HIGH,
                category=ErrorCategory.LOGIC,
                handled=False,
            )
            raise

        self.add_breadcrumb(f"Fallback operation succeeded: {label}")
        return result

    # ------------------------------------------------------------------ #
    # Circuit queries
    # ------------------------------------------------------------------ #

    def is_circuit_open(self, key: str) -> bool:
        """True while ``key`` rejects calls; moves to half-open after recovery."""
        return self._breakers.is_open(key)

    def reset_circuit(self, key: str) -> None:
        breaker = self._breakers.get(key)
        if breaker is not None:
            breaker.reset()

    def circuit_states(self) -> dict[str, dict[str, Any]]:
        return self._breakers.snapshot()

    # ------------------------------------------------------------------ #
    # Stats
    # ------------------------------------------------------------------ #

    def get_error_stats(self, window: float = 3600.0) -> dict[str, Any]:
        """Rollup of reports newer than ``window`` seconds."""
        cutoff = self._clock() - window
        recent = [r for r in self._reports if (r.context.timestamp or 0) > cutoff]

        by_category = Counter(r.category.value for r in recent)
        by_severity = Counter(r.severity.value for r in recent)
        messages = Counter(r.message for r in recent)

        return {
            "total_errors": len(recent),
            "errors_by_category": dict(by_category),
            "errors_by_severity": dict(by_severity),
            "top_error_messages": [
                {"message": message, "count": count}
                for message, count in messages.most_common(10)
            ],
            "recent_errors": recent[-20:],
        }

    def clear(self) -> None:
        """Drop reports, breadcrumbs and circuit state."""
        self._reports.clear()
        self._breadcrumbs.clear()
        self._breakers.clear()


def handle_async_errors(
    coordinator: ResilienceCoordinator,
    *,
    origin_label: str | None = None,
    **options: Any,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator: report any exception raised by an async function, then re-raise.

    Example:
        >>> @handle_async_errors(coordinator, origin_label="listings")
        ... async def load_listing(listing_id):
        ...     return await client.get(listing_id)
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                coordinator.handle_error(exc, ErrorContext(origin_label=origin_label), **options)
                raise

        return wrapper

    return decorator


__all__ = [
    "GLOBAL_CIRCUIT_KEY",
    "ReportSink",
    "ResilienceCoordinator",
    "handle_async_errors",
    "log_report_sink",
]
