"""
Structured error types and error classification for fetchguard.

Every failure that crosses the fault-tolerance layer is described along two
axes: a **category** (what kind of failure) and a **severity** (how loudly it
should be surfaced). Errors raised by fetchguard itself, or by fetch
operations that choose to raise ``FetchGuardError`` subclasses, carry their
category explicitly. Anything else is classified heuristically from the
message text.

Manifesto:
    - **Typed hierarchy:** Different error types for different failure domains
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Rich context:** Errors carry metadata for logging and reporting
    - **Heuristics are a fallback:** Prefer structured categories when a
      fetch operation can supply them

Architecture:
    ::

        FetchGuardError (category, retryable, context, cause)
        ├── NetworkError      (NETWORK, retryable)
        ├── ApiError          (API)
        ├── AuthError         (AUTH)
        ├── ValidationError   (VALIDATION)
        ├── ConfigError       (LOGIC)
        └── CircuitOpenError  (NETWORK)

        ErrorReport  ─ diagnostic record built by the resilience coordinator

Heuristic tables:
    Category, first match wins, on the lower-cased message:

    ============  ==========================================
    network       fetch, network, connection
    auth          401, 403, auth
    validation    400, 422, validation
    api           api, endpoint, http
    ui            react, component, render
    unknown       everything else
    ============  ==========================================

    Severity:

    ============  ==========================================
    critical      out of memory, stack overflow
    high          category auth, or 500 / 503 in message
    medium        category network or api, or 400 in message
    low           everything else
    ============  ==========================================

    Keyword matching is inherently fragile ("authority" matches "auth").
    It is kept as-is; raise typed errors from fetch operations to avoid it.

Tags:
    error-handling, exception-hierarchy, classification, severity
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "network"
    API = "api"
    AUTH = "auth"
    VALIDATION = "validation"
    UI = "ui"
    LOGIC = "logic"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """How loudly an error should be surfaced."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def is_reportable(self) -> bool:
        """High and critical errors are forwarded to the report sink."""
        return self in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL)


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error report.

    Attributes:
        timestamp: Epoch seconds when the error was observed
        origin_label: Operation or endpoint identifier; also the circuit
            breaker key updated by ``handle_error``
        additional_data: Free-form key/value pairs
    """

    timestamp: float | None = None
    origin_label: str | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        if self.timestamp is not None:
            result["timestamp"] = self.timestamp
        if self.origin_label is not None:
            result["origin_label"] = self.origin_label
        if self.additional_data:
            result.update(self.additional_data)
        return result


class FetchGuardError(Exception):
    """
    Base exception for all fetchguard errors.

    Subclasses set ``default_category`` and ``default_retryable``. A fetch
    operation that raises one of these gets classified by its category
    instead of by message keywords.
    """

    default_category: ErrorCategory = ErrorCategory.UNKNOWN
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FetchGuardError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ApiError("HTTP 502").with_context(origin_label="listings")
        """
        for key, value in kwargs.items():
            if key in ("timestamp", "origin_label"):
                setattr(self.context, key, value)
            else:
                self.context.additional_data[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class NetworkError(FetchGuardError):
    """Connection, DNS or transport failure. Retryable."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class ApiError(FetchGuardError):
    """The remote side answered, but with an error."""

    default_category = ErrorCategory.API

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any):
        if status_code is not None and "retryable" not in kwargs:
            kwargs["retryable"] = status_code >= 500
        super().__init__(message, **kwargs)
        self.status_code = status_code


class AuthError(FetchGuardError):
    """Authentication or authorization failure. Never retryable."""

    default_category = ErrorCategory.AUTH


class ValidationError(FetchGuardError):
    """Request or response failed validation. Never retryable."""

    default_category = ErrorCategory.VALIDATION


class ConfigError(FetchGuardError):
    """Invalid fetchguard configuration."""

    default_category = ErrorCategory.LOGIC


class CircuitOpenError(FetchGuardError):
    """Raised when a circuit is open and rejecting requests."""

    default_category = ErrorCategory.NETWORK

    def __init__(self, message: str = "Circuit breaker is open", *, key: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.key = key


@dataclass
class ErrorReport:
    """
    Diagnostic record of one handled error.

    Reports are append-only and never consulted by control flow.
    ``breadcrumbs`` is a snapshot of the coordinator's trail at creation.
    """

    id: str
    message: str
    stack: str
    context: ErrorContext
    severity: ErrorSeverity
    category: ErrorCategory
    handled: bool = True
    retry_count: int = 0
    breadcrumbs: list[str] = field(default_factory=list)
    error_type: str = "Exception"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for log output and sinks."""
        return {
            "id": self.id,
            "error_type": self.error_type,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "handled": self.handled,
            "retry_count": self.retry_count,
            "context": self.context.to_dict(),
            "stack": "\n".join(self.stack.splitlines()[:5]),
        }


# =============================================================================
# CLASSIFICATION
# =============================================================================

_CATEGORY_KEYWORDS: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (ErrorCategory.NETWORK, ("fetch", "network", "connection")),
    (ErrorCategory.AUTH, ("401", "403", "auth")),
    (ErrorCategory.VALIDATION, ("400", "422", "validation")),
    (ErrorCategory.API, ("api", "endpoint", "http")),
    (ErrorCategory.UI, ("react", "component", "render")),
)

_TRANSIENT_KEYWORDS = ("fetch", "network", "timeout", "500", "502", "503", "504")
_NETWORK_KEYWORDS = ("fetch", "network", "timeout")


def error_message(error: BaseException) -> str:
    """Message text of an exception, as used by the keyword heuristics."""
    if isinstance(error, FetchGuardError):
        return error.message
    return str(error)


def error_stack(error: BaseException) -> str:
    """Formatted traceback, or a placeholder for never-raised exceptions."""
    if error.__traceback__ is None:
        return "No stack trace available"
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Classify an error, preferring a structured category when present."""
    if isinstance(error, FetchGuardError):
        return error.category

    message = error_message(error).lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return category
    return ErrorCategory.UNKNOWN


def assess_severity(error: BaseException, category: ErrorCategory) -> ErrorSeverity:
    """Derive severity from the message text and category."""
    if isinstance(error, (MemoryError, RecursionError)):
        return ErrorSeverity.CRITICAL

    message = error_message(error).lower()

    if "out of memory" in message or "stack overflow" in message:
        return ErrorSeverity.CRITICAL

    if category == ErrorCategory.AUTH or "500" in message or "503" in message:
        return ErrorSeverity.HIGH

    if category in (ErrorCategory.NETWORK, ErrorCategory.API) or "400" in message:
        return ErrorSeverity.MEDIUM

    return ErrorSeverity.LOW


def is_transient(error: BaseException) -> bool:
    """Default retry predicate: network-ish, timeout or 5xx failures."""
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, FetchGuardError):
        return error.retryable
    message = error_message(error).lower()
    return any(keyword in message for keyword in _TRANSIENT_KEYWORDS)


def is_network_failure(error: BaseException) -> bool:
    """Narrower predicate used for cache fills: fetch/network/timeout only."""
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, FetchGuardError):
        return error.retryable
    message = error_message(error).lower()
    return any(keyword in message for keyword in _NETWORK_KEYWORDS)


__all__ = [
    "ApiError",
    "AuthError",
    "CircuitOpenError",
    "ConfigError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorReport",
    "ErrorSeverity",
    "FetchGuardError",
    "NetworkError",
    "ValidationError",
    "assess_severity",
    "categorize_error",
    "error_message",
    "error_stack",
    "is_network_failure",
    "is_transient",
]
