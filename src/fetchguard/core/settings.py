"""Configuration for every fetchguard component.

Each component gets one pydantic model listing the options it recognizes,
with defaults applied at construction. ``GuardSettings`` bundles them and
reads overrides from the environment and ``.env``.

Durations are seconds unless the field name ends in ``_ms``.

Examples:
    >>> from fetchguard.core.settings import CacheSettings, GuardSettings
    >>> CacheSettings(default_ttl=900, max_size=500).max_size
    500

    Environment overrides use the ``FETCHGUARD_`` prefix and ``__`` for
    nesting::

        FETCHGUARD_CACHE__MAX_SIZE=200
        FETCHGUARD_RETRY__MAX_RETRIES=5

Tags:
    settings, configuration, pydantic, environment
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseModel):
    """Cache store options.

    Fields
    ──────
    default_ttl                 : TTL applied when ``set`` gets none
    max_size                    : Capacity bound (entries)
    cleanup_interval            : Seconds between expiry sweeps
    compression_threshold_bytes : str/bytes payloads above this are zlib-compressed
    fallback_ttl                : TTL for fallback values cached by ``get_or_set``
    """

    model_config = ConfigDict(frozen=True)

    default_ttl: float = Field(default=30 * 60, gt=0)
    max_size: int = Field(default=1000, ge=1)
    cleanup_interval: float = Field(default=5 * 60, gt=0)
    compression_threshold_bytes: int = Field(default=10 * 1024, ge=0)
    fallback_ttl: float = Field(default=5 * 60, gt=0)


class RetrySettings(BaseModel):
    """Retry/backoff options. The retry predicate is code, not config; see ``RetryPolicy``."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)


class CircuitBreakerSettings(BaseModel):
    """Circuit breaker options.

    ``monitoring_period`` bounds the window used when reporting circuit
    health; it does not affect state transitions.
    """

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout: float = Field(default=60.0, gt=0)
    monitoring_period: float = Field(default=5 * 60, gt=0)


class QuerySettings(BaseModel):
    """Query execution wrapper options."""

    model_config = ConfigDict(frozen=True)

    slow_operation_threshold_ms: float = Field(default=1000.0, ge=0)
    enable_slow_detection: bool = True
    enable_query_caching: bool = True
    enable_retry: bool = True
    cache_ttl: float = Field(default=5 * 60, gt=0)
    max_metrics: int = Field(default=10_000, ge=1)
    metrics_retention: float = Field(default=24 * 60 * 60, gt=0)


class GuardSettings(BaseSettings):
    """All fetchguard settings, environment-driven.

    Fields
    ──────
    cache           : CacheSettings
    retry           : RetrySettings
    circuit_breaker : CircuitBreakerSettings
    query           : QuerySettings
    max_reports     : ErrorReport ring-buffer bound
    max_breadcrumbs : Breadcrumb trail bound
    log_level       : Structlog log level
    """

    model_config = SettingsConfigDict(
        env_prefix="FETCHGUARD_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    cache: CacheSettings = Field(default_factory=CacheSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)

    max_reports: int = Field(default=1000, ge=1)
    max_breadcrumbs: int = Field(default=50, ge=1)
    log_level: str = "INFO"


__all__ = [
    "CacheSettings",
    "CircuitBreakerSettings",
    "GuardSettings",
    "QuerySettings",
    "RetrySettings",
]
