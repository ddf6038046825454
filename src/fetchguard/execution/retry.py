"""Retry policy with exponential backoff.

Delay before retry ``n`` (zero-based) is::

    min(base_delay * backoff_factor ** n, max_delay)

No jitter is applied, so delays are deterministic and testable.

Example:
    >>> from fetchguard.execution.retry import RetryPolicy
    >>>
    >>> policy = RetryPolicy(max_retries=3, base_delay=0.1, backoff_factor=2)
    >>> [policy.next_delay(n) for n in range(3)]
    [0.1, 0.2, 0.4]
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from fetchguard.core.errors import is_transient
from fetchguard.core.settings import RetrySettings

RetryPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        backoff_factor: Exponential multiplier
        retry_predicate: Decides whether an error is worth retrying
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    retry_predicate: RetryPredicate = field(default=is_transient, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @classmethod
    def from_settings(
        cls,
        settings: RetrySettings,
        retry_predicate: RetryPredicate | None = None,
    ) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            backoff_factor=settings.backoff_factor,
            retry_predicate=retry_predicate or is_transient,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def next_delay(self, attempt: int) -> float:
        """Delay in seconds after failed attempt ``attempt`` (zero-based)."""
        return min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """Whether to try again after zero-based ``attempt`` failed with ``error``."""
        if attempt >= self.max_retries:
            return False
        return bool(self.retry_predicate(error))


__all__ = ["RetryPolicy", "RetryPredicate"]
