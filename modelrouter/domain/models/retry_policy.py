"""RetryPolicy and retry outcome models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from modelrouter.domain.models.system_error import ErrorCategory, SystemError

T = TypeVar("T")

_FIBONACCI = (1, 1, 2, 3, 5, 8, 13, 21, 34, 55)


class RetryStrategy(str, Enum):
    """How the delay grows between retries."""

    Exponential = "exponential"
    """``base_delay * backoff_multiplier ** (retry - 1)``."""

    Linear = "linear"
    """``base_delay * retry``."""

    Fixed = "fixed"
    """``base_delay`` before every retry."""

    Fibonacci = "fibonacci"
    """``base_delay`` times the retry's Fibonacci number (1, 1, 2, 3, 5, ...)."""


# Tuned per failure mode; attempt_timeout is always inherited from the base policy
_CATEGORY_PRESETS: dict[ErrorCategory, dict[str, Any]] = {
    ErrorCategory.NetworkError: {
        "max_attempts": 5,
        "base_delay": 1.0,
        "max_delay": 10.0,
        "backoff_multiplier": 2.0,
        "jitter_ratio": 0.2,
    },
    ErrorCategory.RateLimitError: {
        "max_attempts": 4,
        "base_delay": 2.0,
        "max_delay": 60.0,
        "backoff_multiplier": 2.5,
        "jitter_ratio": 0.3,
    },
    ErrorCategory.TimeoutError: {
        "max_attempts": 3,
        "base_delay": 3.0,
        "max_delay": 15.0,
        "backoff_multiplier": 2.0,
        "jitter_ratio": 0.15,
    },
}


class RetryPolicy(BaseModel):
    """Backoff parameters for the retry executor.

    The delay before retry *r* (attempt r + 1) follows ``strategy``, is capped
    at ``max_delay`` and is then scaled by a random factor in
    ``[1 - jitter_ratio, 1 + jitter_ratio]``. With the default exponential
    strategy that is ``min(max_delay, base_delay * backoff_multiplier ** (r - 1))``.
    """

    max_attempts: int = Field(
        default=3,
        description="Total attempts including the first",
        ge=1,
    )
    base_delay: float = Field(
        default=1.0,
        description="Delay before the first retry in seconds",
        ge=0.0,
    )
    max_delay: float = Field(
        default=30.0,
        description="Upper bound on the un-jittered delay in seconds",
        ge=0.0,
    )
    backoff_multiplier: float = Field(
        default=2.0,
        description="Growth factor between consecutive delays",
        ge=1.0,
    )
    jitter_ratio: float = Field(
        default=0.1,
        description="Fraction of the delay randomized in either direction",
        ge=0.0,
        le=1.0,
    )
    attempt_timeout: float = Field(
        default=30.0,
        description="Per-attempt timeout in seconds",
        gt=0.0,
    )
    strategy: RetryStrategy = Field(
        default=RetryStrategy.Exponential,
        description="Delay growth between retries",
    )
    adapt_to_error: bool = Field(
        default=False,
        description="Switch to the preset for the first error's category after it fails",
    )

    model_config = ConfigDict(frozen=True)

    def delay_for_attempt(self, attempt: int, rand: float = 0.5) -> float:
        """Compute the sleep before the given attempt.

        Args:
            attempt: 1-based attempt number about to run.
            rand: Random sample in [0, 1); 0.5 yields the un-jittered delay.

        Returns:
            Delay in seconds, never negative. Zero for the first attempt.
        """
        if attempt <= 1:
            return 0.0
        delay = min(self.max_delay, self.base_delay_for_retry(attempt - 1))
        jitter = self.jitter_ratio * (2 * rand - 1)
        return max(0.0, delay * (1 + jitter))

    def base_delay_for_retry(self, retry: int) -> float:
        """Un-capped, un-jittered delay before the given 1-based retry."""
        if self.strategy == RetryStrategy.Linear:
            return self.base_delay * retry
        if self.strategy == RetryStrategy.Fixed:
            return self.base_delay
        if self.strategy == RetryStrategy.Fibonacci:
            return self.base_delay * _FIBONACCI[min(retry, len(_FIBONACCI)) - 1]
        return self.base_delay * self.backoff_multiplier ** (retry - 1)

    @classmethod
    def for_error_category(
        cls, category: ErrorCategory, base: RetryPolicy | None = None
    ) -> RetryPolicy:
        """Build the policy suited to a failure category.

        Network, rate-limit and timeout failures get dedicated presets.
        Every other category keeps the base policy's backoff.

        Args:
            category: Category of the error being retried.
            base: Policy supplying ``attempt_timeout``, ``strategy`` and the
                fallback parameters. Defaults to RetryPolicy().

        Returns:
            A policy with ``adapt_to_error`` disabled.
        """
        base = base or cls()
        preset = _CATEGORY_PRESETS.get(category, {})
        return base.model_copy(update={**preset, "adapt_to_error": False})

    @property
    def worst_case_seconds(self) -> float:
        """Upper bound on wall-clock time spent by one execution."""
        return self.max_attempts * (
            self.max_delay * (1 + self.jitter_ratio) + self.attempt_timeout
        )


class RetryAttempt(BaseModel):
    """Record of one failed attempt."""

    attempt: int = Field(..., ge=1)
    delay: float = Field(
        default=0.0,
        description="Seconds slept before this attempt",
        ge=0.0,
    )
    error: SystemError

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class RetryResult(BaseModel, Generic[T]):
    """Successful outcome of a retried operation."""

    value: T
    attempts: int = Field(..., ge=1)
    total_time: float = Field(
        default=0.0,
        description="Seconds from the first attempt to success",
        ge=0.0,
    )
    failed_attempts: list[RetryAttempt] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True)
