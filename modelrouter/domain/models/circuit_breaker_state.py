"""Circuit breaker configuration and state models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CircuitState(str, Enum):
    """Circuit breaker states."""

    Closed = "closed"
    """Requests pass through; failures are counted."""

    Open = "open"
    """Requests are rejected until the timeout elapses."""

    HalfOpen = "half_open"
    """A limited number of trial calls are admitted."""


class HealthStatus(str, Enum):
    """Outcome of the most recent health check."""

    Unknown = "unknown"
    Healthy = "healthy"
    Unhealthy = "unhealthy"


class CircuitBreakerConfig(BaseModel):
    """Tuning parameters for a circuit breaker."""

    failure_threshold: int = Field(
        default=5,
        description="Consecutive failures that open the circuit",
        ge=1,
    )
    success_threshold: int = Field(
        default=3,
        description="Consecutive half-open successes that close the circuit",
        ge=1,
    )
    timeout: float = Field(
        default=60.0,
        description="Seconds the circuit stays open before admitting a trial call",
        gt=0,
    )
    min_timeout: float = Field(
        default=10.0,
        description="Lower bound for the adaptive timeout (seconds)",
        gt=0,
    )
    max_timeout: float = Field(
        default=300.0,
        description="Upper bound for the adaptive timeout (seconds)",
        gt=0,
    )
    timeout_multiplier: float = Field(
        default=1.5,
        description="Factor applied to the timeout when a half-open trial call fails",
        ge=1.0,
    )
    adaptive_timeout: bool = Field(
        default=True,
        description="Whether failed trial calls lengthen the open timeout",
    )
    half_open_max_trials: int | None = Field(
        default=None,
        description="Concurrent trial calls admitted while half-open (defaults to success_threshold)",
        ge=1,
    )
    dynamic_threshold: bool = Field(
        default=False,
        description="Lower or raise the failure threshold from observed failure rate and latency",
    )
    slow_response_seconds: float = Field(
        default=5.0,
        description="Average success latency above which the dynamic threshold tightens",
        gt=0,
    )
    health_check_interval: float | None = Field(
        default=None,
        description="Seconds between background health checks (None disables them)",
        gt=0,
    )

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_timeout_bounds(self) -> CircuitBreakerConfig:
        """Ensure min_timeout <= timeout <= max_timeout."""
        if not self.min_timeout <= self.timeout <= self.max_timeout:
            raise ValueError(
                f"timeout ({self.timeout}) must be within "
                f"[{self.min_timeout}, {self.max_timeout}]"
            )
        return self

    @property
    def max_trials(self) -> int:
        """Effective number of concurrent half-open trial calls."""
        return self.half_open_max_trials or self.success_threshold


class CircuitBreakerState(BaseModel):
    """Mutable state of one circuit breaker.

    Owned exclusively by its CircuitBreaker; callers receive copies via
    ``CircuitBreaker.snapshot()``.
    """

    state: CircuitState = Field(
        default=CircuitState.Closed,
        description="Current circuit state",
    )
    consecutive_failures: int = Field(default=0, ge=0)
    consecutive_successes: int = Field(default=0, ge=0)
    opened_at: float | None = Field(
        default=None,
        description="Monotonic clock reading when the circuit last opened",
    )
    timeout: float = Field(
        ...,
        description="Current (possibly adapted) open timeout in seconds",
        gt=0,
    )
    half_open_in_flight: int = Field(default=0, ge=0)
    total_requests: int = Field(default=0, ge=0)
    total_failures: int = Field(default=0, ge=0)
    total_successes: int = Field(default=0, ge=0)
    last_failure_at: datetime | None = None
    last_success_at: datetime | None = None
    health_status: HealthStatus = HealthStatus.Unknown
    last_health_check_at: datetime | None = None

    model_config = ConfigDict(validate_assignment=True)
