"""ModelDescriptor data model for a routable inference model."""

from __future__ import annotations

import asyncio
import math
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    field_validator,
    model_validator,
)

from modelrouter.domain.models.circuit_breaker_state import CircuitBreakerConfig
from modelrouter.domain.models.quota import QuotaHistory, TimeWindow

if TYPE_CHECKING:
    from modelrouter.domain.components.circuit_breaker import CircuitBreaker

LOCAL_FALLBACK_ID = "local-fallback"
LOCAL_FALLBACK_NAME = "Local Fallback"
LOCAL_FALLBACK_PRIORITY = 99


class ProviderKind(str, Enum):
    """Families of model providers, one invoker per kind."""

    Gemini = "gemini"
    """Google Gemini models."""

    OpenAI = "openai"
    """OpenAI hosted models."""

    Anthropic = "anthropic"
    """Anthropic hosted models."""

    OpenAICompatible = "openai_compatible"
    """Any endpoint speaking the OpenAI chat completions protocol."""

    Local = "local"
    """In-process template responder; never fails."""


class UnavailableReason(str, Enum):
    """Why a model was taken out of rotation."""

    Transient = "transient"
    """Repeated transient failures; restored after a cooldown."""

    Capacity = "capacity"
    """Quota exhausted; restored at the next quota reset."""

    Permanent = "permanent"
    """Authentication or configuration failure; restored only manually."""


class ModelDescriptor(BaseModel):
    """Configuration and live health/quota state of one model.

    Each descriptor owns exactly one circuit breaker and one quota history.
    Quota and availability fields are mutated only while holding ``lock``.

    Example:
        ```python
        model = ModelDescriptor(
            id="gemini-2.5-flash",
            name="Gemini 2.5 Flash",
            provider_kind=ProviderKind.Gemini,
            priority=1,
            quota_limit=2000,
            cost_per_token=0.000075,
        )
        ```
    """

    id: str = Field(
        ...,
        description="Unique model identifier",
        min_length=1,
    )
    name: str = Field(
        ...,
        description="Human-readable model name",
        min_length=1,
    )
    provider_kind: ProviderKind = Field(
        ...,
        description="Provider family used to pick the invoker",
    )
    model: str | None = Field(
        default=None,
        description="Provider-side model name (defaults to id)",
    )
    priority: int = Field(
        ...,
        description="Routing priority, lower is preferred",
        ge=0,
    )
    max_tokens: int = Field(
        default=1000,
        description="Maximum tokens to request per generation",
        ge=1,
    )
    cost_per_token: float = Field(
        default=0.0,
        description="Cost per token in USD",
        ge=0.0,
    )
    quota_limit: float = Field(
        ...,
        description="Tokens allowed per window (may be infinite)",
        gt=0,
    )
    quota_used: int = Field(
        default=0,
        description="Tokens consumed in the current window",
        ge=0,
    )
    quota_percentage: float = Field(
        default=0.0,
        description="Usage percentage as of the last threshold check",
        ge=0.0,
    )
    last_checked_percentage: float = Field(
        default=0.0,
        description="Percentage seen by the previous threshold check",
        ge=0.0,
    )
    time_window: TimeWindow | None = Field(
        default=TimeWindow.Daily,
        description="Quota reset window (None means the quota never resets)",
    )
    quota_reset_at: datetime | None = Field(
        default=None,
        description="When the quota next resets",
    )
    warning_pct: float = Field(
        default=80.0,
        description="Usage percentage that triggers a warning event",
        gt=0,
        le=100,
    )
    critical_pct: float = Field(
        default=95.0,
        description="Usage percentage that takes the model out of rotation",
        gt=0,
        le=100,
    )
    is_available: bool = Field(
        default=True,
        description="Whether the model is currently in rotation",
    )
    last_error: str | None = Field(
        default=None,
        description="Last error message recorded for the model",
    )
    unavailable_reason: UnavailableReason | None = Field(
        default=None,
        description="Why the model is out of rotation",
    )
    cooldown_until: datetime | None = Field(
        default=None,
        description="When a transiently failed model may be restored",
    )
    breaker_config: CircuitBreakerConfig = Field(
        default_factory=CircuitBreakerConfig,
        description="Circuit breaker tuning for this model",
    )
    history_capacity: int = Field(
        default=QuotaHistory.DEFAULT_CAPACITY,
        description="Number of quota samples retained",
        ge=1,
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Provider-specific metadata",
    )

    model_config = ConfigDict(
        frozen=False,
        validate_assignment=True,
    )

    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)
    _quota_history: QuotaHistory = PrivateAttr()
    _circuit_breaker: CircuitBreaker | None = PrivateAttr(default=None)

    @field_validator("id", "name")
    @classmethod
    def validate_identity(cls, v: str) -> str:
        """Strip identity fields and reject blank values."""
        v = v.strip()
        if not v:
            raise ValueError("Model identity fields cannot be blank")
        return v

    @model_validator(mode="after")
    def validate_thresholds(self) -> ModelDescriptor:
        """Ensure the warning threshold is below the critical threshold."""
        if self.warning_pct >= self.critical_pct:
            raise ValueError(
                f"warning_pct ({self.warning_pct}) must be below critical_pct ({self.critical_pct})"
            )
        return self

    def model_post_init(self, __context: Any) -> None:
        self._quota_history = QuotaHistory(self.history_capacity)

    @property
    def lock(self) -> asyncio.Lock:
        """Lock guarding quota and availability fields."""
        return self._lock

    @property
    def quota_history(self) -> QuotaHistory:
        return self._quota_history

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        """The model's circuit breaker, created on first access if not attached."""
        if self._circuit_breaker is None:
            from modelrouter.domain.components.circuit_breaker import CircuitBreaker

            self._circuit_breaker = CircuitBreaker(self.id, self.breaker_config)
        return self._circuit_breaker

    def attach_circuit_breaker(self, breaker: CircuitBreaker) -> None:
        """Install a breaker wired to the caller's clock and observability.

        Args:
            breaker: Breaker to own. Must be created for this model id.

        Raises:
            ValueError: If the breaker belongs to another model.
        """
        if breaker.model_id != self.id:
            raise ValueError(
                f"Circuit breaker for '{breaker.model_id}' cannot be attached to '{self.id}'"
            )
        self._circuit_breaker = breaker

    @property
    def provider_model(self) -> str:
        """Model name sent to the provider."""
        return self.model or self.id

    @property
    def is_local_fallback(self) -> bool:
        return self.provider_kind == ProviderKind.Local

    @property
    def has_quota_remaining(self) -> bool:
        return self.quota_used < self.quota_limit

    def compute_quota_percentage(self) -> float:
        """Current usage percentage from the live counters."""
        if math.isinf(self.quota_limit):
            return 0.0
        return self.quota_used / self.quota_limit * 100

    @classmethod
    def local_fallback(cls) -> ModelDescriptor:
        """Create the indestructible local fallback descriptor.

        Returns:
            Descriptor with infinite quota, zero cost and the lowest priority.
        """
        return cls(
            id=LOCAL_FALLBACK_ID,
            name=LOCAL_FALLBACK_NAME,
            provider_kind=ProviderKind.Local,
            model=LOCAL_FALLBACK_ID,
            priority=LOCAL_FALLBACK_PRIORITY,
            max_tokens=1000,
            cost_per_token=0.0,
            quota_limit=math.inf,
            time_window=None,
        )
