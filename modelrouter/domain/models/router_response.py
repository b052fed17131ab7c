"""Request, response and status models exposed by the router."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from modelrouter.domain.models.circuit_breaker_state import CircuitState
from modelrouter.domain.models.model_descriptor import ProviderKind, UnavailableReason

SUPPORTED_LOCALES = ("en", "fr")


class RouterRequest(BaseModel):
    """One logical generation request."""

    prompt: str = Field(
        ...,
        description="Prompt text sent to the model",
    )
    context: str | None = Field(
        default=None,
        description="Page context used to pick fallback templates (e.g., 'home')",
    )
    locale: str | None = Field(
        default=None,
        description="Preferred response locale ('en' or 'fr'); detected when None",
    )
    preferred_model_id: str | None = Field(
        default=None,
        description="Model to try first if it is eligible",
    )
    request_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Correlation identifier",
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("locale")
    @classmethod
    def normalize_locale(cls, v: str | None) -> str | None:
        """Lowercase the locale; unsupported locales fall back to detection."""
        if v is None:
            return None
        v = v.strip().lower()
        return v if v in SUPPORTED_LOCALES else None


class ProviderResult(BaseModel):
    """Raw result of a provider invocation."""

    text: str
    tokens_used: int | None = Field(
        default=None,
        description="Tokens reported by the provider, if any",
        ge=0,
    )


class RouterResponse(BaseModel):
    """Response returned to callers; never persisted."""

    content: str = Field(..., description="Generated text")
    model: str = Field(..., description="Name of the model that produced the content")
    model_id: str = Field(..., description="Identifier of the model that produced the content")
    tokens_used: int = Field(..., ge=0)
    cost: float = Field(..., description="Cost in USD", ge=0.0)
    response_time_ms: float = Field(..., ge=0.0)
    fallback_used: bool = Field(
        default=False,
        description="True when the local fallback produced the content",
    )
    request_id: str | None = None

    model_config = ConfigDict(protected_namespaces=())


class ModelStatus(BaseModel):
    """Read-only snapshot of one model's health and quota."""

    id: str
    name: str
    provider_kind: ProviderKind
    priority: int
    is_available: bool
    quota_used: int
    quota_limit: float
    quota_percentage: float
    breaker_state: CircuitState
    last_error: str | None = None
    unavailable_reason: UnavailableReason | None = None
    quota_reset_at: datetime | None = None

    model_config = ConfigDict(frozen=True)
