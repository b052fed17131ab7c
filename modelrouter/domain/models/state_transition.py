"""StateTransition data model for circuit breaker audit events."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StateTransition(BaseModel):
    """Represents a state transition for observability purposes.

    StateTransition records circuit breaker and availability changes with
    enough context to reconstruct why a model left or re-entered rotation.
    """

    entity_type: str = Field(
        ...,
        description="Type of entity (e.g., 'CircuitBreaker', 'Model')",
        min_length=1,
    )
    entity_id: str = Field(
        ...,
        description="Entity identifier (e.g., model id)",
        min_length=1,
    )
    from_state: str = Field(
        ...,
        description="Previous state value",
    )
    to_state: str = Field(
        ...,
        description="New state value",
    )
    transition_timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when transition occurred",
    )
    trigger: str = Field(
        ...,
        description="What caused transition (failure, success, timeout_elapsed, manual)",
        min_length=1,
    )
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context about transition",
    )

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
    )
