"""Domain components."""

from modelrouter.domain.components.circuit_breaker import CircuitBreaker
from modelrouter.domain.components.model_registry import (
    ModelRegistrationError,
    ModelRegistry,
)
from modelrouter.domain.components.quota_reset_scheduler import QuotaResetScheduler
from modelrouter.domain.components.quota_tracker import QuotaTracker
from modelrouter.domain.components.retry_executor import RetryExecutor

__all__ = [
    "CircuitBreaker",
    "ModelRegistrationError",
    "ModelRegistry",
    "QuotaResetScheduler",
    "QuotaTracker",
    "RetryExecutor",
]
