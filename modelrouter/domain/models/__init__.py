"""Domain models for the model router."""

from modelrouter.domain.models.circuit_breaker_state import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
)
from modelrouter.domain.models.model_descriptor import (
    LOCAL_FALLBACK_ID,
    LOCAL_FALLBACK_NAME,
    ModelDescriptor,
    ProviderKind,
    UnavailableReason,
)
from modelrouter.domain.models.quota import (
    QuotaEvent,
    QuotaEventType,
    QuotaHistory,
    QuotaSample,
    TimeWindow,
)
from modelrouter.domain.models.retry_policy import RetryAttempt, RetryPolicy, RetryResult
from modelrouter.domain.models.router_response import (
    ModelStatus,
    ProviderResult,
    RouterRequest,
    RouterResponse,
)
from modelrouter.domain.models.state_transition import StateTransition
from modelrouter.domain.models.system_error import (
    CircuitOpenError,
    ErrorCategory,
    ErrorKind,
    RetryExhaustedError,
    SystemError,
    classify,
)

__all__ = [
    "CircuitBreakerConfig",
    "CircuitBreakerState",
    "CircuitState",
    "CircuitOpenError",
    "ErrorCategory",
    "ErrorKind",
    "LOCAL_FALLBACK_ID",
    "LOCAL_FALLBACK_NAME",
    "ModelDescriptor",
    "ModelStatus",
    "ProviderKind",
    "ProviderResult",
    "QuotaEvent",
    "QuotaEventType",
    "QuotaHistory",
    "QuotaSample",
    "RetryAttempt",
    "RetryExhaustedError",
    "RetryPolicy",
    "RetryResult",
    "RouterRequest",
    "RouterResponse",
    "StateTransition",
    "SystemError",
    "TimeWindow",
    "UnavailableReason",
    "classify",
]
