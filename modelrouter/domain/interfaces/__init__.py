"""Domain interfaces."""

from modelrouter.domain.interfaces.fallback_responder import LocalFallbackResponder
from modelrouter.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from modelrouter.domain.interfaces.provider_invoker import (
    ProviderInvoker,
    ProviderInvokerProtocol,
)
from modelrouter.domain.interfaces.quota_listener import (
    QuotaCriticalListener,
    QuotaListener,
    QuotaResetListener,
    QuotaWarningListener,
)

__all__ = [
    "LocalFallbackResponder",
    "ObservabilityError",
    "ObservabilityManager",
    "ProviderInvoker",
    "ProviderInvokerProtocol",
    "QuotaCriticalListener",
    "QuotaListener",
    "QuotaResetListener",
    "QuotaWarningListener",
]
