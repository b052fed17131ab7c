"""Configuration management."""

from modelrouter.infrastructure.config.file_loader import (
    ConfigurationError,
    ConfigurationFileLoader,
)
from modelrouter.infrastructure.config.settings import (
    BreakerSettings,
    ModelSettings,
    QuotaSettings,
    RetrySettings,
    RouterSettings,
)

__all__ = [
    "BreakerSettings",
    "ConfigurationError",
    "ConfigurationFileLoader",
    "ModelSettings",
    "QuotaSettings",
    "RetrySettings",
    "RouterSettings",
]
