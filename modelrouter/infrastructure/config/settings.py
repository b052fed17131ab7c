"""Configuration settings using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from modelrouter.domain.models.circuit_breaker_state import CircuitBreakerConfig
from modelrouter.domain.models.model_descriptor import ModelDescriptor, ProviderKind
from modelrouter.domain.models.quota import TimeWindow
from modelrouter.domain.models.retry_policy import RetryPolicy, RetryStrategy
from modelrouter.infrastructure.config.file_loader import ConfigurationFileLoader


class ModelSettings(BaseModel):
    """Static configuration of one remote model."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    provider_kind: ProviderKind = ProviderKind.Gemini
    model: str | None = Field(
        default=None,
        description="Provider-side model name (defaults to id)",
    )
    priority: int = Field(..., ge=0)
    quota_limit: float = Field(..., gt=0)
    max_tokens: int = Field(default=1000, ge=1)
    cost_per_token: float = Field(default=0.0, ge=0.0)
    time_window: TimeWindow | None = TimeWindow.Daily
    warning_pct: float | None = Field(
        default=None,
        description="Overrides the global warning threshold",
    )
    critical_pct: float | None = Field(
        default=None,
        description="Overrides the global critical threshold",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class BreakerSettings(BaseModel):
    """Circuit breaker settings shared by every model."""

    failure_threshold: int = Field(default=5, ge=1)
    success_threshold: int = Field(default=3, ge=1)
    timeout: float = Field(default=60.0, gt=0)
    min_timeout: float = Field(default=10.0, gt=0)
    max_timeout: float = Field(default=300.0, gt=0)
    timeout_multiplier: float = Field(default=1.5, ge=1.0)
    adaptive_timeout: bool = True
    half_open_max_trials: int | None = Field(default=None, ge=1)
    dynamic_threshold: bool = False
    slow_response_seconds: float = Field(default=5.0, gt=0)
    health_check_interval: float | None = Field(default=None, gt=0)

    def to_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(**self.model_dump())


class RetrySettings(BaseModel):
    """Retry policy settings."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0)
    attempt_timeout: float = Field(default=30.0, gt=0.0)
    strategy: RetryStrategy = RetryStrategy.Exponential
    adapt_to_error: bool = False

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(**self.model_dump())


class QuotaSettings(BaseModel):
    """Global quota alert thresholds (percent of the limit)."""

    warning_pct: float = Field(default=80.0, gt=0, le=100)
    critical_pct: float = Field(default=95.0, gt=0, le=100)


def default_models() -> list[ModelSettings]:
    """The stock model catalog used when none is configured."""
    return [
        ModelSettings(
            id="gemini-2.5-flash",
            name="Gemini 2.5 Flash",
            provider_kind=ProviderKind.Gemini,
            priority=1,
            quota_limit=2000,
            max_tokens=1000,
            cost_per_token=0.000075,
        ),
        ModelSettings(
            id="gemini-1.5-flash",
            name="Gemini 1.5 Flash",
            provider_kind=ProviderKind.Gemini,
            priority=2,
            quota_limit=1500,
            max_tokens=1000,
            cost_per_token=0.000075,
        ),
        ModelSettings(
            id="gemini-1.5-flash-8b",
            name="Gemini 1.5 Flash 8B",
            provider_kind=ProviderKind.Gemini,
            priority=3,
            quota_limit=4000,
            max_tokens=1000,
            cost_per_token=0.0000375,
        ),
    ]


class RouterSettings(BaseSettings):
    """Configuration settings for the model router.

    Settings can be loaded from environment variables, a YAML/JSON file, or
    passed as a dictionary. Environment variables are prefixed with
    'MODELROUTER_' and nested values use '__' (e.g.,
    MODELROUTER_RETRY__MAX_ATTEMPTS=5).

    Example:
        ```python
        # From environment variables
        settings = RouterSettings()

        # From dictionary
        settings = RouterSettings.from_dict({"retry": {"max_attempts": 2}})

        # From a configuration file
        settings = RouterSettings.from_file("router.yaml")
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="MODELROUTER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    models: list[ModelSettings] = Field(
        default_factory=default_models,
        description="Remote model catalog",
    )
    breaker: BreakerSettings = Field(default_factory=BreakerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)

    scheduler_interval_seconds: float = Field(
        default=3600.0,
        description="Seconds between quota reset ticks",
        gt=0,
    )
    transient_cooldown_seconds: float = Field(
        default=300.0,
        description="Cooldown before a transiently failed model is retried",
        ge=0,
    )
    quota_history_capacity: int = Field(
        default=288,
        description="Quota samples retained per model",
        ge=1,
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON (False for console output)",
    )
    config_file: str | None = Field(
        default=None,
        description="Optional YAML/JSON file with the model catalog",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level."""
        v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> RouterSettings:
        """Create settings from a dictionary.

        Args:
            config: Dictionary with configuration values.

        Returns:
            RouterSettings instance.
        """
        return cls(**config)

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> RouterSettings:
        """Create settings from a YAML or JSON configuration file.

        Args:
            path: File path. Falls back to MODELROUTER_CONFIG_FILE when None.

        Returns:
            RouterSettings instance.

        Raises:
            ConfigurationError: If the file is missing or invalid.
        """
        loader = ConfigurationFileLoader(path)
        config = loader.load()
        loader.validate_structure(config)
        if "models" in config:
            config["models"] = loader.parse_models(config)
        return cls.from_dict({**config, "config_file": str(loader.path)})

    @classmethod
    def load(cls) -> RouterSettings:
        """Load settings from the environment, honoring MODELROUTER_CONFIG_FILE.

        Returns:
            Settings from the configured file when one is set, otherwise from
            environment variables and defaults.
        """
        settings = cls()
        if settings.config_file:
            return cls.from_file(settings.config_file)
        return settings

    def build_model_descriptors(self) -> list[ModelDescriptor]:
        """Build descriptors for every configured remote model.

        Returns:
            Descriptors carrying the shared breaker config and thresholds.
        """
        breaker_config = self.breaker.to_config()
        return [
            ModelDescriptor(
                id=m.id,
                name=m.name,
                provider_kind=m.provider_kind,
                model=m.model,
                priority=m.priority,
                quota_limit=m.quota_limit,
                max_tokens=m.max_tokens,
                cost_per_token=m.cost_per_token,
                time_window=m.time_window,
                warning_pct=m.warning_pct if m.warning_pct is not None else self.quota.warning_pct,
                critical_pct=(
                    m.critical_pct if m.critical_pct is not None else self.quota.critical_pct
                ),
                breaker_config=breaker_config,
                history_capacity=self.quota_history_capacity,
                metadata=m.metadata,
            )
            for m in self.models
        ]
