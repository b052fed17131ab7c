"""Tests for RouterSettings."""

import math
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from modelrouter.domain.models.model_descriptor import ProviderKind
from modelrouter.domain.models.retry_policy import RetryStrategy
from modelrouter.infrastructure.config.file_loader import ConfigurationError
from modelrouter.infrastructure.config.settings import ModelSettings, RouterSettings


class TestRouterSettings:
    """Tests for defaults and environment loading."""

    def test_defaults(self) -> None:
        settings = RouterSettings()

        assert [m.id for m in settings.models] == [
            "gemini-2.5-flash",
            "gemini-1.5-flash",
            "gemini-1.5-flash-8b",
        ]
        assert settings.breaker.failure_threshold == 5
        assert settings.retry.max_attempts == 3
        assert settings.quota.warning_pct == 80.0
        assert settings.quota.critical_pct == 95.0
        assert settings.scheduler_interval_seconds == 3600
        assert settings.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test prefixed and nested environment variables."""
        monkeypatch.setenv("MODELROUTER_LOG_LEVEL", "debug")
        monkeypatch.setenv("MODELROUTER_RETRY__MAX_ATTEMPTS", "5")
        monkeypatch.setenv("MODELROUTER_TRANSIENT_COOLDOWN_SECONDS", "45")

        settings = RouterSettings()

        assert settings.log_level == "DEBUG"
        assert settings.retry.max_attempts == 5
        assert settings.transient_cooldown_seconds == 45

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            RouterSettings(log_level="LOUD")

    def test_from_dict(self) -> None:
        settings = RouterSettings.from_dict({"breaker": {"failure_threshold": 2}})

        assert settings.breaker.to_config().failure_threshold == 2

    def test_retry_settings_to_policy(self) -> None:
        policy = RouterSettings(retry={"max_attempts": 4, "base_delay": 0.5}).retry.to_policy()

        assert policy.max_attempts == 4
        assert policy.base_delay == 0.5

    def test_opt_in_breaker_and_retry_options(self) -> None:
        """Test that dynamic thresholds, health checks and retry strategy pass through."""
        settings = RouterSettings.from_dict(
            {
                "breaker": {"dynamic_threshold": True, "health_check_interval": 15},
                "retry": {"strategy": "linear", "adapt_to_error": True},
            }
        )

        config = settings.breaker.to_config()
        policy = settings.retry.to_policy()

        assert config.dynamic_threshold is True
        assert config.health_check_interval == 15.0
        assert policy.strategy == RetryStrategy.Linear
        assert policy.adapt_to_error is True

    def test_opt_in_options_off_by_default(self) -> None:
        settings = RouterSettings()

        assert settings.breaker.to_config().dynamic_threshold is False
        assert settings.breaker.to_config().health_check_interval is None
        assert settings.retry.to_policy().strategy == RetryStrategy.Exponential


class TestBuildModelDescriptors:
    """Tests for build_model_descriptors."""

    def test_applies_global_thresholds_and_breaker(self) -> None:
        settings = RouterSettings(
            quota={"warning_pct": 70, "critical_pct": 90},
            breaker={"failure_threshold": 2, "timeout": 20, "min_timeout": 10},
            quota_history_capacity=12,
        )

        descriptors = settings.build_model_descriptors()

        first = descriptors[0]
        assert first.warning_pct == 70
        assert first.critical_pct == 90
        assert first.breaker_config.failure_threshold == 2
        assert first.quota_history.capacity == 12
        assert first.quota_limit == 2000

    def test_per_model_override(self) -> None:
        settings = RouterSettings(
            models=[
                ModelSettings(
                    id="m1",
                    name="Model One",
                    provider_kind=ProviderKind.OpenAI,
                    priority=1,
                    quota_limit=100,
                    critical_pct=99,
                )
            ]
        )

        descriptor = settings.build_model_descriptors()[0]

        assert descriptor.warning_pct == 80
        assert descriptor.critical_pct == 99
        assert descriptor.provider_model == "m1"


class TestFromFile:
    """Tests for file-based settings."""

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "router.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "models": [
                        {
                            "id": "local-llm",
                            "name": "Local LLM",
                            "provider_kind": "openai_compatible",
                            "model": "llama-3.1-8b",
                            "priority": 1,
                            "quota_limit": "unlimited",
                        }
                    ],
                    "retry": {"max_attempts": 1},
                    "scheduler_interval_seconds": 300,
                }
            ),
            encoding="utf-8",
        )

        settings = RouterSettings.from_file(path)

        assert settings.config_file == str(path)
        assert settings.retry.max_attempts == 1
        assert settings.scheduler_interval_seconds == 300
        model = settings.models[0]
        assert model.provider_kind == ProviderKind.OpenAICompatible
        assert math.isinf(model.quota_limit)
        assert settings.build_model_descriptors()[0].provider_model == "llama-3.1-8b"

    def test_from_file_rejects_unknown_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "router.yaml"
        path.write_text("providers: []\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            RouterSettings.from_file(path)

    def test_load_uses_config_file_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "router.yaml"
        path.write_text("retry:\n  max_attempts: 7\n", encoding="utf-8")
        monkeypatch.setenv("MODELROUTER_CONFIG_FILE", str(path))

        settings = RouterSettings.load()

        assert settings.retry.max_attempts == 7
        assert len(settings.models) == 3

    def test_load_without_file(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MODELROUTER_CONFIG_FILE", raising=False)

        assert RouterSettings.load().config_file is None
