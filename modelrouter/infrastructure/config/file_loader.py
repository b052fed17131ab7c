"""Configuration file loader for YAML and JSON files."""

import json
import math
import os
from pathlib import Path
from typing import Any

import yaml

from modelrouter.domain.models.model_descriptor import ProviderKind
from modelrouter.domain.models.quota import TimeWindow


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize ConfigurationError.

        Args:
            message: Human-readable error message.
            field: Optional field name that failed validation.
        """
        self.message = message
        self.field = field
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return error message with field name if available."""
        if self.field:
            return f"Configuration error in field '{self.field}': {self.message}"
        return self.message


class ConfigurationFileLoader:
    """Loads router configuration from YAML or JSON files.

    The file holds the model catalog plus optional breaker, retry, quota and
    scheduler sections, mirroring RouterSettings.
    """

    ALLOWED_KEYS = frozenset(
        {
            "models",
            "breaker",
            "retry",
            "quota",
            "scheduler_interval_seconds",
            "transient_cooldown_seconds",
            "quota_history_capacity",
            "log_level",
            "json_logs",
        }
    )
    SECTION_KEYS = ("breaker", "retry", "quota")

    def __init__(self, config_file_path: str | Path | None = None) -> None:
        """Initialize ConfigurationFileLoader.

        Args:
            config_file_path: Path to configuration file. If None, attempts to
                load from the MODELROUTER_CONFIG_FILE environment variable.

        Raises:
            ConfigurationError: If no path is available or the file does not exist.
        """
        if config_file_path is None:
            config_file_path = os.getenv("MODELROUTER_CONFIG_FILE")
            if not config_file_path:
                raise ConfigurationError(
                    "Configuration file path not provided and MODELROUTER_CONFIG_FILE "
                    "environment variable is not set"
                )

        self._config_path = Path(config_file_path)
        if not self._config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {self._config_path}")

    @property
    def path(self) -> Path:
        return self._config_path

    def load(self) -> dict[str, Any]:
        """Load configuration from file.

        Detects the format (YAML or JSON) from the file extension.

        Returns:
            Dictionary containing configuration data.

        Raises:
            ConfigurationError: If the format is unsupported or the file cannot be parsed.
        """
        suffix = self._config_path.suffix.lower()

        if suffix in (".yaml", ".yml"):
            return self._load_yaml()
        elif suffix == ".json":
            return self._load_json()
        else:
            raise ConfigurationError(
                f"Unsupported configuration file format: {suffix}. "
                "Supported formats: .yaml, .yml, .json"
            )

    def _load_yaml(self) -> dict[str, Any]:
        try:
            with self._config_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML format: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError("YAML file must contain a dictionary/mapping")
        return data

    def _load_json(self) -> dict[str, Any]:
        try:
            with self._config_path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON format: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("JSON file must contain an object")
        return data

    def parse_models(self, config: dict[str, Any]) -> list[dict[str, Any]]:
        """Parse and validate the models section.

        Args:
            config: Configuration dictionary loaded from file.

        Returns:
            List of model configuration dictionaries. Each contains:
            - id: str (required) - Unique model identifier
            - name: str (required) - Display name
            - priority: int (required) - Lower is preferred
            - quota_limit: number (required) - Tokens per window
            - provider_kind, model, max_tokens, cost_per_token, time_window,
              warning_pct, critical_pct, metadata (optional)

        Raises:
            ConfigurationError: If the models section is invalid.
        """
        models_config = config.get("models", [])
        if not isinstance(models_config, list):
            raise ConfigurationError("Configuration 'models' must be a list", field="models")

        parsed_models = []
        seen_ids: set[str] = set()
        for idx, model_config in enumerate(models_config):
            prefix = f"models[{idx}]"
            if not isinstance(model_config, dict):
                raise ConfigurationError(
                    f"Model configuration at index {idx} must be a dictionary",
                    field=prefix,
                )

            for required in ("id", "name", "priority", "quota_limit"):
                if required not in model_config:
                    raise ConfigurationError(
                        f"Model configuration at index {idx} missing required field '{required}'",
                        field=f"{prefix}.{required}",
                    )

            for text_field in ("id", "name"):
                value = model_config[text_field]
                if not isinstance(value, str) or not value.strip():
                    raise ConfigurationError(
                        f"Model configuration at index {idx} has invalid '{text_field}' "
                        "(must be non-empty string)",
                        field=f"{prefix}.{text_field}",
                    )

            model_id = model_config["id"].strip()
            if model_id in seen_ids:
                raise ConfigurationError(
                    f"Duplicate model id '{model_id}'",
                    field=f"{prefix}.id",
                )
            seen_ids.add(model_id)

            priority = model_config["priority"]
            if not isinstance(priority, int) or isinstance(priority, bool) or priority < 0:
                raise ConfigurationError(
                    f"Model configuration at index {idx} has invalid 'priority' "
                    "(must be a non-negative integer)",
                    field=f"{prefix}.priority",
                )

            quota_limit = self._parse_quota_limit(model_config["quota_limit"], prefix)

            provider_kind = model_config.get("provider_kind", ProviderKind.Gemini.value)
            try:
                provider_kind = ProviderKind(provider_kind)
            except ValueError:
                raise ConfigurationError(
                    f"Unknown provider kind '{provider_kind}'. "
                    f"Allowed: {', '.join(k.value for k in ProviderKind)}",
                    field=f"{prefix}.provider_kind",
                ) from None
            if provider_kind == ProviderKind.Local:
                raise ConfigurationError(
                    "The local fallback is built in and cannot be configured",
                    field=f"{prefix}.provider_kind",
                )

            time_window = model_config.get("time_window", TimeWindow.Daily.value)
            if time_window is not None:
                try:
                    time_window = TimeWindow(time_window)
                except ValueError:
                    raise ConfigurationError(
                        f"Unknown time window '{time_window}'. "
                        f"Allowed: {', '.join(w.value for w in TimeWindow)}",
                        field=f"{prefix}.time_window",
                    ) from None

            if "metadata" in model_config and not isinstance(model_config["metadata"], dict):
                raise ConfigurationError(
                    f"Model configuration at index {idx} has invalid 'metadata' "
                    "(must be a dictionary)",
                    field=f"{prefix}.metadata",
                )

            parsed = {
                "id": model_id,
                "name": model_config["name"].strip(),
                "provider_kind": provider_kind,
                "priority": priority,
                "quota_limit": quota_limit,
                "time_window": time_window,
                "metadata": model_config.get("metadata", {}),
            }
            for optional in ("model", "max_tokens", "cost_per_token", "warning_pct", "critical_pct"):
                if optional in model_config:
                    parsed[optional] = model_config[optional]
            parsed_models.append(parsed)

        return parsed_models

    @staticmethod
    def _parse_quota_limit(value: Any, prefix: str) -> float:
        if isinstance(value, str) and value.strip().lower() in ("inf", "infinity", "unlimited"):
            return math.inf
        if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
            raise ConfigurationError(
                "Invalid 'quota_limit' (must be a positive number or 'unlimited')",
                field=f"{prefix}.quota_limit",
            )
        return float(value)

    def validate_structure(self, config: dict[str, Any]) -> None:
        """Validate configuration file structure.

        Ensures only known top-level keys are present and that each section
        has the expected shape.

        Args:
            config: Configuration dictionary to validate.

        Raises:
            ConfigurationError: If configuration structure is invalid.
        """
        if not isinstance(config, dict):
            raise ConfigurationError("Configuration must be a dictionary")

        for key in config:
            if key not in self.ALLOWED_KEYS:
                raise ConfigurationError(
                    f"Unknown configuration key: '{key}'. "
                    f"Allowed keys: {', '.join(sorted(self.ALLOWED_KEYS))}",
                    field=key,
                )

        for section in self.SECTION_KEYS:
            if section in config and not isinstance(config[section], dict):
                raise ConfigurationError(
                    f"Configuration '{section}' must be a dictionary",
                    field=section,
                )

        if "models" in config:
            self.parse_models(config)
