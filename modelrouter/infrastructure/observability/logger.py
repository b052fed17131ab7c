"""Structured logging for routing events."""

import logging
import re
from datetime import UTC, datetime
from typing import Any

import structlog

from modelrouter.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)

_SECRET_FIELDS = {"api_key", "authorization", "token", "secret"}
_SECRET_PATTERN = re.compile(r"\b(sk-|pk-|AIza|xai-|anthropic-)[A-Za-z0-9_\-]{16,}")

EVENT_LEVELS: dict[str, str] = {
    "quota_warning": "WARNING",
    "model_marked_unavailable": "WARNING",
    "fallback_used": "WARNING",
    "quota_critical": "ERROR",
    "request_failed": "ERROR",
}
"""Severity for event types that should stand out from routine INFO traffic."""


def sanitize_for_logging(data: Any) -> Any:
    """Sanitize data to remove credentials before logging.

    Redacts values stored under credential-like keys and masks strings that
    look like provider API keys, recursively through dicts and lists.

    Args:
        data: Data structure to sanitize (dict, list, or primitive).

    Returns:
        Sanitized copy of the data structure.
    """
    if isinstance(data, dict):
        return {
            key: "[REDACTED]"
            if isinstance(key, str) and key.lower() in _SECRET_FIELDS
            else sanitize_for_logging(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [sanitize_for_logging(item) for item in data]
    if isinstance(data, str):
        return _SECRET_PATTERN.sub("[REDACTED]", data)
    return data


def level_for_event(event_type: str, payload: dict[str, Any]) -> str:
    """Pick the log level an event is written at.

    A breaker transition into ``open`` is a warning; every other transition
    is routine.

    Args:
        event_type: Event name as emitted by the components.
        payload: Event payload.

    Returns:
        Upper-case level name.
    """
    if event_type == "circuit_state_transition":
        return "WARNING" if payload.get("to_state") == "open" else "INFO"
    return EVENT_LEVELS.get(event_type, "INFO")


def configure_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """Configure structlog on top of the standard logging module.

    Args:
        log_level: Root logging level name.
        json_format: Render JSON lines when True, coloured console output
            otherwise.
    """
    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(message)s" if json_format else "%(asctime)s %(levelname)s %(message)s",
    )


class DefaultObservabilityManager(ObservabilityManager):
    """ObservabilityManager writing events and messages through structlog.

    Events become log records named after their type, at the level given by
    ``level_for_event``, so quota alerts and failed requests surface as
    warnings and errors rather than routine INFO lines.
    """

    def __init__(
        self,
        log_level: str = "INFO",
        json_format: bool = True,
        logger_name: str = "modelrouter",
    ) -> None:
        """Initialize DefaultObservabilityManager.

        Args:
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            json_format: If True, render events as JSON. If False, use the
                human-readable console renderer (development mode).
            logger_name: Name of the underlying logger.
        """
        self._log_level = log_level.upper()
        configure_logging(self._log_level, json_format)
        self._logger = structlog.get_logger(logger_name)

    @property
    def log_level(self) -> str:
        return self._log_level

    def _method_for(self, level: str) -> Any:
        return getattr(self._logger, level.lower(), self._logger.info)

    async def emit_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Emit an event as a structured log record.

        Args:
            event_type: Type of event (e.g., "model_selected", "quota_critical").
            payload: Event payload data.
            metadata: Optional metadata (request_id, timestamp, etc.).

        Raises:
            ObservabilityError: If event emission fails.
        """
        try:
            fields = sanitize_for_logging(payload)
            if metadata:
                fields["metadata"] = {
                    "timestamp": datetime.now(UTC).isoformat(),
                    **sanitize_for_logging(metadata),
                }
            self._method_for(level_for_event(event_type, payload))(
                event_type, event_type=event_type, **fields
            )
        except Exception as e:
            raise ObservabilityError(f"Failed to emit event '{event_type}': {e}") from e

    async def log(
        self,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Log a message with structured context.

        Raises:
            ObservabilityError: If logging fails.
        """
        try:
            self._method_for(level)(
                sanitize_for_logging(message), **sanitize_for_logging(context or {})
            )
        except Exception as e:
            raise ObservabilityError(f"Failed to log message: {e}") from e
