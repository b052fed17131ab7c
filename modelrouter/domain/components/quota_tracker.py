"""QuotaTracker component for per-model token accounting and threshold alerts."""

from __future__ import annotations

import contextlib
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from modelrouter.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from modelrouter.domain.interfaces.quota_listener import (
    QuotaCriticalListener,
    QuotaListener,
    QuotaResetListener,
    QuotaWarningListener,
)
from modelrouter.domain.models.model_descriptor import ModelDescriptor, UnavailableReason
from modelrouter.domain.models.quota import QuotaEvent, QuotaEventType, QuotaSample
from modelrouter.domain.models.system_error import SystemError

QUOTA_EXCEEDED_MESSAGE = "Quota exceeded"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class QuotaTracker:
    """Tracks token usage per model and raises threshold events.

    Threshold events fire only on rising crossings: the percentage seen at
    the previous check is compared with the new one, so a model sitting above
    a threshold does not emit duplicates. A critical crossing takes the model
    out of rotation until its quota window resets.

    Listeners subscribe by capability (see ``quota_listener``) and only
    receive the event kinds whose protocol they implement.
    """

    def __init__(
        self,
        observability_manager: ObservabilityManager,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize QuotaTracker.

        Args:
            observability_manager: ObservabilityManager for events and logging.
            clock: Returns the current aware UTC datetime.
        """
        self._observability = observability_manager
        self._clock = clock
        self._listeners: list[QuotaListener] = []

    def subscribe(self, listener: QuotaListener) -> None:
        """Register a listener for the event kinds it implements.

        Raises:
            TypeError: If the listener implements none of the listener protocols.
        """
        if not isinstance(
            listener, (QuotaWarningListener, QuotaCriticalListener, QuotaResetListener)
        ):
            raise TypeError(
                f"{type(listener).__name__} implements no quota listener callback"
            )
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: QuotaListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def record_usage(self, model: ModelDescriptor, tokens: int) -> list[QuotaEvent]:
        """Record tokens consumed by a successful request.

        Resets the window first if it is due, then increments ``quota_used``,
        appends a history sample and runs the threshold check.

        Args:
            model: Model that served the request.
            tokens: Tokens consumed.

        Returns:
            Events emitted by this update (reset, warning, critical).

        Raises:
            ValueError: If tokens is negative.
        """
        if tokens < 0:
            raise ValueError("Tokens consumed must be non-negative")

        now = self._clock()
        events: list[QuotaEvent] = []
        async with model.lock:
            if model.quota_reset_at is not None and now >= model.quota_reset_at:
                events.append(self._reset_locked(model, now))

            model.quota_used += tokens
            model.quota_history.append(
                QuotaSample(timestamp=now, used=model.quota_used, limit=model.quota_limit)
            )
            events.extend(self._check_thresholds_locked(model))

        await self._dispatch(events)
        return events

    async def check_thresholds(self, model: ModelDescriptor) -> list[QuotaEvent]:
        """Recompute the usage percentage and emit any rising crossings.

        Args:
            model: Model to check.

        Returns:
            Warning and/or critical events fired by this check.
        """
        async with model.lock:
            events = self._check_thresholds_locked(model)
        await self._dispatch(events)
        return events

    def _check_thresholds_locked(self, model: ModelDescriptor) -> list[QuotaEvent]:
        previous = model.last_checked_percentage
        current = model.compute_quota_percentage()
        model.quota_percentage = current
        model.last_checked_percentage = current

        events: list[QuotaEvent] = []
        if previous < model.warning_pct <= current:
            events.append(self._event(QuotaEventType.Warning, model, model.warning_pct))
        if previous < model.critical_pct <= current:
            self._disable_for_capacity(model)
            events.append(self._event(QuotaEventType.Critical, model, model.critical_pct))
        return events

    async def mark_exhausted(
        self,
        model: ModelDescriptor,
        error: SystemError | None = None,
    ) -> list[QuotaEvent]:
        """Take a model out of rotation after a provider quota error.

        Forces the critical path even when the local counter has not crossed
        the threshold. Repeated calls for an already exhausted model emit nothing.

        Args:
            model: Model whose provider reported quota exhaustion.
            error: The provider error, if any.

        Returns:
            The critical event, or an empty list if already exhausted.
        """
        async with model.lock:
            already_exhausted = (
                not model.is_available
                and model.unavailable_reason == UnavailableReason.Capacity
            )
            self._disable_for_capacity(model)
            model.last_checked_percentage = max(model.last_checked_percentage, model.critical_pct)
            events = (
                []
                if already_exhausted
                else [self._event(QuotaEventType.Critical, model, model.critical_pct)]
            )

        if error is not None:
            await self._safe_log(
                "WARNING",
                f"Provider reported quota exhaustion for model {model.id}: {error.message}",
                {"model_id": model.id, "provider_code": error.provider_code},
            )
        await self._dispatch(events)
        return events

    def _disable_for_capacity(self, model: ModelDescriptor) -> None:
        model.is_available = False
        model.last_error = QUOTA_EXCEEDED_MESSAGE
        if model.unavailable_reason != UnavailableReason.Permanent:
            model.unavailable_reason = UnavailableReason.Capacity

    async def reset_if_due(self, model: ModelDescriptor, now: datetime | None = None) -> bool:
        """Reset the model's quota if its window has elapsed.

        Permanently disabled models get their counters reset but stay out of
        rotation until ``reset_model``.

        Args:
            model: Model to check.
            now: Current time (defaults to the tracker clock).

        Returns:
            True if a reset happened.
        """
        now = now or self._clock()
        async with model.lock:
            if model.quota_reset_at is None:
                if model.time_window is not None:
                    model.quota_reset_at = model.time_window.calculate_next_reset(now)
                return False
            if now < model.quota_reset_at:
                return False
            event = self._reset_locked(model, now)

        await self._dispatch([event])
        return True

    async def reset_model(self, model: ModelDescriptor) -> None:
        """Unconditionally clear quota counters and availability flags."""
        now = self._clock()
        async with model.lock:
            self._zero_counters(model, now)
            model.is_available = True
            model.last_error = None
            model.unavailable_reason = None
            model.cooldown_until = None

    def _reset_locked(self, model: ModelDescriptor, now: datetime) -> QuotaEvent:
        self._zero_counters(model, now)
        if model.unavailable_reason != UnavailableReason.Permanent:
            model.is_available = True
            model.last_error = None
            model.unavailable_reason = None
            model.cooldown_until = None
        return self._event(QuotaEventType.Reset, model, None)

    @staticmethod
    def _zero_counters(model: ModelDescriptor, now: datetime) -> None:
        model.quota_used = 0
        model.quota_percentage = 0.0
        model.last_checked_percentage = 0.0
        if model.time_window is not None:
            model.quota_reset_at = model.time_window.calculate_next_reset(now)

    def _event(
        self,
        event_type: QuotaEventType,
        model: ModelDescriptor,
        threshold_pct: float | None,
    ) -> QuotaEvent:
        return QuotaEvent(
            event_type=event_type,
            model_id=model.id,
            model_name=model.name,
            quota_used=model.quota_used,
            quota_limit=model.quota_limit,
            quota_percentage=model.quota_percentage,
            threshold_pct=threshold_pct,
            timestamp=self._clock(),
        )

    async def _dispatch(self, events: list[QuotaEvent]) -> None:
        for event in events:
            try:
                await self._observability.emit_event(
                    event_type=f"quota_{event.event_type.value}",
                    payload={
                        "model_id": event.model_id,
                        "quota_used": event.quota_used,
                        "quota_limit": event.quota_limit,
                        "quota_percentage": round(event.quota_percentage, 2),
                        "threshold_pct": event.threshold_pct,
                    },
                    metadata={"timestamp": event.timestamp.isoformat()},
                )
            except Exception as e:
                await self._safe_log(
                    "WARNING",
                    f"Failed to emit quota_{event.event_type.value} event: {e}",
                    {"model_id": event.model_id},
                )

            for listener in list(self._listeners):
                await self._notify(listener, event)

    async def _notify(self, listener: QuotaListener, event: QuotaEvent) -> None:
        try:
            if event.event_type == QuotaEventType.Warning:
                if isinstance(listener, QuotaWarningListener):
                    await listener.on_quota_warning(event)
            elif event.event_type == QuotaEventType.Critical:
                if isinstance(listener, QuotaCriticalListener):
                    await listener.on_quota_critical(event)
            elif isinstance(listener, QuotaResetListener):
                await listener.on_quota_reset(event)
        except Exception as e:
            await self._safe_log(
                "ERROR",
                f"Quota listener {type(listener).__name__} failed: {e}",
                {"model_id": event.model_id, "quota_event": event.event_type.value},
            )

    async def _safe_log(self, level: str, message: str, context: dict[str, Any]) -> None:
        with contextlib.suppress(ObservabilityError):
            await self._observability.log(level=level, message=message, context=context)
