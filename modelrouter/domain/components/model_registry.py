"""ModelRegistry component: the catalog of routable models."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta

from modelrouter.domain.components.circuit_breaker import CircuitBreaker
from modelrouter.domain.components.quota_tracker import QuotaTracker
from modelrouter.domain.interfaces.observability_manager import ObservabilityManager
from modelrouter.domain.models.model_descriptor import (
    ModelDescriptor,
    ProviderKind,
    UnavailableReason,
)


class ModelRegistrationError(ValueError):
    """Raised when a model cannot be added to the registry."""

    pass


class ModelRegistry:
    """Owns every model descriptor, ordered by priority.

    One local fallback descriptor always exists. It has infinite quota, is
    never disabled and carries the numerically highest priority, so it is the
    last resort and never the first choice.

    Example:
        ```python
        registry = ModelRegistry(quota_tracker=tracker, observability_manager=obs)
        registry.register(ModelDescriptor(id="gemini-2.5-flash", ...))
        for model in registry.list_eligible():
            ...
        ```
    """

    def __init__(
        self,
        quota_tracker: QuotaTracker,
        observability_manager: ObservabilityManager,
        local_fallback: ModelDescriptor | None = None,
        transient_cooldown_seconds: float = 300.0,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        breaker_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize ModelRegistry.

        Args:
            quota_tracker: Tracker used for quota resets.
            observability_manager: ObservabilityManager for events and logging.
            local_fallback: Custom local fallback descriptor. Defaults to
                ModelDescriptor.local_fallback().
            transient_cooldown_seconds: How long a transiently failed model
                stays out of rotation before recovery is attempted.
            clock: Returns the current aware UTC datetime.
            breaker_clock: Monotonic clock handed to each circuit breaker.

        Raises:
            ModelRegistrationError: If local_fallback is not a local model.
        """
        self._quota_tracker = quota_tracker
        self._observability = observability_manager
        self._transient_cooldown = timedelta(seconds=transient_cooldown_seconds)
        self._clock = clock
        self._breaker_clock = breaker_clock

        fallback = local_fallback or ModelDescriptor.local_fallback()
        if not fallback.is_local_fallback:
            raise ModelRegistrationError(
                f"Local fallback '{fallback.id}' must use provider kind 'local'"
            )
        self._local_fallback = fallback
        self._models: dict[str, ModelDescriptor] = {fallback.id: fallback}

    @property
    def quota_tracker(self) -> QuotaTracker:
        return self._quota_tracker

    @property
    def local_fallback(self) -> ModelDescriptor:
        return self._local_fallback

    def register(self, model: ModelDescriptor) -> ModelDescriptor:
        """Add a remote model to the registry.

        Attaches a circuit breaker wired to the registry's clock and
        observability, and schedules the first quota reset.

        Args:
            model: Descriptor to register.

        Returns:
            The registered descriptor.

        Raises:
            ModelRegistrationError: If the id is already registered, the model
                is a local model, or its priority is not below the fallback's.
        """
        if model.id in self._models:
            raise ModelRegistrationError(f"Model '{model.id}' is already registered")
        if model.provider_kind == ProviderKind.Local:
            raise ModelRegistrationError(
                f"Model '{model.id}' uses provider kind 'local'; only one local fallback is allowed"
            )
        if model.priority >= self._local_fallback.priority:
            raise ModelRegistrationError(
                f"Model '{model.id}' priority {model.priority} must be below the "
                f"local fallback priority {self._local_fallback.priority}"
            )

        model.attach_circuit_breaker(
            CircuitBreaker(
                model.id,
                model.breaker_config,
                observability_manager=self._observability,
                clock=self._breaker_clock,
            )
        )
        if model.quota_reset_at is None and model.time_window is not None:
            model.quota_reset_at = model.time_window.calculate_next_reset(self._clock())

        self._models[model.id] = model
        return model

    def get(self, model_id: str) -> ModelDescriptor | None:
        return self._models.get(model_id)

    def list_models(self) -> list[ModelDescriptor]:
        """All models, local fallback included, ascending by priority."""
        return sorted(self._models.values(), key=lambda m: m.priority)

    def remote_models(self) -> list[ModelDescriptor]:
        return [m for m in self.list_models() if not m.is_local_fallback]

    def is_eligible(self, model: ModelDescriptor) -> bool:
        """Check whether a model may be selected right now.

        A remote model is eligible when it is available, has quota remaining,
        its breaker would admit a call and its usage is below the critical
        threshold. The local fallback is always eligible.
        """
        if model.is_local_fallback:
            return True
        return (
            model.is_available
            and model.has_quota_remaining
            and model.compute_quota_percentage() < model.critical_pct
            and model.circuit_breaker.is_call_permitted()
        )

    def list_eligible(self) -> list[ModelDescriptor]:
        """Eligible models ascending by priority; the local fallback is always last."""
        return [m for m in self.list_models() if self.is_eligible(m)]

    async def mark_unavailable(
        self,
        model: ModelDescriptor,
        reason: UnavailableReason,
        error_message: str,
    ) -> None:
        """Take a model out of rotation after a failed request.

        Transient failures get a cooldown after which ``recover_all`` restores
        the model. Permanent failures stay until ``reset_model``. The local
        fallback is never disabled.

        Args:
            model: Model that failed.
            reason: Why the model is being disabled.
            error_message: Error recorded as ``last_error``.
        """
        if model.is_local_fallback:
            return
        async with model.lock:
            model.is_available = False
            model.last_error = error_message
            if model.unavailable_reason == UnavailableReason.Permanent:
                return
            model.unavailable_reason = reason
            if reason == UnavailableReason.Transient:
                model.cooldown_until = self._clock() + self._transient_cooldown
            else:
                model.cooldown_until = None

    async def reset_all(self, now: datetime | None = None) -> list[str]:
        """Reset quotas whose window has elapsed.

        Args:
            now: Current time (defaults to the registry clock).

        Returns:
            Ids of models that were reset.
        """
        now = now or self._clock()
        reset_ids: list[str] = []
        for model in self.remote_models():
            try:
                if await self._quota_tracker.reset_if_due(model, now):
                    reset_ids.append(model.id)
            except Exception as e:
                await self._observability.log(
                    level="ERROR",
                    message=f"Failed to reset quota for model {model.id}: {e}",
                    context={"model_id": model.id},
                )
        return reset_ids

    async def recover_all(self, now: datetime | None = None) -> list[str]:
        """Restore transiently failed models whose cooldown has expired.

        Args:
            now: Current time (defaults to the registry clock).

        Returns:
            Ids of models put back into rotation.
        """
        now = now or self._clock()
        recovered: list[str] = []
        for model in self.remote_models():
            async with model.lock:
                if (
                    model.is_available
                    or model.unavailable_reason != UnavailableReason.Transient
                    or model.cooldown_until is None
                    or now < model.cooldown_until
                ):
                    continue
                model.is_available = True
                model.unavailable_reason = None
                model.cooldown_until = None
            recovered.append(model.id)

            try:
                await self._observability.emit_event(
                    event_type="model_recovered",
                    payload={"model_id": model.id, "reason": "cooldown_expired"},
                    metadata={"recovered_at": now.isoformat()},
                )
            except Exception as e:
                await self._observability.log(
                    level="WARNING",
                    message=f"Failed to emit model_recovered event: {e}",
                    context={"model_id": model.id},
                )
        return recovered

    async def reset_model(self, model_id: str) -> bool:
        """Clear failure, quota and breaker state for one model.

        Args:
            model_id: Model to reset.

        Returns:
            False if the model is unknown, True otherwise.
        """
        model = self._models.get(model_id)
        if model is None:
            return False
        await self._quota_tracker.reset_model(model)
        if not model.is_local_fallback:
            await model.circuit_breaker.reset()
        return True

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self.list_models())
