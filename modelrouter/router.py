"""ModelRouter - main orchestrator for resilient multi-model generation."""

from __future__ import annotations

import contextlib
import math
import time
from collections.abc import Mapping
from typing import Any

from modelrouter.domain.components.circuit_breaker import HealthCheck
from modelrouter.domain.components.model_registry import ModelRegistry
from modelrouter.domain.components.quota_reset_scheduler import QuotaResetScheduler
from modelrouter.domain.components.quota_tracker import QuotaTracker
from modelrouter.domain.components.retry_executor import RetryExecutor
from modelrouter.domain.interfaces.fallback_responder import LocalFallbackResponder
from modelrouter.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from modelrouter.domain.interfaces.provider_invoker import ProviderInvokerProtocol
from modelrouter.domain.interfaces.quota_listener import QuotaListener
from modelrouter.domain.models.circuit_breaker_state import CircuitState
from modelrouter.domain.models.model_descriptor import (
    ModelDescriptor,
    ProviderKind,
    UnavailableReason,
)
from modelrouter.domain.models.retry_policy import RetryPolicy
from modelrouter.domain.models.router_response import (
    ModelStatus,
    ProviderResult,
    RouterRequest,
    RouterResponse,
)
from modelrouter.domain.models.system_error import (
    CircuitOpenError,
    ErrorCategory,
    ErrorKind,
    SystemError,
)
from modelrouter.infrastructure.config.settings import RouterSettings
from modelrouter.infrastructure.fallback.template_responder import TemplateFallbackResponder
from modelrouter.infrastructure.observability.logger import DefaultObservabilityManager

GENERIC_FALLBACK_MESSAGE = (
    "I'm currently experiencing technical difficulties. Please try again in a "
    "moment or get in touch directly."
)

_UNAVAILABLE_REASON_BY_KIND = {
    ErrorKind.Transient: UnavailableReason.Transient,
    ErrorKind.Permanent: UnavailableReason.Permanent,
}


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


class ModelRouter:
    """Main entry point for the library.

    ModelRouter sends each prompt to the best eligible model, falls through
    the priority order on failure, and ends at the local fallback responder
    so that every call returns a response. It never raises to the caller.

    Example:
        ```python
        # Defaults from environment variables (MODELROUTER_*)
        router = ModelRouter(
            invokers={ProviderKind.Gemini: OpenAICompatibleInvoker.for_gemini(api_key)},
        )

        # Custom registry and retry policy
        router = ModelRouter(registry=my_registry, retry_policy=RetryPolicy(max_attempts=2))

        # Async context manager runs the quota reset scheduler
        async with ModelRouter(invokers=invokers) as router:
            response = await router.generate_response("Hello", context="home")
        ```
    """

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        invokers: Mapping[ProviderKind, ProviderInvokerProtocol] | None = None,
        retry_policy: RetryPolicy | None = None,
        fallback_responder: LocalFallbackResponder | None = None,
        observability_manager: ObservabilityManager | None = None,
        config: RouterSettings | dict[str, Any] | None = None,
        retry_executor: RetryExecutor | None = None,
    ) -> None:
        """Initialize ModelRouter with dependencies.

        Args:
            registry: Optional ModelRegistry. If not provided, one is built from
                the configured model catalog.
            invokers: Provider invokers keyed by ProviderKind.
            retry_policy: Optional RetryPolicy. Defaults to the configured policy.
            fallback_responder: Optional LocalFallbackResponder. Defaults to
                TemplateFallbackResponder with the packaged templates.
            observability_manager: Optional ObservabilityManager implementation.
                If not provided, defaults to DefaultObservabilityManager.
            config: Optional configuration. Can be:
                   - RouterSettings instance
                   - Dictionary with configuration values
                   - None (loads from environment variables)
            retry_executor: Optional RetryExecutor (e.g., with an injected sleep).

        Raises:
            ValueError: If configuration is invalid.
        """
        if config is None:
            self._config = RouterSettings()
        elif isinstance(config, dict):
            self._config = RouterSettings.from_dict(config)
        elif isinstance(config, RouterSettings):
            self._config = config
        else:
            raise ValueError(
                f"Invalid config type: {type(config)}. Expected RouterSettings, dict, or None"
            )

        if observability_manager is None:
            self._observability_manager: ObservabilityManager = DefaultObservabilityManager(
                log_level=self._config.log_level,
                json_format=self._config.json_logs,
            )
        else:
            self._observability_manager = observability_manager

        if registry is None:
            self._registry = ModelRegistry(
                quota_tracker=QuotaTracker(observability_manager=self._observability_manager),
                observability_manager=self._observability_manager,
                transient_cooldown_seconds=self._config.transient_cooldown_seconds,
            )
            for model in self._config.build_model_descriptors():
                self._registry.register(model)
        else:
            self._registry = registry

        self._invokers: dict[ProviderKind, ProviderInvokerProtocol] = dict(invokers or {})
        self._retry_policy = retry_policy or self._config.retry.to_policy()
        self._retry_executor = retry_executor or RetryExecutor(
            observability_manager=self._observability_manager
        )
        self._fallback_responder = fallback_responder or TemplateFallbackResponder()
        self._scheduler = QuotaResetScheduler(
            registry=self._registry,
            observability_manager=self._observability_manager,
            interval_seconds=self._config.scheduler_interval_seconds,
        )

    @classmethod
    def from_settings(
        cls,
        settings: RouterSettings | None = None,
        invokers: Mapping[ProviderKind, ProviderInvokerProtocol] | None = None,
        observability_manager: ObservabilityManager | None = None,
    ) -> ModelRouter:
        """Build a router from settings, loading MODELROUTER_CONFIG_FILE if set.

        Args:
            settings: Settings to use. Defaults to RouterSettings.load().
            invokers: Provider invokers keyed by ProviderKind.
            observability_manager: Optional ObservabilityManager implementation.

        Returns:
            A configured ModelRouter.
        """
        return cls(
            invokers=invokers,
            observability_manager=observability_manager,
            config=settings or RouterSettings.load(),
        )

    async def __aenter__(self) -> ModelRouter:
        """Async context manager entry; starts the quota reset scheduler.

        Returns:
            Self for use in async with statement.
        """
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit; stops the scheduler and closes invokers."""
        await self.close()

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def quota_tracker(self) -> QuotaTracker:
        return self._registry.quota_tracker

    @property
    def scheduler(self) -> QuotaResetScheduler:
        return self._scheduler

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def config(self) -> RouterSettings:
        return self._config

    @property
    def observability_manager(self) -> ObservabilityManager:
        return self._observability_manager

    async def start(self) -> None:
        """Run an initial reset pass and start the background tasks.

        Starts the quota reset scheduler and the periodic health check of
        every model whose breaker has a check and an interval configured.
        """
        await self._scheduler.tick()
        self._scheduler.start()
        for model in self._registry.remote_models():
            model.circuit_breaker.start_health_checks()

    async def close(self) -> None:
        """Stop background tasks and release invoker resources."""
        await self._scheduler.stop()
        for model in self._registry.remote_models():
            await model.circuit_breaker.stop_health_checks()
        for invoker in self._invokers.values():
            close = getattr(invoker, "close", None)
            if close is not None:
                await close()

    def register_invoker(self, provider_kind: ProviderKind, invoker: ProviderInvokerProtocol) -> None:
        """Register (or replace) the invoker used for a provider kind.

        Raises:
            ValueError: If provider_kind is the local kind.
        """
        if provider_kind == ProviderKind.Local:
            raise ValueError("The local fallback does not use an invoker")
        self._invokers[provider_kind] = invoker

    async def register_model(self, model: ModelDescriptor) -> ModelDescriptor:
        """Add a remote model to the registry.

        Args:
            model: Descriptor to register.

        Returns:
            The registered descriptor.

        Raises:
            ModelRegistrationError: If the model cannot be registered.
        """
        self._registry.register(model)
        await self._emit(
            "model_registered",
            {
                "model_id": model.id,
                "provider_kind": model.provider_kind.value,
                "priority": model.priority,
            },
        )
        return model

    def subscribe(self, listener: QuotaListener) -> None:
        """Subscribe a quota event listener."""
        self._registry.quota_tracker.subscribe(listener)

    def unsubscribe(self, listener: QuotaListener) -> None:
        self._registry.quota_tracker.unsubscribe(listener)

    async def generate_response(
        self,
        prompt: str,
        context: str | None = None,
        preferred_model_id: str | None = None,
        locale: str | None = None,
    ) -> RouterResponse:
        """Generate a response from the healthiest available model.

        Tries the preferred model (if eligible), then eligible models by
        priority. Each model call goes through its circuit breaker and the
        retry executor. When no remote model succeeds the local fallback
        answers.

        Args:
            prompt: Prompt text.
            context: Page context (e.g., "home", "services") for fallback templates.
            preferred_model_id: Model to try first if eligible.
            locale: Response locale for the fallback ("en" or "fr").

        Returns:
            RouterResponse. This method never raises.
        """
        started = time.perf_counter()
        try:
            request = RouterRequest(
                prompt=prompt,
                context=context,
                locale=locale,
                preferred_model_id=preferred_model_id,
            )
        except Exception as e:
            await self._log("ERROR", f"Invalid routing request: {e}")
            return await self._respond_locally(
                str(prompt or ""), context, locale, started, None, "invalid_request"
            )
        return await self.route(request, started=started)

    async def route(self, request: RouterRequest, started: float | None = None) -> RouterResponse:
        """Route a prepared request. Never raises.

        Args:
            request: The request to route.
            started: perf_counter() reading when the request arrived.

        Returns:
            RouterResponse from a remote model or the local fallback.
        """
        started = started if started is not None else time.perf_counter()
        try:
            return await self._route(request, started)
        except Exception as e:
            await self._log(
                "ERROR",
                f"Unexpected error while routing request: {e}",
                {"request_id": request.request_id, "error_type": type(e).__name__},
            )
            return await self._respond_locally(
                request.prompt,
                request.context,
                request.locale,
                started,
                request.request_id,
                "internal_error",
            )

    async def _route(self, request: RouterRequest, started: float) -> RouterResponse:
        excluded: set[str] = set()
        max_attempts = len(self._registry.remote_models())
        attempts = 0
        last_error: str | None = None

        # Cooldowns are shorter than the scheduler interval
        await self._registry.recover_all()

        await self._emit(
            "routing_started",
            {
                "preferred_model_id": request.preferred_model_id,
                "eligible_models": sum(
                    1 for m in self._registry.list_eligible() if not m.is_local_fallback
                ),
            },
            {"request_id": request.request_id},
        )

        while attempts < max_attempts:
            model = self._select_model(request.preferred_model_id, excluded)
            if model is None:
                break
            attempts += 1
            excluded.add(model.id)

            await self._emit(
                "model_selected",
                {
                    "model_id": model.id,
                    "priority": model.priority,
                    "attempt": attempts,
                    "preferred": model.id == request.preferred_model_id,
                },
                {"request_id": request.request_id},
            )

            try:
                result = await self._invoke(model, request)
            except CircuitOpenError as e:
                last_error = e.message
                await self._log(
                    "INFO",
                    f"Circuit open for model {model.id}, trying next model",
                    {"request_id": request.request_id, "model_id": model.id},
                )
                continue
            except SystemError as e:
                last_error = e.message
                await self._handle_failure(model, e, request)
                continue

            return await self._complete(model, request, result, started)

        return await self._respond_locally(
            request.prompt,
            request.context,
            request.locale,
            started,
            request.request_id,
            "no_remote_model_succeeded" if attempts else "no_eligible_model",
            last_error,
        )

    def _select_model(
        self, preferred_model_id: str | None, excluded: set[str]
    ) -> ModelDescriptor | None:
        if preferred_model_id and preferred_model_id not in excluded:
            preferred = self._registry.get(preferred_model_id)
            if (
                preferred is not None
                and not preferred.is_local_fallback
                and self._registry.is_eligible(preferred)
            ):
                return preferred

        for model in self._registry.list_eligible():
            if not model.is_local_fallback and model.id not in excluded:
                return model
        return None

    async def _invoke(self, model: ModelDescriptor, request: RouterRequest) -> ProviderResult:
        invoker = self._invokers.get(model.provider_kind)
        if invoker is None:
            raise SystemError(
                category=ErrorCategory.ConfigurationError,
                message=f"No invoker registered for provider kind '{model.provider_kind.value}'",
                provider_code="missing_invoker",
            )

        log_context = {"request_id": request.request_id, "model_id": model.id}

        async def call_with_retry() -> ProviderResult:
            retry_result = await self._retry_executor.execute(
                lambda: invoker.invoke(model, request.prompt),
                self._retry_policy,
                context=log_context,
            )
            return retry_result.value

        return await model.circuit_breaker.execute(call_with_retry)

    async def _handle_failure(
        self, model: ModelDescriptor, error: SystemError, request: RouterRequest
    ) -> None:
        kind = error.kind
        if kind == ErrorKind.Capacity:
            await self._registry.quota_tracker.mark_exhausted(model, error)
        else:
            await self._registry.mark_unavailable(
                model, _UNAVAILABLE_REASON_BY_KIND[kind], error.message
            )

        await self._emit(
            "request_failed",
            {
                "model_id": model.id,
                "category": error.category.value,
                "error_kind": kind.value,
                "error_message": error.message,
                "breaker_state": model.circuit_breaker.state.value,
            },
            {"request_id": request.request_id},
        )
        await self._emit(
            "model_marked_unavailable",
            {
                "model_id": model.id,
                "reason": (model.unavailable_reason or UnavailableReason.Transient).value,
            },
            {"request_id": request.request_id},
        )

    async def _complete(
        self,
        model: ModelDescriptor,
        request: RouterRequest,
        result: ProviderResult,
        started: float,
    ) -> RouterResponse:
        tokens = result.tokens_used if result.tokens_used is not None else estimate_tokens(result.text)
        await self._registry.quota_tracker.record_usage(model, tokens)

        response = RouterResponse(
            content=result.text,
            model=model.name,
            model_id=model.id,
            tokens_used=tokens,
            cost=tokens * model.cost_per_token,
            response_time_ms=(time.perf_counter() - started) * 1000,
            fallback_used=False,
            request_id=request.request_id,
        )
        await self._emit(
            "request_completed",
            {
                "model_id": model.id,
                "tokens_used": tokens,
                "cost": response.cost,
                "response_time_ms": round(response.response_time_ms, 2),
            },
            {"request_id": request.request_id},
        )
        return response

    async def _respond_locally(
        self,
        prompt: str,
        context: str | None,
        locale: str | None,
        started: float,
        request_id: str | None,
        reason: str,
        last_error: str | None = None,
    ) -> RouterResponse:
        local = self._registry.local_fallback
        try:
            content = self._fallback_responder.respond(prompt, context, locale)
        except Exception as e:
            await self._log(
                "ERROR",
                f"Local fallback responder failed: {e}",
                {"request_id": request_id},
            )
            content = GENERIC_FALLBACK_MESSAGE

        tokens = estimate_tokens(content)
        await self._emit(
            "fallback_used",
            {"reason": reason, "last_error": last_error, "page_context": context},
            {"request_id": request_id} if request_id else None,
        )
        return RouterResponse(
            content=content,
            model=local.name,
            model_id=local.id,
            tokens_used=tokens,
            cost=0.0,
            response_time_ms=(time.perf_counter() - started) * 1000,
            fallback_used=True,
            request_id=request_id,
        )

    async def get_model_status(self) -> list[ModelStatus]:
        """Return a read-only snapshot of every model, ascending by priority."""
        statuses = []
        for model in self._registry.list_models():
            async with model.lock:
                statuses.append(
                    ModelStatus(
                        id=model.id,
                        name=model.name,
                        provider_kind=model.provider_kind,
                        priority=model.priority,
                        is_available=model.is_available,
                        quota_used=model.quota_used,
                        quota_limit=model.quota_limit,
                        quota_percentage=model.compute_quota_percentage(),
                        breaker_state=(
                            CircuitState.Closed
                            if model.is_local_fallback
                            else model.circuit_breaker.state
                        ),
                        last_error=model.last_error,
                        unavailable_reason=model.unavailable_reason,
                        quota_reset_at=model.quota_reset_at,
                    )
                )
        return statuses

    async def reset_model(self, model_id: str) -> bool:
        """Clear failure, quota and breaker state for one model.

        Args:
            model_id: Model to reset.

        Returns:
            True if the model exists and was reset, False otherwise.
        """
        reset = await self._registry.reset_model(model_id)
        if reset:
            await self._emit("model_reset", {"model_id": model_id})
        return reset

    def set_health_check(self, model_id: str, check: HealthCheck | None) -> bool:
        """Attach a health check to a model's circuit breaker.

        The check runs every ``health_check_interval`` seconds once the router
        is started. A passing check lets an open circuit admit trial calls early.

        Returns:
            True if the model exists and is remote, False otherwise.
        """
        model = self._registry.get(model_id)
        if model is None or model.is_local_fallback:
            return False
        model.circuit_breaker.set_health_check(check)
        return True

    async def update_breaker_config(self, model_id: str, **changes: Any) -> bool:
        """Change one model's circuit breaker settings at runtime.

        Args:
            model_id: Model whose breaker is reconfigured.
            **changes: CircuitBreakerConfig fields to replace.

        Returns:
            True if the model exists and is remote, False otherwise.

        Raises:
            ValueError: If the changes are unknown fields or invalid.
        """
        model = self._registry.get(model_id)
        if model is None or model.is_local_fallback:
            return False
        model.breaker_config = await model.circuit_breaker.update_config(**changes)
        await self._emit(
            "breaker_config_updated",
            {"model_id": model_id, "changed_fields": sorted(changes)},
        )
        return True

    async def _emit(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._observability_manager.emit_event(
                event_type=event_type,
                payload=payload,
                metadata=metadata,
            )
        except Exception as e:
            await self._log("WARNING", f"Failed to emit {event_type} event: {e}", payload)

    async def _log(self, level: str, message: str, context: dict[str, Any] | None = None) -> None:
        with contextlib.suppress(ObservabilityError):
            await self._observability_manager.log(level=level, message=message, context=context)
