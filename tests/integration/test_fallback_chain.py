"""Integration tests for the fallback chain and circuit breaker recovery."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from modelrouter.domain.components.retry_executor import RetryExecutor
from modelrouter.domain.models.circuit_breaker_state import CircuitState
from modelrouter.domain.models.model_descriptor import LOCAL_FALLBACK_ID, ProviderKind
from modelrouter.domain.models.router_response import ProviderResult
from modelrouter.domain.models.system_error import ErrorCategory, SystemError
from modelrouter.infrastructure.providers.openai_compatible import OpenAICompatibleInvoker
from modelrouter.router import ModelRouter
from tests.fixtures.fakes import MockObservabilityManager, RecordingSleep, ScriptedInvoker

ROUTER_CONFIG = {
    "models": [
        {"id": "primary", "name": "Primary", "priority": 1, "quota_limit": 10000},
        {"id": "secondary", "name": "Secondary", "priority": 2, "quota_limit": 10000},
    ],
    "breaker": {
        "failure_threshold": 2,
        "success_threshold": 1,
        "timeout": 0.05,
        "min_timeout": 0.01,
        "max_timeout": 1.0,
    },
    "retry": {"max_attempts": 2, "base_delay": 0.0, "jitter_ratio": 0.0},
    "transient_cooldown_seconds": 0,
}


def outage() -> SystemError:
    return SystemError(category=ErrorCategory.ProviderError, message="503 Service Unavailable")


@pytest.fixture
def invoker() -> ScriptedInvoker:
    return ScriptedInvoker()


@pytest.fixture
def router(invoker: ScriptedInvoker, observability: MockObservabilityManager) -> ModelRouter:
    return ModelRouter(
        invokers={ProviderKind.Gemini: invoker},
        observability_manager=observability,
        config=ROUTER_CONFIG,
        retry_executor=RetryExecutor(observability_manager=observability, sleep=RecordingSleep()),
    )


class TestFallbackChain:
    """Tests for falling through the priority order."""

    @pytest.mark.asyncio
    async def test_every_tier_in_order(
        self,
        invoker: ScriptedInvoker,
        observability: MockObservabilityManager,
    ) -> None:
        """Test primary, then secondary, then the local fallback as models fail."""
        router = ModelRouter(
            invokers={ProviderKind.Gemini: invoker},
            observability_manager=observability,
            config={**ROUTER_CONFIG, "transient_cooldown_seconds": 300},
            retry_executor=RetryExecutor(
                observability_manager=observability, sleep=RecordingSleep()
            ),
        )
        first = await router.generate_response("What services do you offer?")
        assert first.model_id == "primary"

        invoker.script("primary", outage(), outage())
        second = await router.generate_response("What services do you offer?")
        assert second.model_id == "secondary"

        invoker.script("secondary", outage(), outage())
        third = await router.generate_response("What services do you offer?")
        assert third.model_id == LOCAL_FALLBACK_ID
        assert third.fallback_used is True
        assert "development services" in third.content

        selected = [e["payload"]["model_id"] for e in observability.events_of("model_selected")]
        assert selected == ["primary", "primary", "secondary", "secondary"]

    @pytest.mark.asyncio
    async def test_breaker_opens_then_recovers(
        self,
        router: ModelRouter,
        invoker: ScriptedInvoker,
        observability: MockObservabilityManager,
    ) -> None:
        """Test the full CLOSED -> OPEN -> HALF_OPEN -> CLOSED cycle through routing."""
        primary = router.registry.get("primary")

        for _ in range(2):
            invoker.script("primary", outage(), outage())
            response = await router.generate_response("Hello")
            assert response.model_id == "secondary"
            # Zero cooldown: the next tick puts the model back in rotation
            await router.scheduler.tick()

        assert primary.circuit_breaker.state == CircuitState.Open
        assert primary.is_available is True

        calls_before = invoker.calls_for("primary")
        response = await router.generate_response("Hello")
        assert response.model_id == "secondary"
        assert invoker.calls_for("primary") == calls_before

        await asyncio.sleep(0.06)
        response = await router.generate_response("Hello")

        assert response.model_id == "primary"
        assert primary.circuit_breaker.state == CircuitState.Closed
        states = [
            e["payload"]["to_state"] for e in observability.events_of("circuit_state_transition")
        ]
        assert states == ["open", "half_open", "closed"]

    @pytest.mark.asyncio
    async def test_concurrent_requests_all_answered(
        self, router: ModelRouter, invoker: ScriptedInvoker
    ) -> None:
        """Test that concurrent requests keep quota accounting consistent."""
        invoker.default = ProviderResult(text="ok", tokens_used=5)

        responses = await asyncio.gather(
            *(router.generate_response(f"Question {i}") for i in range(20))
        )

        assert all(r.model_id == "primary" for r in responses)
        assert router.registry.get("primary").quota_used == 100
        assert len(router.registry.get("primary").quota_history) == 20


class TestHttpInvokerIntegration:
    """Tests routing through the HTTP invoker with a mocked transport."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error_body",
        [
            {"error": {"message": "Resource has been exhausted", "code": "quota_exceeded"}},
            [
                {
                    "error": {
                        "code": 429,
                        "message": "You exceeded your current quota, please check your plan.",
                        "status": "RESOURCE_EXHAUSTED",
                    }
                }
            ],
        ],
    )
    async def test_provider_quota_429_moves_to_next_model(
        self, observability: MockObservabilityManager, error_body
    ) -> None:
        """Test that a quota 429 from the provider disables the model until reset."""
        invoker = OpenAICompatibleInvoker.for_gemini("AIza-test-key")
        router = ModelRouter(
            invokers={ProviderKind.Gemini: invoker},
            observability_manager=observability,
            config=ROUTER_CONFIG,
        )

        request = httpx.Request("POST", "https://example.test/chat/completions")
        quota_response = httpx.Response(
            429,
            json=error_body,
            request=request,
        )
        ok_response = MagicMock()
        ok_response.raise_for_status = MagicMock()
        ok_response.json.return_value = {
            "choices": [{"message": {"content": "Answer from secondary"}}],
            "usage": {"total_tokens": 9},
        }

        async def post(url, json, headers):
            if json["model"] == "primary":
                raise httpx.HTTPStatusError("429", request=request, response=quota_response)
            return ok_response

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.post = AsyncMock(side_effect=post)
            mock_client.__aenter__ = AsyncMock(return_value=mock_client)
            mock_client.__aexit__ = AsyncMock(return_value=False)
            mock_client_class.return_value = mock_client

            response = await router.generate_response("Hello")

        primary = router.registry.get("primary")
        assert response.model_id == "secondary"
        assert response.content == "Answer from secondary"
        assert response.tokens_used == 9
        assert primary.is_available is False
        assert primary.last_error == "Quota exceeded"
        assert primary.circuit_breaker.state == CircuitState.Closed
        # Capacity errors are not retried
        assert mock_client.post.await_count == 2
