"""ProviderInvoker abstract interface for remote model calls.

The router treats every remote model SDK as an opaque invocation function.
Invokers translate a prompt into one provider call and normalize failures to
``SystemError`` so the retry executor and circuit breaker can classify them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from modelrouter.domain.models.model_descriptor import ModelDescriptor
    from modelrouter.domain.models.router_response import ProviderResult


class ProviderInvoker(ABC):
    """Abstract interface for provider-specific model invocation.

    One invoker is registered per ProviderKind. Implementations must not
    mutate the descriptor; quota and availability are owned by the router.

    Example Usage:
        ```python
        class EchoInvoker(ProviderInvoker):
            async def invoke(self, model, prompt):
                return ProviderResult(text=prompt, tokens_used=len(prompt) // 4)
        ```
    """

    @abstractmethod
    async def invoke(self, model: ModelDescriptor, prompt: str) -> ProviderResult:
        """Invoke the model with a prompt.

        Args:
            model: Descriptor of the model to call.
            prompt: Prompt text.

        Returns:
            ProviderResult with the generated text and, when the provider
            reports it, the token count.

        Raises:
            SystemError: If the call fails. The category decides whether the
                failure is retried, counted by the breaker, or disables the model.
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the invoker."""


class ProviderInvokerProtocol(Protocol):
    """Structural type for invokers that do not subclass ProviderInvoker."""

    async def invoke(self, model: ModelDescriptor, prompt: str) -> ProviderResult:
        """Invoke the model with a prompt."""
        ...
