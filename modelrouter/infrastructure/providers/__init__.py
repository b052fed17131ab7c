"""Provider invoker implementations."""

from modelrouter.infrastructure.providers.openai_compatible import (
    GEMINI_OPENAI_BASE_URL,
    OPENAI_BASE_URL,
    OpenAICompatibleInvoker,
)

__all__ = ["GEMINI_OPENAI_BASE_URL", "OPENAI_BASE_URL", "OpenAICompatibleInvoker"]
