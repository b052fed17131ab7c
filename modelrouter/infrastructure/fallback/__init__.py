"""Local fallback responders."""

from modelrouter.infrastructure.fallback.template_responder import (
    TemplateFallbackResponder,
    detect_locale,
)

__all__ = ["TemplateFallbackResponder", "detect_locale"]
