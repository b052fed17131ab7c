"""Tests for TemplateFallbackResponder."""

import pytest

from modelrouter.infrastructure.config.file_loader import ConfigurationError
from modelrouter.infrastructure.fallback.template_responder import (
    TemplateFallbackResponder,
    detect_locale,
)

MINIMAL_TEMPLATES = {
    "pages": {
        "default": {"en": "Default answer.", "fr": "Réponse par défaut."},
        "pricing": {"en": "Pricing page.", "fr": "Page tarifs."},
    },
    "intents": {
        "greeting": {
            "keywords": ["hello", "bonjour"],
            "en": "Hi there!",
            "fr": "Salut !",
        },
    },
}


@pytest.fixture
def responder() -> TemplateFallbackResponder:
    return TemplateFallbackResponder(MINIMAL_TEMPLATES)


class TestDetectLocale:
    """Tests for detect_locale."""

    @pytest.mark.parametrize(
        "prompt",
        ["Bonjour !", "Comment allez-vous ?", "merci beaucoup", "Pourquoi pas"],
    )
    def test_french(self, prompt: str) -> None:
        assert detect_locale(prompt) == "fr"

    @pytest.mark.parametrize("prompt", ["Hello", "What do you build?", ""])
    def test_english(self, prompt: str) -> None:
        assert detect_locale(prompt) == "en"


class TestRespond:
    """Tests for template selection."""

    def test_page_context_wins(self, responder: TemplateFallbackResponder) -> None:
        assert responder.respond("hello", page_context="pricing") == "Pricing page."

    def test_page_context_is_case_insensitive(self, responder: TemplateFallbackResponder) -> None:
        assert responder.respond("anything", page_context="  PRICING ") == "Pricing page."

    def test_intent_when_page_unknown(self, responder: TemplateFallbackResponder) -> None:
        assert responder.respond("hello!", page_context="blog") == "Hi there!"

    def test_default_when_nothing_matches(self, responder: TemplateFallbackResponder) -> None:
        assert responder.respond("What stack do you use?") == "Default answer."

    def test_keywords_match_whole_words(self, responder: TemplateFallbackResponder) -> None:
        assert responder.respond("Othello is a play") == "Default answer."

    def test_detects_french(self, responder: TemplateFallbackResponder) -> None:
        assert responder.respond("Bonjour") == "Salut !"

    def test_explicit_locale(self, responder: TemplateFallbackResponder) -> None:
        assert responder.respond("hello", locale="FR") == "Salut !"

    def test_unsupported_locale_falls_back_to_detection(
        self, responder: TemplateFallbackResponder
    ) -> None:
        assert responder.respond("hello", locale="de") == "Hi there!"

    def test_detect_intent(self, responder: TemplateFallbackResponder) -> None:
        assert responder.detect_intent("well, hello") == "greeting"
        assert responder.detect_intent("price list") is None

    def test_page_contexts(self, responder: TemplateFallbackResponder) -> None:
        assert responder.page_contexts == ["default", "pricing"]


class TestPackagedTemplates:
    """Tests for the templates shipped with the package."""

    def test_loads_packaged_templates(self) -> None:
        responder = TemplateFallbackResponder()

        assert {"home", "services", "projects", "contact", "default"} <= set(
            responder.page_contexts
        )

    @pytest.mark.parametrize(
        ("prompt", "intent"),
        [
            ("How much would a website cost?", "pricing"),
            ("Can I see your portfolio?", "portfolio"),
            ("Hey!", "greeting"),
        ],
    )
    def test_packaged_intents(self, prompt: str, intent: str) -> None:
        assert TemplateFallbackResponder().detect_intent(prompt) == intent

    def test_french_home_page(self) -> None:
        text = TemplateFallbackResponder().respond("Salut", page_context="home")

        assert text.startswith("Je suis un développeur full-stack")


class TestValidation:
    """Tests for template validation."""

    def test_default_page_required(self) -> None:
        with pytest.raises(ConfigurationError, match="default"):
            TemplateFallbackResponder({"pages": {"home": {"en": "a", "fr": "b"}}})

    def test_every_locale_required(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            TemplateFallbackResponder({"pages": {"default": {"en": "only english"}}})
        assert exc_info.value.field == "pages.default.fr"

    def test_intent_needs_keywords(self) -> None:
        templates = {
            "pages": {"default": {"en": "a", "fr": "b"}},
            "intents": {"empty": {"keywords": [], "en": "a", "fr": "b"}},
        }

        with pytest.raises(ConfigurationError, match="keyword"):
            TemplateFallbackResponder(templates)
