"""Template-based local fallback responder."""

from __future__ import annotations

import re
from importlib import resources
from typing import Any

import yaml

from modelrouter.domain.interfaces.fallback_responder import LocalFallbackResponder
from modelrouter.domain.models.router_response import SUPPORTED_LOCALES
from modelrouter.infrastructure.config.file_loader import ConfigurationError

DEFAULT_LOCALE = "en"
DEFAULT_PAGE = "default"

_FRENCH_PATTERN = re.compile(
    r"\b(bonjour|salut|comment|pourquoi|où|quand|français|merci)\b",
    re.IGNORECASE,
)


def detect_locale(prompt: str) -> str:
    """Return 'fr' when the prompt contains common French words, else 'en'."""
    return "fr" if _FRENCH_PATTERN.search(prompt) else DEFAULT_LOCALE


class TemplateFallbackResponder(LocalFallbackResponder):
    """Answers from static bilingual templates.

    Template selection order:
    1. a template for the request's page context,
    2. the first intent whose keywords appear in the prompt,
    3. the default page template.

    Templates are validated when the responder is built, so ``respond``
    cannot fail.
    """

    def __init__(self, templates: dict[str, Any] | None = None) -> None:
        """Initialize TemplateFallbackResponder.

        Args:
            templates: Template mapping with "pages" and optional "intents"
                sections. Defaults to the packaged templates.yaml.

        Raises:
            ConfigurationError: If the templates are malformed.
        """
        if templates is None:
            templates = self.load_packaged_templates()
        self._pages = self._validate_pages(templates.get("pages"))
        self._intents = self._validate_intents(templates.get("intents") or {})

    @staticmethod
    def load_packaged_templates() -> dict[str, Any]:
        """Read the templates.yaml shipped with the package."""
        text = (
            resources.files("modelrouter.infrastructure.fallback")
            .joinpath("templates.yaml")
            .read_text(encoding="utf-8")
        )
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid fallback templates: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("Fallback templates must be a mapping")
        return data

    @staticmethod
    def _validate_localized(entry: Any, field: str) -> dict[str, str]:
        if not isinstance(entry, dict):
            raise ConfigurationError("Template must be a mapping", field=field)
        localized = {}
        for locale in SUPPORTED_LOCALES:
            text = entry.get(locale)
            if not isinstance(text, str) or not text.strip():
                raise ConfigurationError(
                    f"Template is missing '{locale}' text", field=f"{field}.{locale}"
                )
            localized[locale] = text.strip()
        return localized

    def _validate_pages(self, pages: Any) -> dict[str, dict[str, str]]:
        if not isinstance(pages, dict) or DEFAULT_PAGE not in pages:
            raise ConfigurationError(
                f"Templates must define a 'pages' mapping with a '{DEFAULT_PAGE}' entry",
                field="pages",
            )
        return {
            str(name).lower(): self._validate_localized(entry, f"pages.{name}")
            for name, entry in pages.items()
        }

    def _validate_intents(
        self, intents: Any
    ) -> list[tuple[str, re.Pattern[str], dict[str, str]]]:
        if not isinstance(intents, dict):
            raise ConfigurationError("'intents' must be a mapping", field="intents")
        compiled = []
        for name, entry in intents.items():
            keywords = entry.get("keywords") if isinstance(entry, dict) else None
            if not isinstance(keywords, list) or not keywords:
                raise ConfigurationError(
                    "Intent must list at least one keyword", field=f"intents.{name}.keywords"
                )
            pattern = re.compile(
                r"\b(" + "|".join(re.escape(str(k)) for k in keywords) + r")\b",
                re.IGNORECASE,
            )
            compiled.append(
                (str(name), pattern, self._validate_localized(entry, f"intents.{name}"))
            )
        return compiled

    @property
    def page_contexts(self) -> list[str]:
        return sorted(self._pages)

    def detect_intent(self, prompt: str) -> str | None:
        """Return the first intent whose keywords occur in the prompt."""
        for name, pattern, _ in self._intents:
            if pattern.search(prompt):
                return name
        return None

    def respond(
        self,
        prompt: str,
        page_context: str | None = None,
        locale: str | None = None,
    ) -> str:
        """Return the best-matching template text.

        Args:
            prompt: The user's prompt.
            page_context: Page the request came from.
            locale: "en" or "fr". Detected from the prompt when None or unsupported.

        Returns:
            Template text in the resolved locale.
        """
        prompt = prompt or ""
        if locale:
            locale = locale.lower()
        if locale not in SUPPORTED_LOCALES:
            locale = detect_locale(prompt)

        page = (page_context or "").strip().lower()
        if page and page != DEFAULT_PAGE and page in self._pages:
            return self._pages[page][locale]

        for _, pattern, texts in self._intents:
            if pattern.search(prompt):
                return texts[locale]

        return self._pages[DEFAULT_PAGE][locale]
