"""LocalFallbackResponder interface for the last-resort answer source."""

from abc import ABC, abstractmethod


class LocalFallbackResponder(ABC):
    """Produces a canned response when no remote model can answer.

    Implementations must be deterministic, free of side effects and must
    never raise.
    """

    @abstractmethod
    def respond(
        self,
        prompt: str,
        page_context: str | None = None,
        locale: str | None = None,
    ) -> str:
        """Return a fallback answer for the prompt.

        Args:
            prompt: The user's prompt.
            page_context: Page the request came from (e.g., "home", "contact").
            locale: Response locale ("en" or "fr"). Detected from the prompt if None.

        Returns:
            Response text.
        """
        pass
