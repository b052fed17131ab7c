"""SystemError model for standardized error handling."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories of system errors."""

    AuthenticationError = "authentication_error"
    """Authentication failed (401/403, invalid API key)."""

    RateLimitError = "rate_limit_error"
    """Rate limit exceeded (429), retry later."""

    QuotaExceededError = "quota_exceeded_error"
    """Quota exhausted for the current window."""

    ProviderError = "provider_error"
    """Provider-side failure (5xx)."""

    TimeoutError = "timeout_error"
    """Request or attempt timeout."""

    NetworkError = "network_error"
    """Network connectivity issue (reset, refused, DNS)."""

    ValidationError = "validation_error"
    """Malformed request (400/404/422)."""

    ConfigurationError = "configuration_error"
    """Model is misconfigured (missing invoker, bad endpoint)."""

    CircuitOpenError = "circuit_open_error"
    """Call rejected by an open circuit breaker."""

    UnknownError = "unknown_error"
    """Unknown or unclassified error."""


class ErrorKind(str, Enum):
    """How the router reacts to an error category."""

    Transient = "transient"
    """Retried locally; may trip the breaker; model cools down."""

    Capacity = "capacity"
    """Not retried; model disabled until the quota window resets."""

    Permanent = "permanent"
    """Not retried; model disabled until manually reset."""


_KIND_BY_CATEGORY: dict[ErrorCategory, ErrorKind] = {
    ErrorCategory.AuthenticationError: ErrorKind.Permanent,
    ErrorCategory.ValidationError: ErrorKind.Permanent,
    ErrorCategory.ConfigurationError: ErrorKind.Permanent,
    ErrorCategory.QuotaExceededError: ErrorKind.Capacity,
}


def classify(category: ErrorCategory) -> ErrorKind:
    """Return the routing kind for an error category.

    Args:
        category: Error category to classify.

    Returns:
        ErrorKind for the category. Unlisted categories are transient.
    """
    return _KIND_BY_CATEGORY.get(category, ErrorKind.Transient)


class SystemError(Exception):
    """Standardized error for model invocation failures.

    SystemError normalizes provider failures to a consistent format so the
    retry executor, circuit breaker and router can react to the category
    instead of parsing messages.

    Example:
        ```python
        raise SystemError(
            category=ErrorCategory.QuotaExceededError,
            message="Daily quota exhausted",
            provider_code="insufficient_quota",
        )
        ```
    """

    def __init__(
        self,
        category: ErrorCategory | str,
        message: str,
        provider_code: str | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ) -> None:
        """Initialize SystemError.

        Args:
            category: Error category (ErrorCategory enum or string).
            message: Human-readable error message.
            provider_code: Original provider error code if available.
            retryable: Whether the error is retryable. Defaults to True for
                transient categories and False otherwise.
            details: Additional error details.
            retry_after: Retry after this many seconds (from Retry-After header).
        """
        self.category = ErrorCategory(category) if isinstance(category, str) else category
        self.message = message
        self.provider_code = provider_code
        self.retryable = (
            retryable if retryable is not None else self.kind == ErrorKind.Transient
        )
        self.details = details or {}
        self.retry_after = retry_after
        super().__init__(self.message)

    @property
    def kind(self) -> ErrorKind:
        """Routing kind derived from the category."""
        return classify(self.category)

    def __repr__(self) -> str:
        """String representation of the error."""
        return (
            f"{type(self).__name__}(category={self.category.value}, "
            f"message={self.message!r}, retryable={self.retryable})"
        )

    def __str__(self) -> str:
        """Human-readable error message."""
        return self.message


class CircuitOpenError(SystemError):
    """Raised when a circuit breaker rejects a call without invoking it."""

    def __init__(self, model_id: str, retry_in: float) -> None:
        """Initialize CircuitOpenError.

        Args:
            model_id: Model whose breaker is open.
            retry_in: Seconds until the breaker will admit a trial call.
        """
        super().__init__(
            category=ErrorCategory.CircuitOpenError,
            message=f"Circuit breaker is open for model {model_id}",
            provider_code="circuit_open",
            retryable=False,
            details={"model_id": model_id, "retry_in": retry_in},
        )
        self.model_id = model_id
        self.retry_in = retry_in


class RetryExhaustedError(SystemError):
    """Raised when every retry attempt has failed.

    Carries the category of the last error so callers can still tell a
    transient failure from a capacity or permanent one.
    """

    def __init__(self, attempts: int, last_error: SystemError) -> None:
        """Initialize RetryExhaustedError.

        Args:
            attempts: Number of attempts made.
            last_error: The error raised by the final attempt.
        """
        super().__init__(
            category=last_error.category,
            message=f"Failed after {attempts} attempt(s): {last_error.message}",
            provider_code=last_error.provider_code,
            retryable=False,
            details={**last_error.details, "attempts": attempts},
            retry_after=last_error.retry_after,
        )
        self.attempts = attempts
        self.last_error = last_error
