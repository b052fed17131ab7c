"""Invoker for endpoints speaking the OpenAI chat completions protocol."""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from modelrouter.domain.interfaces.provider_invoker import ProviderInvoker
from modelrouter.domain.models.model_descriptor import ModelDescriptor
from modelrouter.domain.models.router_response import ProviderResult
from modelrouter.domain.models.system_error import ErrorCategory, SystemError

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai"
OPENAI_BASE_URL = "https://api.openai.com/v1"


class OpenAICompatibleInvoker(ProviderInvoker):
    """Calls ``POST {base_url}/chat/completions`` and normalizes the result.

    Works with OpenAI itself and with providers exposing a compatible
    endpoint (Gemini's OpenAI layer, local inference servers). HTTP failures
    are mapped to the SystemError taxonomy:

    - 401/403: AuthenticationError (permanent)
    - 400/404/422: ValidationError (permanent)
    - 429 with a quota error code, or Gemini RESOURCE_EXHAUSTED naming the
      quota: QuotaExceededError (capacity)
    - 429 otherwise: RateLimitError (retryable)
    - 5xx, timeouts, network errors: retryable transient errors
    """

    DEFAULT_TIMEOUT = 30.0
    """Default HTTP timeout in seconds."""

    QUOTA_ERROR_CODES = frozenset(
        {"insufficient_quota", "quota_exceeded", "billing_hard_limit_reached"}
    )
    """Provider error codes/types that mean the quota is exhausted, not throttled."""

    GEMINI_EXHAUSTED_STATUS = "RESOURCE_EXHAUSTED"
    GEMINI_QUOTA_FAILURE_TYPE = "google.rpc.QuotaFailure"

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENAI_BASE_URL,
        timeout: float | None = None,
        temperature: float = 0.7,
        provider_name: str = "openai",
    ) -> None:
        """Initialize OpenAICompatibleInvoker.

        Args:
            api_key: Bearer token for the endpoint.
            base_url: Endpoint root without the trailing '/chat/completions'.
            timeout: HTTP timeout override in seconds.
            temperature: Sampling temperature sent with each request.
            provider_name: Name used in error messages.

        Raises:
            ValueError: If api_key is empty.
        """
        if not api_key or not api_key.strip():
            raise ValueError("api_key cannot be empty")
        self._api_key = api_key.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.temperature = temperature
        self.provider_name = provider_name

    @classmethod
    def for_gemini(cls, api_key: str, timeout: float | None = None) -> OpenAICompatibleInvoker:
        """Create an invoker for Gemini's OpenAI-compatible endpoint."""
        return cls(
            api_key=api_key,
            base_url=GEMINI_OPENAI_BASE_URL,
            timeout=timeout,
            provider_name="gemini",
        )

    async def invoke(self, model: ModelDescriptor, prompt: str) -> ProviderResult:
        """Send the prompt as a single user message.

        Args:
            model: Descriptor of the model to call.
            prompt: Prompt text.

        Returns:
            ProviderResult with the first choice's content and total token usage.

        Raises:
            SystemError: If the request fails or the response is malformed.
        """
        payload = {
            "model": model.provider_model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": model.max_tokens,
            "temperature": self.temperature,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                )
                response.raise_for_status()
                response_data = response.json()
        except httpx.HTTPStatusError as e:
            raise self.map_error(e) from e
        except httpx.TimeoutException as e:
            raise SystemError(
                category=ErrorCategory.TimeoutError,
                message=f"Request to {self.provider_name} timed out after {self.timeout}s",
                provider_code="timeout",
                retryable=True,
            ) from e
        except httpx.NetworkError as e:
            raise SystemError(
                category=ErrorCategory.NetworkError,
                message=f"Network error connecting to {self.provider_name}: {e}",
                provider_code="network_error",
                retryable=True,
            ) from e
        except ValueError as e:
            raise SystemError(
                category=ErrorCategory.ProviderError,
                message=f"Invalid JSON from {self.provider_name}: {e}",
                provider_code="invalid_json",
                retryable=True,
            ) from e

        return self.normalize_response(response_data)

    def normalize_response(self, response_data: Any) -> ProviderResult:
        """Extract text and token usage from a chat completions payload.

        Raises:
            SystemError: If the payload has no message content.
        """
        try:
            content = response_data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise SystemError(
                category=ErrorCategory.ProviderError,
                message=f"Malformed response from {self.provider_name}: missing {e}",
                provider_code="malformed_response",
                retryable=True,
            ) from e
        if not isinstance(content, str):
            raise SystemError(
                category=ErrorCategory.ProviderError,
                message=f"Malformed response from {self.provider_name}: content is not text",
                provider_code="malformed_response",
                retryable=True,
            )

        usage = response_data.get("usage") or {}
        tokens = usage.get("total_tokens")
        return ProviderResult(
            text=content,
            tokens_used=tokens if isinstance(tokens, int) and tokens >= 0 else None,
        )

    def map_error(self, provider_error: Exception) -> SystemError:
        """Map an HTTP or transport error to a system error category.

        Args:
            provider_error: Exception raised by httpx.

        Returns:
            SystemError: Normalized error with appropriate category.
        """
        if isinstance(provider_error, httpx.HTTPStatusError):
            response = provider_error.response
            status_code = response.status_code
            retry_after = self._extract_retry_after(response)
            error_details = self._extract_error_details(response)
            error_message = error_details.get("message") or response.text or ""
            code = error_details.get("code")
            if code is not None:
                code = str(code)

            if status_code in (401, 403):
                return SystemError(
                    category=ErrorCategory.AuthenticationError,
                    message=error_message or f"{self.provider_name} authentication failed",
                    provider_code=code or "invalid_api_key",
                    retryable=False,
                    details=error_details,
                )
            elif status_code == 429:
                if self._is_quota_error(error_details):
                    return SystemError(
                        category=ErrorCategory.QuotaExceededError,
                        message=error_message or f"{self.provider_name} quota exceeded",
                        provider_code=code or "quota_exceeded",
                        retryable=False,
                        details=error_details,
                        retry_after=retry_after,
                    )
                return SystemError(
                    category=ErrorCategory.RateLimitError,
                    message=error_message or f"{self.provider_name} rate limit exceeded",
                    provider_code=code or "rate_limit_exceeded",
                    retryable=True,
                    details=error_details,
                    retry_after=retry_after,
                )
            elif status_code in (400, 404, 422):
                return SystemError(
                    category=ErrorCategory.ValidationError,
                    message=error_message or f"{self.provider_name} rejected the request",
                    provider_code=code or "validation_error",
                    retryable=False,
                    details=error_details,
                )
            elif 500 <= status_code < 600:
                return SystemError(
                    category=ErrorCategory.ProviderError,
                    message=error_message or f"{self.provider_name} server error ({status_code})",
                    provider_code=code or f"server_error_{status_code}",
                    retryable=True,
                    details=error_details,
                    retry_after=retry_after,
                )
            return SystemError(
                category=ErrorCategory.ProviderError,
                message=error_message or f"{self.provider_name} error ({status_code})",
                provider_code=code or f"http_error_{status_code}",
                retryable=False,
                details=error_details,
            )

        if isinstance(provider_error, httpx.TimeoutException):
            return SystemError(
                category=ErrorCategory.TimeoutError,
                message=f"Request to {self.provider_name} timed out",
                provider_code="timeout",
                retryable=True,
            )

        if isinstance(provider_error, httpx.NetworkError):
            return SystemError(
                category=ErrorCategory.NetworkError,
                message=f"Network error connecting to {self.provider_name}: {provider_error}",
                provider_code="network_error",
                retryable=True,
            )

        return SystemError(
            category=ErrorCategory.UnknownError,
            message=f"Unknown error from {self.provider_name}: {provider_error}",
            provider_code="unknown",
            retryable=False,
            details={"original_error": str(provider_error)},
        )

    def _is_quota_error(self, error_details: dict[str, Any]) -> bool:
        markers = {
            str(error_details.get(field) or "").lower() for field in ("code", "type", "status")
        }
        if markers & self.QUOTA_ERROR_CODES:
            return True

        # Gemini uses RESOURCE_EXHAUSTED for both throttling and spent quota
        if str(error_details.get("status") or "").upper() != self.GEMINI_EXHAUSTED_STATUS:
            return False
        for detail in error_details.get("details") or []:
            if isinstance(detail, dict) and str(detail.get("@type", "")).endswith(
                self.GEMINI_QUOTA_FAILURE_TYPE
            ):
                return True
        return "quota" in str(error_details.get("message") or "").lower()

    def _extract_retry_after(self, response: httpx.Response) -> int | None:
        """Extract the Retry-After header as seconds (integer or HTTP date)."""
        retry_after_header = response.headers.get("retry-after")
        if not retry_after_header:
            return None

        try:
            return int(retry_after_header)
        except ValueError:
            try:
                retry_date = parsedate_to_datetime(retry_after_header)
                delta = (retry_date - datetime.now(UTC)).total_seconds()
            except (ValueError, TypeError):
                return None
            return int(delta) if delta > 0 else None

    def _extract_error_details(self, response: httpx.Response) -> dict[str, Any]:
        """Extract error details from an OpenAI-style error body.

        Handles both ``{"error": {...}}`` and top-level error fields, and the
        list-wrapped form some compatible servers return.
        """
        details: dict[str, Any] = {}

        try:
            error_data = response.json()
        except ValueError:
            if response.text:
                details["message"] = response.text
            return details

        if isinstance(error_data, list) and error_data:
            error_data = error_data[0]
        if isinstance(error_data, dict):
            error_obj = error_data.get("error")
            source = error_obj if isinstance(error_obj, dict) else error_data
            details["message"] = source.get("message")
            details["type"] = source.get("type")
            details["code"] = source.get("code")
            details["status"] = source.get("status")
            if isinstance(source.get("details"), list):
                details["details"] = source["details"]
        return details
