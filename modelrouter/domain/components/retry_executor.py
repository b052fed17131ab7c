"""RetryExecutor component: bounded retries with configurable backoff."""

from __future__ import annotations

import asyncio
import contextlib
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from modelrouter.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from modelrouter.domain.models.retry_policy import RetryAttempt, RetryPolicy, RetryResult
from modelrouter.domain.models.system_error import (
    ErrorCategory,
    RetryExhaustedError,
    SystemError,
)

T = TypeVar("T")


class SleepFunc(Protocol):
    """Async sleep signature, injectable for deterministic tests."""

    async def __call__(self, delay: float) -> Any: ...


def normalize_error(error: Exception) -> SystemError:
    """Convert any exception into a SystemError.

    Args:
        error: Exception raised by an attempt.

    Returns:
        The error itself if it is already a SystemError, otherwise a
        retryable UnknownError wrapping it.
    """
    if isinstance(error, SystemError):
        return error
    return SystemError(
        category=ErrorCategory.UnknownError,
        message=f"Unexpected error: {error}",
        provider_code=type(error).__name__,
        retryable=True,
        details={"original_error": repr(error)},
    )


class RetryExecutor:
    """Runs an async operation up to ``max_attempts`` times.

    Each attempt is bounded by ``policy.attempt_timeout``; an attempt timeout
    is a retryable TimeoutError. Non-retryable errors (capacity, validation,
    authentication, configuration) short-circuit immediately.

    With ``policy.adapt_to_error`` the attempts after the first failure follow
    ``RetryPolicy.for_error_category`` for that failure's category.
    """

    def __init__(
        self,
        observability_manager: ObservabilityManager | None = None,
        sleep: SleepFunc = asyncio.sleep,
        random_source: Callable[[], float] = random.random,
    ) -> None:
        """Initialize RetryExecutor.

        Args:
            observability_manager: Optional sink for retry logs.
            sleep: Async sleep used between attempts.
            random_source: Returns floats in [0, 1) for jitter.
        """
        self._observability = observability_manager
        self._sleep = sleep
        self._random = random_source

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        context: dict[str, Any] | None = None,
    ) -> RetryResult[T]:
        """Execute an operation with retries.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            policy: Retry policy to apply.
            context: Optional log context (model_id, request_id).

        Returns:
            RetryResult with the value and number of attempts used.

        Raises:
            RetryExhaustedError: If the last attempt failed or a non-retryable
                error occurred. Carries the attempt count and last error category.
        """
        started = time.monotonic()
        failures: list[RetryAttempt] = []
        attempt = 0

        while attempt < policy.max_attempts:
            attempt += 1
            delay = policy.delay_for_attempt(attempt, self._random())
            if delay > 0:
                await self._sleep(delay)

            try:
                value = await asyncio.wait_for(operation(), timeout=policy.attempt_timeout)
            except asyncio.TimeoutError:
                error = SystemError(
                    category=ErrorCategory.TimeoutError,
                    message=f"Attempt {attempt} timed out after {policy.attempt_timeout}s",
                    provider_code="attempt_timeout",
                    retryable=True,
                )
            except Exception as e:
                error = normalize_error(e)
            else:
                return RetryResult(
                    value=value,
                    attempts=attempt,
                    total_time=time.monotonic() - started,
                    failed_attempts=failures,
                )

            failures.append(RetryAttempt(attempt=attempt, delay=delay, error=error))

            if not error.retryable:
                await self._log(
                    "WARNING",
                    f"Non-retryable error on attempt {attempt}: {error.message}",
                    {**(context or {}), "category": error.category.value},
                )
                raise RetryExhaustedError(attempt, error) from error

            if attempt == 1 and policy.adapt_to_error:
                policy = RetryPolicy.for_error_category(error.category, base=policy)

            if attempt < policy.max_attempts:
                await self._log(
                    "INFO",
                    f"Attempt {attempt}/{policy.max_attempts} failed, retrying: {error.message}",
                    {**(context or {}), "category": error.category.value},
                )

        last_error = failures[-1].error
        await self._log(
            "WARNING",
            f"All {attempt} attempts failed: {last_error.message}",
            {**(context or {}), "category": last_error.category.value},
        )
        raise RetryExhaustedError(attempt, last_error) from last_error

    async def _log(self, level: str, message: str, context: dict[str, Any]) -> None:
        if self._observability is None:
            return
        with contextlib.suppress(ObservabilityError):
            await self._observability.log(level=level, message=message, context=context)
