"""Tests for RetryExecutor component."""

import asyncio

import pytest

from modelrouter.domain.components.retry_executor import RetryExecutor, normalize_error
from modelrouter.domain.models.retry_policy import RetryPolicy, RetryStrategy
from modelrouter.domain.models.system_error import (
    ErrorCategory,
    RetryExhaustedError,
    SystemError,
)
from tests.fixtures.fakes import MockObservabilityManager, RecordingSleep


class FlakyOperation:
    """Operation failing a fixed number of times before succeeding."""

    def __init__(self, failures: list[Exception], result: str = "done") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def executor(sleep: RecordingSleep, observability: MockObservabilityManager) -> RetryExecutor:
    """Create an executor with deterministic jitter and no real sleeping."""
    return RetryExecutor(
        observability_manager=observability,
        sleep=sleep,
        random_source=lambda: 0.5,
    )


def provider_error(message: str = "upstream 503") -> SystemError:
    return SystemError(category=ErrorCategory.ProviderError, message=message)


class TestRetryExecutor:
    """Tests for RetryExecutor.execute."""

    @pytest.mark.asyncio
    async def test_first_attempt_success(self, executor: RetryExecutor, sleep: RecordingSleep) -> None:
        """Test that a successful first attempt does not sleep."""
        operation = FlakyOperation([])
        result = await executor.execute(operation, RetryPolicy())

        assert result.value == "done"
        assert result.attempts == 1
        assert result.failed_attempts == []
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_transient_errors_with_backoff(
        self, executor: RetryExecutor, sleep: RecordingSleep
    ) -> None:
        """Test exponential delays between attempts."""
        operation = FlakyOperation([provider_error(), provider_error()])
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, backoff_multiplier=2.0)

        result = await executor.execute(operation, policy)

        assert result.value == "done"
        assert result.attempts == 3
        assert len(result.failed_attempts) == 2
        assert sleep.delays == [pytest.approx(1.0), pytest.approx(2.0)]

    @pytest.mark.asyncio
    async def test_exhaustion_keeps_last_category(self, executor: RetryExecutor) -> None:
        """Test that exhaustion reports attempts and the last error category."""
        timeout = SystemError(category=ErrorCategory.TimeoutError, message="slow")
        operation = FlakyOperation([provider_error(), timeout, timeout])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(operation, RetryPolicy(max_attempts=3))

        error = exc_info.value
        assert error.attempts == 3
        assert error.category == ErrorCategory.TimeoutError
        assert error.last_error is timeout
        assert error.retryable is False
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_short_circuits(
        self, executor: RetryExecutor, sleep: RecordingSleep
    ) -> None:
        """Test that permanent errors are not retried."""
        auth = SystemError(category=ErrorCategory.AuthenticationError, message="bad key")
        operation = FlakyOperation([auth])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(operation, RetryPolicy(max_attempts=5))

        assert exc_info.value.attempts == 1
        assert exc_info.value.category == ErrorCategory.AuthenticationError
        assert operation.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_quota_error_short_circuits(self, executor: RetryExecutor) -> None:
        """Test that capacity errors are not retried."""
        quota = SystemError(category=ErrorCategory.QuotaExceededError, message="quota")
        operation = FlakyOperation([quota])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(operation, RetryPolicy(max_attempts=3))

        assert exc_info.value.category == ErrorCategory.QuotaExceededError
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_retried(self, executor: RetryExecutor) -> None:
        """Test that plain exceptions are normalized and retried."""
        operation = FlakyOperation([RuntimeError("socket closed")])

        result = await executor.execute(operation, RetryPolicy(max_attempts=2))

        assert result.attempts == 2
        assert result.failed_attempts[0].error.category == ErrorCategory.UnknownError

    @pytest.mark.asyncio
    async def test_attempt_timeout(self, executor: RetryExecutor) -> None:
        """Test that a hung attempt becomes a retryable timeout."""

        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(hang, RetryPolicy(max_attempts=2, attempt_timeout=0.01))

        assert exc_info.value.category == ErrorCategory.TimeoutError
        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_logs_retries(
        self, executor: RetryExecutor, observability: MockObservabilityManager
    ) -> None:
        """Test that retries are logged with context."""
        operation = FlakyOperation([provider_error()])

        await executor.execute(operation, RetryPolicy(max_attempts=2), context={"model_id": "m1"})

        info = observability.logs_at("INFO")
        assert len(info) == 1
        assert info[0]["context"]["model_id"] == "m1"
        assert info[0]["context"]["category"] == "provider_error"


    @pytest.mark.asyncio
    async def test_adapts_to_first_error_category(
        self, executor: RetryExecutor, sleep: RecordingSleep
    ) -> None:
        """Test that a network failure switches to the network preset."""
        network_down = [
            SystemError(category=ErrorCategory.NetworkError, message="connection reset")
            for _ in range(4)
        ]
        operation = FlakyOperation(network_down)
        policy = RetryPolicy(max_attempts=2, adapt_to_error=True)

        result = await executor.execute(operation, policy)

        assert result.attempts == 5
        assert sleep.delays == pytest.approx([1.0, 2.0, 4.0, 8.0])

    @pytest.mark.asyncio
    async def test_without_adaptation_policy_is_fixed(self, executor: RetryExecutor) -> None:
        network_down = [
            SystemError(category=ErrorCategory.NetworkError, message="connection reset")
            for _ in range(4)
        ]
        operation = FlakyOperation(network_down)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await executor.execute(operation, RetryPolicy(max_attempts=2))

        assert exc_info.value.attempts == 2
        assert operation.calls == 2


class TestRetryPolicy:
    """Tests for RetryPolicy delay computation."""

    def test_first_attempt_has_no_delay(self) -> None:
        assert RetryPolicy().delay_for_attempt(1) == 0.0

    def test_delay_is_capped(self) -> None:
        """Test that delays never exceed max_delay before jitter."""
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, backoff_multiplier=10.0, jitter_ratio=0.0)
        assert policy.delay_for_attempt(2) == pytest.approx(1.0)
        assert policy.delay_for_attempt(3) == pytest.approx(5.0)
        assert policy.delay_for_attempt(6) == pytest.approx(5.0)

    def test_jitter_bounds(self) -> None:
        """Test that jitter scales the delay by at most jitter_ratio."""
        policy = RetryPolicy(base_delay=10.0, jitter_ratio=0.2)
        assert policy.delay_for_attempt(2, rand=0.0) == pytest.approx(8.0)
        assert policy.delay_for_attempt(2, rand=1.0) == pytest.approx(12.0)

    def test_worst_case_seconds(self) -> None:
        policy = RetryPolicy(max_attempts=2, max_delay=10.0, jitter_ratio=0.0, attempt_timeout=5.0)
        assert policy.worst_case_seconds == pytest.approx(30.0)

    @pytest.mark.parametrize(
        ("strategy", "expected"),
        [
            (RetryStrategy.Exponential, [0.0, 1.0, 2.0, 4.0, 8.0]),
            (RetryStrategy.Linear, [0.0, 1.0, 2.0, 3.0, 4.0]),
            (RetryStrategy.Fixed, [0.0, 1.0, 1.0, 1.0, 1.0]),
            (RetryStrategy.Fibonacci, [0.0, 1.0, 1.0, 2.0, 3.0]),
        ],
    )
    def test_strategies(self, strategy: RetryStrategy, expected: list[float]) -> None:
        policy = RetryPolicy(strategy=strategy, base_delay=1.0, jitter_ratio=0.0)

        delays = [policy.delay_for_attempt(attempt) for attempt in range(1, 6)]

        assert delays == pytest.approx(expected)

    def test_fibonacci_sequence_is_bounded(self) -> None:
        """Test that retries past the table reuse its last entry, then the cap."""
        policy = RetryPolicy(
            strategy=RetryStrategy.Fibonacci, base_delay=1.0, max_delay=100.0, jitter_ratio=0.0
        )
        assert policy.delay_for_attempt(11) == pytest.approx(55.0)
        assert policy.delay_for_attempt(20) == pytest.approx(55.0)

    def test_for_error_category_presets(self) -> None:
        """Test the per-category presets keep the base attempt timeout."""
        base = RetryPolicy(attempt_timeout=7.0, adapt_to_error=True)

        network = RetryPolicy.for_error_category(ErrorCategory.NetworkError, base)
        rate_limit = RetryPolicy.for_error_category(ErrorCategory.RateLimitError, base)
        timeout = RetryPolicy.for_error_category(ErrorCategory.TimeoutError, base)

        assert (network.max_attempts, network.max_delay) == (5, 10.0)
        assert (rate_limit.max_attempts, rate_limit.backoff_multiplier) == (4, 2.5)
        assert (timeout.max_attempts, timeout.base_delay) == (3, 3.0)
        assert network.attempt_timeout == 7.0
        assert network.adapt_to_error is False

    def test_other_categories_keep_base_policy(self) -> None:
        base = RetryPolicy(max_attempts=2, base_delay=0.5)

        policy = RetryPolicy.for_error_category(ErrorCategory.ProviderError, base)

        assert policy.max_attempts == 2
        assert policy.base_delay == 0.5


class TestNormalizeError:
    """Tests for normalize_error."""

    def test_system_error_passes_through(self) -> None:
        error = provider_error()
        assert normalize_error(error) is error

    def test_wraps_other_exceptions(self) -> None:
        normalized = normalize_error(KeyError("choices"))
        assert normalized.category == ErrorCategory.UnknownError
        assert normalized.retryable is True
        assert normalized.provider_code == "KeyError"
