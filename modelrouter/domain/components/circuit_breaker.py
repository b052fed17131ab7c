"""Per-model circuit breaker with adaptive open timeout."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, TypeVar

from modelrouter.domain.interfaces.observability_manager import (
    ObservabilityError,
    ObservabilityManager,
)
from modelrouter.domain.models.circuit_breaker_state import (
    CircuitBreakerConfig,
    CircuitBreakerState,
    CircuitState,
    HealthStatus,
)
from modelrouter.domain.models.state_transition import StateTransition
from modelrouter.domain.models.system_error import CircuitOpenError, ErrorKind, SystemError

T = TypeVar("T")

HealthCheck = Callable[[], Awaitable[bool]]
"""Async callable reporting whether the protected model is reachable."""


class CircuitBreaker:
    """Fail-fast guard around calls to a single model.

    CLOSED counts consecutive failures and opens at ``failure_threshold``.
    OPEN rejects every call with CircuitOpenError until ``timeout`` seconds
    have elapsed, then admits trial calls in HALF_OPEN. ``success_threshold``
    successful trial calls in a row close the circuit; any failed trial
    reopens it and, with ``adaptive_timeout``, lengthens the timeout by
    ``timeout_multiplier`` (clamped to ``[min_timeout, max_timeout]``).

    Capacity errors (quota exceeded) are neither failures nor successes.

    Two behaviours are opt-in through the config. ``dynamic_threshold``
    adjusts the failure threshold from the observed failure rate and latency.
    A health check registered with ``set_health_check`` can move an OPEN
    circuit to HALF_OPEN before its timeout, and runs every
    ``health_check_interval`` seconds once ``start_health_checks`` is called.

    The internal lock guards admission and bookkeeping only and is never held
    while the wrapped operation runs.
    """

    RESPONSE_TIME_HISTORY = 100

    def __init__(
        self,
        model_id: str,
        config: CircuitBreakerConfig | None = None,
        observability_manager: ObservabilityManager | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize CircuitBreaker.

        Args:
            model_id: Model this breaker protects.
            config: Breaker tuning. Defaults to CircuitBreakerConfig().
            observability_manager: Optional sink for state transition events.
            clock: Monotonic clock in seconds, injectable for tests.
        """
        self._model_id = model_id
        self._config = config or CircuitBreakerConfig()
        self._observability = observability_manager
        self._clock = clock
        self._state = CircuitBreakerState(timeout=self._config.timeout)
        self._lock = asyncio.Lock()
        self._response_times: deque[float] = deque(maxlen=self.RESPONSE_TIME_HISTORY)
        self._health_check: HealthCheck | None = None
        self._health_task: asyncio.Task[None] | None = None

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        """Stored circuit state (an elapsed OPEN becomes HALF_OPEN on the next call)."""
        return self._state.state

    def snapshot(self) -> CircuitBreakerState:
        """Return a copy of the breaker state."""
        return self._state.model_copy()

    def is_call_permitted(self) -> bool:
        """Check, without side effects, whether a call would be admitted.

        Returns:
            True if CLOSED, OPEN with the timeout elapsed, or HALF_OPEN with a
            free trial slot.
        """
        state = self._state
        if state.state == CircuitState.Closed:
            return True
        if state.state == CircuitState.Open:
            return self._timeout_elapsed()
        return state.half_open_in_flight < self._config.max_trials

    def _timeout_elapsed(self) -> bool:
        opened_at = self._state.opened_at
        return opened_at is None or self._clock() - opened_at >= self._state.timeout

    def failure_threshold(self) -> int:
        """Consecutive failures that open the circuit right now.

        Without ``dynamic_threshold`` this is the configured value. With it:

        - a failure rate above 50% scales the threshold by 0.7 (minimum 2)
        - a mean success latency above ``slow_response_seconds`` scales it
          by 0.8 (minimum 2)
        - more than 100 requests of history scale it by 1.2 (maximum 10)
        """
        threshold = self._config.failure_threshold
        if not self._config.dynamic_threshold:
            return threshold

        state = self._state
        if state.total_requests and state.total_failures / state.total_requests > 0.5:
            threshold = max(2, int(threshold * 0.7))
        if self._response_times:
            average = sum(self._response_times) / len(self._response_times)
            if average > self._config.slow_response_seconds:
                threshold = max(2, int(threshold * 0.8))
        if state.total_requests > 100:
            threshold = min(10, int(threshold * 1.2))
        return threshold

    def set_health_check(self, check: HealthCheck | None) -> None:
        """Register (or clear with None) the health check for this model."""
        self._health_check = check

    @property
    def health_checks_running(self) -> bool:
        return self._health_task is not None and not self._health_task.done()

    async def check_health(self) -> HealthStatus:
        """Run the registered health check once.

        A passing check moves an OPEN circuit to HALF_OPEN, so the next call
        is admitted as a trial call without waiting out the timeout. A check
        that raises counts as unhealthy.

        Returns:
            The recorded status, or Unknown when no check is registered.
        """
        if self._health_check is None:
            return HealthStatus.Unknown

        try:
            healthy = bool(await self._health_check())
        except Exception as e:
            healthy = False
            await self._log("WARNING", f"Health check failed: {e}")

        transition = None
        async with self._lock:
            state = self._state
            state.health_status = HealthStatus.Healthy if healthy else HealthStatus.Unhealthy
            state.last_health_check_at = datetime.now(UTC)
            if healthy and state.state == CircuitState.Open:
                transition = self._transition(CircuitState.HalfOpen, "health_check_passed")
                state.consecutive_successes = 0
                state.half_open_in_flight = 0
            status = state.health_status

        if transition:
            await self._emit_transition(transition)
        return status

    def start_health_checks(self) -> bool:
        """Start periodic health checks. Must be called from a running event loop.

        Returns:
            True if checks are running, False when no check or no
            ``health_check_interval`` is configured.
        """
        if self._health_check is None or self._config.health_check_interval is None:
            return False
        if not self.health_checks_running:
            self._health_task = asyncio.create_task(self._health_check_loop())
        return True

    async def stop_health_checks(self) -> None:
        """Cancel the periodic health check and wait for it to exit."""
        if self._health_task and not self._health_task.done():
            self._health_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._health_task
        self._health_task = None

    async def _health_check_loop(self) -> None:
        while True:
            interval = self._config.health_check_interval
            if interval is None:
                break
            try:
                await asyncio.sleep(interval)
                await self.check_health()
            except asyncio.CancelledError:
                break
            except Exception as e:
                await self._log("ERROR", f"Health check loop error: {e}")

    async def update_config(self, **changes: Any) -> CircuitBreakerConfig:
        """Change config fields at runtime.

        The merged config is validated before it is applied. A closed circuit
        adopts a new ``timeout`` at once. An open or half-open circuit keeps
        its current timeout, clamped to the new bounds. Health checks stop
        when ``health_check_interval`` becomes None.

        Args:
            **changes: CircuitBreakerConfig fields to replace.

        Returns:
            The new config.

        Raises:
            ValueError: If a field is unknown or the merged config is invalid.
        """
        unknown = set(changes) - set(CircuitBreakerConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown circuit breaker settings: {sorted(unknown)}")
        config = CircuitBreakerConfig(**{**self._config.model_dump(), **changes})

        async with self._lock:
            self._config = config
            state = self._state
            if state.state == CircuitState.Closed:
                state.timeout = config.timeout
            else:
                state.timeout = min(config.max_timeout, max(config.min_timeout, state.timeout))

        if config.health_check_interval is None:
            await self.stop_health_checks()
        await self._log(
            "INFO", "Circuit breaker config updated", {"changed_fields": sorted(changes)}
        )
        return config

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation through the breaker.

        Args:
            operation: Zero-argument coroutine factory performing the call.

        Returns:
            The operation's result.

        Raises:
            CircuitOpenError: If the circuit rejects the call.
            Exception: Whatever the operation raised, after bookkeeping.
        """
        is_trial = await self._admit()
        started = self._clock()
        try:
            result = await operation()
        except asyncio.CancelledError:
            await self._record_neutral(is_trial)
            raise
        except SystemError as e:
            if e.kind == ErrorKind.Capacity:
                await self._record_neutral(is_trial)
            else:
                await self._record_failure(is_trial, e)
            raise
        except Exception as e:
            await self._record_failure(is_trial, e)
            raise
        await self._record_success(is_trial, self._clock() - started)
        return result

    async def _admit(self) -> bool:
        transition = None
        async with self._lock:
            state = self._state
            if state.state == CircuitState.Open:
                if not self._timeout_elapsed():
                    retry_in = max(0.0, state.timeout - (self._clock() - (state.opened_at or 0.0)))
                    raise CircuitOpenError(self._model_id, retry_in)
                transition = self._transition(CircuitState.HalfOpen, "timeout_elapsed")
                state.consecutive_successes = 0
                state.half_open_in_flight = 0

            is_trial = state.state == CircuitState.HalfOpen
            if is_trial:
                if state.half_open_in_flight >= self._config.max_trials:
                    raise CircuitOpenError(self._model_id, 0.0)
                state.half_open_in_flight += 1
            state.total_requests += 1

        if transition:
            await self._emit_transition(transition)
        return is_trial

    def _release_trial(self, is_trial: bool) -> None:
        if is_trial and self._state.half_open_in_flight > 0:
            self._state.half_open_in_flight -= 1

    async def _record_neutral(self, is_trial: bool) -> None:
        async with self._lock:
            self._release_trial(is_trial)

    async def _record_success(self, is_trial: bool, elapsed: float) -> None:
        transition = None
        async with self._lock:
            state = self._state
            self._release_trial(is_trial)
            self._response_times.append(elapsed)
            state.total_successes += 1
            state.last_success_at = datetime.now(UTC)

            if state.state == CircuitState.Closed:
                state.consecutive_failures = 0
            elif state.state == CircuitState.HalfOpen:
                state.consecutive_successes += 1
                if state.consecutive_successes >= self._config.success_threshold:
                    transition = self._transition(CircuitState.Closed, "success_threshold_reached")
                    state.consecutive_failures = 0
                    state.consecutive_successes = 0
                    state.half_open_in_flight = 0
                    state.opened_at = None
                    state.timeout = self._config.timeout

        if transition:
            await self._emit_transition(transition)

    async def _record_failure(self, is_trial: bool, error: Exception) -> None:
        transition = None
        async with self._lock:
            state = self._state
            self._release_trial(is_trial)
            state.total_failures += 1
            state.last_failure_at = datetime.now(UTC)

            if state.state == CircuitState.Closed:
                state.consecutive_failures += 1
                state.consecutive_successes = 0
                if state.consecutive_failures >= self.failure_threshold():
                    transition = self._open("failure_threshold_reached", error)
            elif state.state == CircuitState.HalfOpen:
                if self._config.adaptive_timeout:
                    state.timeout = min(
                        self._config.max_timeout,
                        max(
                            self._config.min_timeout,
                            state.timeout * self._config.timeout_multiplier,
                        ),
                    )
                transition = self._open("trial_failed", error)

        if transition:
            await self._emit_transition(transition)

    def _open(self, trigger: str, error: Exception) -> StateTransition:
        transition = self._transition(
            CircuitState.Open,
            trigger,
            {"error": str(error), "timeout": self._state.timeout},
        )
        self._state.opened_at = self._clock()
        self._state.consecutive_successes = 0
        self._state.half_open_in_flight = 0
        return transition

    def _transition(
        self,
        to_state: CircuitState,
        trigger: str,
        context: dict[str, Any] | None = None,
    ) -> StateTransition:
        transition = StateTransition(
            entity_type="CircuitBreaker",
            entity_id=self._model_id,
            from_state=self._state.state.value,
            to_state=to_state.value,
            trigger=trigger,
            context=context or {},
        )
        self._state.state = to_state
        return transition

    async def _emit_transition(self, transition: StateTransition) -> None:
        if self._observability is None:
            return
        try:
            await self._observability.emit_event(
                event_type="circuit_state_transition",
                payload={
                    "model_id": self._model_id,
                    "from_state": transition.from_state,
                    "to_state": transition.to_state,
                    "trigger": transition.trigger,
                    **transition.context,
                },
                metadata={"timestamp": transition.transition_timestamp.isoformat()},
            )
        except Exception as e:
            await self._observability.log(
                level="WARNING",
                message=f"Failed to emit circuit_state_transition event: {e}",
                context={"model_id": self._model_id},
            )

    async def _log(self, level: str, message: str, context: dict[str, Any] | None = None) -> None:
        if self._observability is None:
            return
        with contextlib.suppress(ObservabilityError):
            await self._observability.log(
                level=level,
                message=message,
                context={"model_id": self._model_id, **(context or {})},
            )

    async def reset(self) -> None:
        """Manually return the breaker to CLOSED with cleared counters."""
        transition = None
        async with self._lock:
            if self._state.state != CircuitState.Closed:
                transition = self._transition(CircuitState.Closed, "manual")
            self._state = CircuitBreakerState(timeout=self._config.timeout)
            self._response_times.clear()
        if transition:
            await self._emit_transition(transition)

    def statistics(self) -> dict[str, Any]:
        """Return request totals, failure rate and response time stats."""
        state = self._state
        times = sorted(self._response_times)
        if times:
            response_times = {
                "average": sum(times) / len(times),
                "min": times[0],
                "max": times[-1],
                "p95": times[min(len(times) - 1, int(len(times) * 0.95))],
            }
        else:
            response_times = {"average": 0.0, "min": 0.0, "max": 0.0, "p95": 0.0}

        return {
            "model_id": self._model_id,
            "state": state.state.value,
            "total_requests": state.total_requests,
            "total_failures": state.total_failures,
            "total_successes": state.total_successes,
            "failure_rate": (
                state.total_failures / state.total_requests if state.total_requests else 0.0
            ),
            "consecutive_failures": state.consecutive_failures,
            "consecutive_successes": state.consecutive_successes,
            "failure_threshold": self.failure_threshold(),
            "timeout": state.timeout,
            "health_status": state.health_status.value,
            "response_times": response_times,
        }
