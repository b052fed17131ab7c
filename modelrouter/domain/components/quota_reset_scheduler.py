"""QuotaResetScheduler: periodic quota resets and cooldown recovery."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from datetime import UTC, datetime

from modelrouter.domain.components.model_registry import ModelRegistry
from modelrouter.domain.interfaces.observability_manager import ObservabilityManager


class QuotaResetScheduler:
    """Runs ``ModelRegistry.reset_all`` and ``recover_all`` on a fixed interval.

    The only state is the time of the last tick. ``tick`` can also be called
    directly, which is how tests drive it.
    """

    DEFAULT_INTERVAL_SECONDS = 3600.0

    def __init__(
        self,
        registry: ModelRegistry,
        observability_manager: ObservabilityManager,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize QuotaResetScheduler.

        Args:
            registry: Registry whose models are reset.
            observability_manager: ObservabilityManager for logging.
            interval_seconds: Seconds between ticks (hourly by default).
            clock: Returns the current aware UTC datetime.

        Raises:
            ValueError: If interval_seconds is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._registry = registry
        self._observability = observability_manager
        self._interval = interval_seconds
        self._clock = clock
        self._last_tick_at: datetime | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def last_tick_at(self) -> datetime | None:
        return self._last_tick_at

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self, now: datetime | None = None) -> tuple[list[str], list[str]]:
        """Run one reset and recovery pass.

        Args:
            now: Current time (defaults to the scheduler clock).

        Returns:
            Tuple of (reset model ids, recovered model ids).
        """
        now = now or self._clock()
        reset_ids = await self._registry.reset_all(now)
        recovered_ids = await self._registry.recover_all(now)
        self._last_tick_at = now

        if reset_ids or recovered_ids:
            await self._observability.log(
                level="INFO",
                message="Quota reset tick completed",
                context={
                    "reset_models": reset_ids,
                    "recovered_models": recovered_ids,
                    "tick_at": now.isoformat(),
                },
            )
        return reset_ids, recovered_ids

    def start(self) -> None:
        """Start the background loop. Must be called from a running event loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to exit."""
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._interval)
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                await self._observability.log(
                    level="ERROR",
                    message=f"Quota reset tick failed: {e}",
                    context={"interval_seconds": self._interval},
                )
