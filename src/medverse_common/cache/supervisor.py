"""Loading/timeout supervision around a boolean "is loading" signal.

States: IDLE -> LOADING -> (COMPLETED | TIMED_OUT). TIMED_OUT is an overlay on
LOADING; completion always wins and COMPLETED returns straight to IDLE.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any

from .eviction import ClearResult, SeverityLevel

if TYPE_CHECKING:
    from .manager import CacheManager

logger = logging.getLogger(__name__)


class LoadingState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    TIMED_OUT = "timed_out"


class LoadingSupervisor:
    """Tracks one loading signal as a registry operation with a soft deadline.

    The supervisor holds only the operation id; the registry owns the operation.
    If the id disappears from the registry (completed elsewhere or purged by a
    full clear) the episode is treated as completed.

    With a running event loop, ticks come from a timer task owned by the current
    episode. Without one, call ``tick()`` directly.
    """

    def __init__(
        self,
        manager: CacheManager,
        operation_name: str | None = None,
        timeout_ms: int | None = None,
        tick_ms: int | None = None,
        on_timeout: Callable[[], Any] | None = None,
        operation_id: str | None = None,
        auto_tick: bool = True,
    ) -> None:
        config = manager.config
        self.manager = manager
        self.operation_name = operation_name or config.default_operation_name
        self.timeout_ms = timeout_ms if timeout_ms is not None else config.max_load_time_ms
        self.tick_ms = tick_ms if tick_ms is not None else config.tick_interval_ms
        self.on_timeout = on_timeout
        self.auto_tick = auto_tick
        self._requested_id = operation_id

        if self.timeout_ms <= 0 or self.tick_ms <= 0:
            raise ValueError("timeout_ms and tick_ms must be positive")

        self._state = LoadingState.IDLE
        self._operation_id: str | None = None
        self._elapsed_ms = 0
        self._timeout_fired = False
        self._auto_levels: set[SeverityLevel] = set()
        self._episode = 0
        self._ticker: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._closed = False

    # -- observable state -------------------------------------------------

    @property
    def state(self) -> LoadingState:
        self._sync_with_registry()
        return self._state

    @property
    def is_loading(self) -> bool:
        return self.state is not LoadingState.IDLE

    @property
    def timed_out(self) -> bool:
        return self.state is LoadingState.TIMED_OUT

    @property
    def show_cache_options(self) -> bool:
        return self.timed_out

    @property
    def elapsed_ms(self) -> int:
        self._sync_with_registry()
        return self._elapsed_ms

    @property
    def operation_id(self) -> str | None:
        self._sync_with_registry()
        return self._operation_id

    @property
    def closed(self) -> bool:
        return self._closed

    # -- transitions -------------------------------------------------------

    def set_loading(self, loading: bool) -> LoadingState:
        """Feed the caller's loading flag."""
        if self._closed:
            raise RuntimeError("LoadingSupervisor is closed")
        self._sync_with_registry()
        if loading and self._state is LoadingState.IDLE:
            self._begin()
        elif not loading and self._state is not LoadingState.IDLE:
            self._complete()
        return self._state

    def tick(self, episode: int | None = None) -> LoadingState:
        """Advance the elapsed clock by one tick interval."""
        if episode is not None and episode != self._episode:
            return self._state
        # Completion detected in the same tick takes priority over the timeout.
        self._sync_with_registry()
        if self._state is LoadingState.IDLE:
            return self._state

        self._elapsed_ms += self.tick_ms
        if not self._timeout_fired and self._elapsed_ms >= self.timeout_ms:
            self._timeout_fired = True
            self._state = LoadingState.TIMED_OUT
            logger.warning(
                "Operation %s exceeded %dms (elapsed %dms)",
                self._operation_id,
                self.timeout_ms,
                self._elapsed_ms,
            )
            self._fire_on_timeout()
        if self._timeout_fired:
            self._maybe_auto_clear()
        return self._state

    async def clear_cache(
        self, level: SeverityLevel | str = SeverityLevel.MEDIUM, *, confirmed: bool = False
    ) -> ClearResult:
        """Run eviction and dismiss the timed-out overlay once it resolves."""
        result = await self.manager.clear_cache(level, confirmed=confirmed)
        self._sync_with_registry()
        if self._state is LoadingState.TIMED_OUT:
            self._state = LoadingState.LOADING
        return result

    def close(self) -> None:
        """Tear down: complete any live operation and cancel timers."""
        if self._closed:
            return
        self._sync_with_registry()
        if self._state is not LoadingState.IDLE:
            logger.debug("Completing operation %s on teardown", self._operation_id)
            self._complete()
        for task in list(self._background):
            task.cancel()
        self._closed = True

    @asynccontextmanager
    async def track(self) -> AsyncIterator[LoadingSupervisor]:
        """Mark the wrapped block as loading."""
        self.set_loading(True)
        try:
            yield self
        finally:
            if not self._closed:
                self.set_loading(False)

    async def __aenter__(self) -> LoadingSupervisor:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- internals -----------------------------------------------------------

    def _begin(self) -> None:
        self._episode += 1
        self._operation_id = self.manager.start_loading(
            self._requested_id, operation_name=self.operation_name
        )
        self._state = LoadingState.LOADING
        self._elapsed_ms = 0
        self._timeout_fired = False
        self._auto_levels.clear()
        self._start_ticker(self._episode)

    def _complete(self, *, already_removed: bool = False) -> None:
        operation_id = self._operation_id
        self._cancel_ticker()
        self._episode += 1
        if operation_id is not None and not already_removed:
            self.manager.stop_loading(operation_id)
        self._operation_id = None
        self._elapsed_ms = 0
        self._timeout_fired = False
        self._state = LoadingState.IDLE

    def _sync_with_registry(self) -> None:
        if (
            self._state is not LoadingState.IDLE
            and self._operation_id is not None
            and not self.manager.registry.contains(self._operation_id)
        ):
            logger.debug("Operation %s ended outside the supervisor", self._operation_id)
            self._complete(already_removed=True)

    def _fire_on_timeout(self) -> None:
        if self.on_timeout is None:
            return
        try:
            outcome = self.on_timeout()
            if asyncio.iscoroutine(outcome):
                self._spawn(outcome)
        except Exception as exc:  # noqa: BLE001 - caller callback must not break ticking
            logger.warning("on_timeout callback failed: %s", exc)

    def _maybe_auto_clear(self) -> None:
        if not self.manager.config.auto_clear_on_timeout:
            return
        level = self.manager.recommend_level(self._elapsed_ms)
        if level in self._auto_levels:
            return
        self._auto_levels.add(level)
        logger.info("Automatically clearing %s cache for %s", level.value, self._operation_id)
        self._spawn(self.manager.clear_cache(level))

    def _spawn(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop, skipping background task")
            return
        task = loop.create_task(self._guard(coro))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _guard(coro: Any) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - already reported by the manager
            logger.warning("Background cache task failed: %s", exc)

    def _start_ticker(self, episode: int) -> None:
        if not self.auto_tick:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._ticker = loop.create_task(self._run_ticker(episode))

    async def _run_ticker(self, episode: int) -> None:
        interval = self.tick_ms / 1000.0
        while episode == self._episode and self._state is not LoadingState.IDLE:
            await asyncio.sleep(interval)
            self.tick(episode)

    def _cancel_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is None or ticker.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The ticker exits on its own when it is the caller.
        if ticker is not current:
            ticker.cancel()


__all__ = ["LoadingState", "LoadingSupervisor"]
