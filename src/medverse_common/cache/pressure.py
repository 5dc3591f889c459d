"""Lightweight clears triggered by memory pressure and long-running tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

import psutil

from .errors import CacheClearError
from .eviction import ClearResult, SeverityLevel

if TYPE_CHECKING:
    from .manager import CacheManager

logger = logging.getLogger(__name__)


def system_memory_percent() -> float:
    """Share of physical memory in use, as reported by psutil."""
    return psutil.virtual_memory().percent


class MemoryPressureMonitor:
    """Runs a ``light`` clear when memory use or a single task runs too hot.

    While started, memory is sampled every ``interval_ms``; a sample above
    ``threshold_percent`` triggers the clear. ``report_long_task`` does the same
    for a task slower than the configured long-task threshold. Clears run
    silently and never overlap.
    """

    def __init__(
        self,
        manager: CacheManager,
        threshold_percent: float | None = None,
        interval_ms: int | None = None,
        sampler: Callable[[], float] = system_memory_percent,
    ) -> None:
        config = manager.config
        self.manager = manager
        self.threshold_percent = (
            threshold_percent if threshold_percent is not None else config.memory_pressure_percent
        )
        self.interval_ms = interval_ms or config.memory_check_interval_ms
        self.long_task_threshold_ms = config.long_task_threshold_ms
        self.sampler = sampler
        self.last_usage: float | None = None
        self._clearing = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sample(self) -> float | None:
        try:
            self.last_usage = self.sampler()
        except (psutil.Error, OSError) as exc:
            logger.warning("Could not sample memory usage: %s", exc)
            self.last_usage = None
        return self.last_usage

    async def check(self) -> ClearResult | None:
        """Sample once and clear if above the threshold."""
        usage = self.sample()
        if usage is None or usage <= self.threshold_percent:
            return None
        logger.warning("High memory usage detected: %.1f%%", usage)
        return await self._clear_light()

    async def report_long_task(self, duration_ms: float) -> ClearResult | None:
        if duration_ms <= self.long_task_threshold_ms:
            return None
        logger.warning("Very long task detected (%.0fms), clearing lightweight caches", duration_ms)
        return await self._clear_light()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(
            "Memory pressure checks every %dms above %.0f%%", self.interval_ms, self.threshold_percent
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        interval = self.interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            await self.check()

    async def _clear_light(self) -> ClearResult | None:
        if self._clearing:
            return None
        self._clearing = True
        try:
            return await self.manager.clear_cache(SeverityLevel.LIGHT, notify=False)
        except CacheClearError as exc:
            logger.warning("Lightweight clear failed: %s", exc)
            return None
        finally:
            self._clearing = False


__all__ = ["MemoryPressureMonitor", "system_memory_percent"]
