"""Polling view over cache statistics with manual clearing actions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from .errors import CacheClearError
from .eviction import ClearResult, SeverityLevel
from .stats import CacheStatistics

if TYPE_CHECKING:
    from .manager import CacheManager

logger = logging.getLogger(__name__)

StatsListener = Callable[[CacheStatistics], None]


class MonitorStatus(str, Enum):
    UNKNOWN = "gray"
    HEALTHY = "green"
    BUSY = "yellow"
    CONGESTED = "red"


class CacheMonitor:
    """Refreshes a statistics snapshot on a fixed interval.

    Consumers can read ``latest`` or subscribe to receive each snapshot; either
    way they see registry state at most one poll interval old.
    """

    def __init__(
        self,
        manager: CacheManager,
        poll_interval_ms: int | None = None,
        show_details: bool = False,
    ) -> None:
        self.manager = manager
        self.poll_interval_ms = poll_interval_ms or manager.config.monitor_poll_interval_ms
        self.show_details = show_details
        self.latest: CacheStatistics | None = None
        self.is_clearing = False
        self.monitoring_enabled = False
        self._listeners: list[StatsListener] = []
        self._task: asyncio.Task[None] | None = None

    def subscribe(self, listener: StatsListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def refresh(self) -> CacheStatistics:
        self.latest = self.manager.get_cache_stats()
        for listener in list(self._listeners):
            try:
                listener(self.latest)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Cache monitor listener failed: %s", exc)
        return self.latest

    @property
    def status(self) -> MonitorStatus:
        if self.latest is None:
            return MonitorStatus.UNKNOWN
        active = self.latest.active_operations
        if active > 3:
            return MonitorStatus.CONGESTED
        if active > 1:
            return MonitorStatus.BUSY
        return MonitorStatus.HEALTHY

    @property
    def visible(self) -> bool:
        """Hidden while nothing is loading unless details were requested."""
        if self.show_details:
            return True
        return self.latest is not None and self.latest.active_operations > 0

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self.monitoring_enabled = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Cache monitor polling every %dms", self.poll_interval_ms)

    async def stop(self) -> None:
        self.monitoring_enabled = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        interval = self.poll_interval_ms / 1000.0
        while self.monitoring_enabled:
            self.refresh()
            await asyncio.sleep(interval)

    async def light_clean(self) -> ClearResult | None:
        return await self._clear(SeverityLevel.LIGHT)

    async def deep_clean(self) -> ClearResult | None:
        return await self._clear(SeverityLevel.MEDIUM)

    async def full_reset(self, confirmed: bool = False) -> ClearResult | None:
        """Emergency reset; refuses to run unless ``confirmed``."""
        return await self._clear(SeverityLevel.FULL, confirmed=confirmed)

    async def _clear(self, level: SeverityLevel, confirmed: bool = False) -> ClearResult | None:
        if self.is_clearing:
            logger.info("Ignoring %s clear while another clear is running", level.value)
            return None
        self.is_clearing = True
        try:
            return await self.manager.clear_cache(level, confirmed=confirmed)
        except CacheClearError:
            # The manager has already notified the user.
            return None
        finally:
            self.is_clearing = False
            self.refresh()

    def render(self) -> str:
        stats = self.latest or self.refresh()
        lines = [
            f"Cache Monitor [{self.status.value}] {stats.active_operations} Active",
        ]
        if not self.show_details:
            return "\n".join(lines)

        lines.append("Performance Stats:")
        for name, data in sorted(stats.cache_stats.items()):
            lines.append(f"  {name}: Hits: {data.hits} | Misses: {data.misses}")
        if stats.last_log:
            lines.append("Recent Cache Actions:")
            for entry in stats.last_log:
                when = datetime.fromtimestamp(entry.timestamp).strftime("%H:%M:%S")
                lines.append(f"  {entry.action} {when}")
        return "\n".join(lines)


__all__ = ["CacheMonitor", "MonitorStatus"]
