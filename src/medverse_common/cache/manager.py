"""Cache manager: the single coordinator instance handed to UI components.

Construct one ``CacheManager`` at application start, call ``init()`` and pass
it to every consumer; call ``dispose()`` at shutdown. It can also be used as an
async context manager.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from ..notify import VARIANT_DESTRUCTIVE, LoggingNotifier, NotificationSink, Toast
from .collaborators import KeyValueStore, NavigationTiming, QueryCache, Reloader
from .config import CacheManagerConfig
from .errors import CacheClearError, ConfirmationRequiredError
from .eviction import CacheEvictionEngine, ClearResult, SeverityLevel
from .monitor import CacheMonitor
from .operations import ActionLog, Operation, OperationRegistry
from .pressure import MemoryPressureMonitor
from .stats import CacheStatistics, StatisticsAggregator
from .supervisor import LoadingSupervisor

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CacheManager:
    """Operation tracking, tiered cache clearing and statistics behind one object."""

    def __init__(
        self,
        config: CacheManagerConfig | None = None,
        *,
        query_cache: QueryCache | None = None,
        local_storage: KeyValueStore | None = None,
        session_storage: KeyValueStore | None = None,
        notifier: NotificationSink | None = None,
        reloader: Reloader | None = None,
        navigation_timing: NavigationTiming | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or CacheManagerConfig()
        self.config.validate()
        self._clock = clock

        self.action_log = ActionLog(cap=self.config.action_log_cap, clock=clock)
        self.registry = OperationRegistry(self.action_log, clock=clock)
        self.stats = StatisticsAggregator(self.registry, self.action_log, self.config, clock=clock)
        self.engine = CacheEvictionEngine(
            self.registry,
            self.action_log,
            self.config,
            query_cache=query_cache,
            local_storage=local_storage,
            session_storage=session_storage,
            reloader=reloader,
            clock=clock,
        )
        self.notifier: NotificationSink = notifier or LoggingNotifier()
        self.navigation_timing = navigation_timing
        self.memory_monitor = MemoryPressureMonitor(self)

        self.recovered_from_reload = False
        self._id_suffix = itertools.count(1)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._initialized = False
        self._disposed = False

    @property
    def session_storage(self) -> KeyValueStore | None:
        return self.engine.session_storage

    # -- lifecycle --------------------------------------------------------

    async def init(self) -> None:
        """Run start-up checks once: reload recovery notice and slow-load cleanup."""
        if self._initialized:
            return
        if self._disposed:
            raise RuntimeError("CacheManager has been disposed")
        self._initialized = True
        logger.info("Cache manager initialized for %s", self.config.service_name)

        if not self.config.enable_auto_clean:
            return
        self._check_reload_marker()
        self._check_page_load()
        if self.config.enable_memory_monitor:
            await self.memory_monitor.start()

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        await self.memory_monitor.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        aclose = getattr(self.notifier, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.registry.count():
            logger.warning(
                "Cache manager disposed with %d operations still active", self.registry.count()
            )
        logger.info("Cache manager disposed")

    async def __aenter__(self) -> CacheManager:
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()

    # -- operation tracking ---------------------------------------------------

    def start_loading(
        self, operation_id: str | None = None, *, operation_name: str | None = None
    ) -> str:
        """Register an operation and return its id."""
        name = operation_name or self.config.default_operation_name
        if operation_id is None:
            operation_id = f"{name}-{int(self._clock() * 1000)}"
            if self.registry.contains(operation_id):
                operation_id = f"{operation_id}-{next(self._id_suffix)}"
        self.registry.start_operation(operation_id, name)
        return operation_id

    def stop_loading(self, operation_id: str) -> Operation | None:
        operation = self.registry.complete_operation(operation_id)
        if operation is not None:
            self.stats.record_duration(operation.name, operation.duration_ms(self._clock()))
        return operation

    # -- statistics -------------------------------------------------------------

    def get_cache_stats(self) -> CacheStatistics:
        return self.stats.get_cache_stats()

    def record_hit(self, category: str) -> None:
        self.stats.record_hit(category)

    def record_miss(self, category: str) -> None:
        self.stats.record_miss(category)

    def reset_stats(self) -> None:
        self.stats.reset()

    # -- eviction ----------------------------------------------------------------

    def recommend_level(self, elapsed_ms: float) -> SeverityLevel:
        """Automatic escalation never goes past medium."""
        if elapsed_ms >= self.config.medium_escalation_ms:
            return SeverityLevel.MEDIUM
        return SeverityLevel.LIGHT

    async def clear_cache(
        self,
        level: SeverityLevel | str = SeverityLevel.MEDIUM,
        *,
        confirmed: bool = False,
        notify: bool | None = None,
    ) -> ClearResult:
        """Clear caches at the given severity.

        ``full`` wipes every caller's state and reloads the application, so it
        must be explicitly confirmed.

        Raises:
            ConfirmationRequiredError: ``full`` requested without ``confirmed=True``.
            CacheClearError: nothing could be cleared.
        """
        level = SeverityLevel.parse(level)
        if level is SeverityLevel.FULL and not confirmed:
            raise ConfirmationRequiredError(
                "Full cache reset requires explicit confirmation", {"level": level.value}
            )
        show = self.config.show_notifications if notify is None else notify

        if show:
            self._notify(
                Toast(
                    title="Clearing Cache",
                    description=f"Clearing {level.value} cache to improve performance...",
                )
            )

        with tracer.start_as_current_span("cache.clear") as span:
            span.set_attribute("cache.level", level.value)
            try:
                result = await self.engine.clear_cache(level)
            except CacheClearError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, exc.message))
                if show:
                    self._notify(
                        Toast(
                            title="Cache Clear Failed",
                            description="Failed to clear cache. Please try refreshing the page.",
                            variant=VARIANT_DESTRUCTIVE,
                        )
                    )
                raise
            span.set_attribute("cache.steps_performed", len(result.performed))

        self.stats.mark_cleared()
        if show:
            self._notify(
                Toast(title="Cache Cleared", description="Cache has been cleared successfully.")
            )
        return result

    # -- factories ------------------------------------------------------------------

    def supervisor(self, operation_name: str | None = None, **kwargs: Any) -> LoadingSupervisor:
        return LoadingSupervisor(self, operation_name=operation_name, **kwargs)

    def monitor(self, **kwargs: Any) -> CacheMonitor:
        return CacheMonitor(self, **kwargs)

    def report_long_task(self, duration_ms: float) -> None:
        """Hook for a long-task observer; very long tasks schedule a silent light clear."""
        self._spawn(self.memory_monitor.report_long_task(duration_ms))

    # -- start-up checks --------------------------------------------------------------

    def _check_reload_marker(self) -> None:
        storage = self.session_storage
        if storage is None:
            return
        key = self.config.reload_marker_key
        try:
            raw = storage.get(key)
        except Exception as exc:  # noqa: BLE001 - storage may be unavailable
            logger.warning("Could not read reload marker: %s", exc)
            return
        if raw is None:
            return
        try:
            reloaded_at_ms = int(raw)
        except ValueError:
            logger.warning("Discarding malformed reload marker %r", raw)
            storage.remove(key)
            return

        since_reload_ms = self._clock() * 1000 - reloaded_at_ms
        if since_reload_ms >= self.config.reload_notice_window_ms:
            return
        storage.remove(key)
        self.recovered_from_reload = True
        logger.info("Recovered from forced reload %.0fms ago", since_reload_ms)
        if self.config.show_notifications:
            self._notify(
                Toast(
                    title="Performance Optimized",
                    description="Cache was automatically cleared to improve loading times.",
                )
            )

    def _check_page_load(self) -> None:
        if self.navigation_timing is None:
            return
        load_ms = self.navigation_timing.load_time_ms()
        if load_ms is None or load_ms <= self.config.slow_page_load_ms:
            return
        logger.warning("Slow page load detected: %.0fms", load_ms)
        self._spawn(self._delayed_light_clear(self.config.slow_page_clear_delay_ms / 1000.0))

    async def _delayed_light_clear(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.clear_cache(SeverityLevel.LIGHT)
        except CacheClearError as exc:
            logger.warning("Light clear after slow load failed: %s", exc)

    def _spawn(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop, skipping background task")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _notify(self, toast: Toast) -> None:
        try:
            self.notifier.notify(toast)
        except Exception as exc:  # noqa: BLE001 - notifications are fire-and-forget
            logger.warning("Notification failed: %s", exc)


__all__ = ["CacheManager"]
