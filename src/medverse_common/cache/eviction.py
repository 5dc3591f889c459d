"""Severity-tiered cache eviction.

Each tier runs every step of the tiers below it followed by its own steps.
Steps are independent: a failing step is logged and the pass moves on. A tier
only fails as a whole when nothing could be cleared.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import CacheManagerConfig
from .errors import CacheClearError, ValidationError
from .operations import ActionLog, OperationRegistry

logger = logging.getLogger(__name__)

STEP_OK = "ok"
STEP_SKIPPED = "skipped"
STEP_FAILED = "failed"


class SeverityLevel(str, Enum):
    """How destructive a clearing pass is, ordered light < medium < full."""

    LIGHT = "light"
    MEDIUM = "medium"
    FULL = "full"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def includes(self, other: SeverityLevel) -> bool:
        """True if this tier performs every action of ``other``."""
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: SeverityLevel | str) -> SeverityLevel:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            msg = f"Unknown cache clear level: {value!r}"
            raise ValidationError(msg, {"allowed": [level.value for level in cls]}) from exc


_SEVERITY_ORDER = (SeverityLevel.LIGHT, SeverityLevel.MEDIUM, SeverityLevel.FULL)


@dataclass(frozen=True)
class StepResult:
    name: str
    status: str
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == STEP_OK

    @property
    def failed(self) -> bool:
        return self.status == STEP_FAILED


@dataclass
class ClearResult:
    """Outcome of one clearing pass."""

    level: SeverityLevel
    steps: list[StepResult] = field(default_factory=list)
    reload_scheduled: bool = False

    @property
    def succeeded(self) -> bool:
        """At least one step actually cleared something."""
        return any(s.succeeded for s in self.steps)

    @property
    def performed(self) -> list[str]:
        return [s.name for s in self.steps if s.succeeded]

    @property
    def failures(self) -> list[StepResult]:
        return [s for s in self.steps if s.failed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "succeeded": self.succeeded,
            "reload_scheduled": self.reload_scheduled,
            "steps": [
                {"name": s.name, "status": s.status, "error": s.error} for s in self.steps
            ],
        }


StepFn = Callable[[], "Awaitable[bool | None] | bool | None"]


class CacheEvictionEngine:
    """Executes clearing tiers against the external caches."""

    def __init__(
        self,
        registry: OperationRegistry,
        action_log: ActionLog,
        config: CacheManagerConfig | None = None,
        query_cache: Any | None = None,
        local_storage: Any | None = None,
        session_storage: Any | None = None,
        reloader: Any | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.action_log = action_log
        self.config = config or CacheManagerConfig()
        self.query_cache = query_cache
        self.local_storage = local_storage
        self.session_storage = session_storage
        self.reloader = reloader
        self._clock = clock

    def _own_steps(self, level: SeverityLevel) -> list[tuple[str, StepFn]]:
        if level is SeverityLevel.LIGHT:
            return [("invalidate-stale-queries", self._invalidate_stale_queries)]
        if level is SeverityLevel.MEDIUM:
            return [
                ("clear-query-cache", self._clear_query_cache),
                ("clear-owned-session-keys", self._clear_owned_session_keys),
            ]
        return [
            ("clear-local-storage", self._clear_local_storage),
            ("clear-session-storage", self._clear_session_storage),
            ("clear-operation-registry", self._clear_registry),
            ("write-reload-marker", self._write_reload_marker),
            ("schedule-reload", self._schedule_reload),
        ]

    def steps_for(self, level: SeverityLevel | str) -> list[tuple[str, StepFn]]:
        """Every step a tier performs, lower tiers first."""
        level = SeverityLevel.parse(level)
        steps: list[tuple[str, StepFn]] = []
        for tier in _SEVERITY_ORDER:
            if level.includes(tier):
                steps.extend(self._own_steps(tier))
        return steps

    async def clear_cache(self, level: SeverityLevel | str = SeverityLevel.MEDIUM) -> ClearResult:
        """Run a clearing tier.

        Raises:
            CacheClearError: if no step cleared anything.
        """
        level = SeverityLevel.parse(level)
        context = {"cache_level": level.value}
        logger.info("Starting %s cache clear", level.value, extra=context)
        result = ClearResult(level=level)

        for name, step in self.steps_for(level):
            step_result = await self._run_step(name, step)
            result.steps.append(step_result)
            if name == "schedule-reload" and step_result.succeeded:
                result.reload_scheduled = True

        if not result.succeeded:
            self.action_log.append(f"clearCache:{level.value}:failed")
            if result.failures:
                logger.error(
                    "%s cache clear failed: %s",
                    level.value,
                    ", ".join(f"{s.name} ({s.error})" for s in result.failures),
                    extra=context,
                )
                msg = f"Failed to clear {level.value} cache"
            else:
                logger.error("%s cache clear had nothing to clear", level.value, extra=context)
                msg = f"No cache is configured for a {level.value} clear"
            raise CacheClearError(msg, {"level": level.value, "result": result.to_dict()})

        self.action_log.append(f"clearCache:{level.value}")
        logger.info(
            "%s cache clear finished: %d performed, %d failed",
            level.value,
            len(result.performed),
            len(result.failures),
            extra=context,
        )
        return result

    async def _run_step(self, name: str, step: StepFn) -> StepResult:
        try:
            outcome = step()
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:  # noqa: BLE001 - each step is best effort
            logger.warning("Cache clear step %s failed: %s", name, exc)
            return StepResult(name=name, status=STEP_FAILED, error=str(exc) or type(exc).__name__)
        if outcome is False:
            logger.debug("Cache clear step %s skipped", name)
            return StepResult(name=name, status=STEP_SKIPPED)
        self.action_log.append(name)
        return StepResult(name=name, status=STEP_OK)

    async def _invalidate_stale_queries(self) -> bool:
        if self.query_cache is None:
            return False
        await self.query_cache.invalidate_stale()
        return True

    async def _clear_query_cache(self) -> bool:
        if self.query_cache is None:
            return False
        await self.query_cache.clear_all()
        return True

    def _clear_owned_session_keys(self) -> bool:
        if self.session_storage is None:
            return False
        prefix = self.config.owned_session_prefix
        for key in self.session_storage.keys():
            if key.startswith(prefix):
                self.session_storage.remove(key)
        return True

    def _clear_local_storage(self) -> bool:
        if self.local_storage is None:
            return False
        self.local_storage.clear()
        return True

    def _clear_session_storage(self) -> bool:
        if self.session_storage is None:
            return False
        self.session_storage.clear()
        return True

    def _clear_registry(self) -> bool:
        self.registry.clear()
        return True

    def _write_reload_marker(self) -> bool:
        if self.session_storage is None:
            return False
        timestamp_ms = int(self._clock() * 1000)
        self.session_storage.set(self.config.reload_marker_key, str(timestamp_ms))
        return True

    def _schedule_reload(self) -> bool:
        if self.reloader is None:
            return False
        logger.warning("Forcing application reload after full cache clear")
        self.reloader.schedule_reload()
        return True


__all__ = [
    "CacheEvictionEngine",
    "ClearResult",
    "STEP_FAILED",
    "STEP_OK",
    "STEP_SKIPPED",
    "SeverityLevel",
    "StepResult",
]
