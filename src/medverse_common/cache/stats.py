"""Point-in-time statistics derived from the registry, the action log and counters."""
from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .config import CacheManagerConfig
from .operations import ActionLog, ActionLogEntry, OperationRegistry


@dataclass
class CategoryStats:
    """Cumulative hit/miss counters for one operation category."""

    hits: int = 0
    misses: int = 0
    last_clear: float = 0.0

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.total if self.total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"hits": self.hits, "misses": self.misses, "last_clear": self.last_clear}


@dataclass(frozen=True)
class CacheStatistics:
    """Snapshot returned by ``get_cache_stats``. Consistent only at the instant taken."""

    active_operations: int
    cache_stats: dict[str, CategoryStats] = field(default_factory=dict)
    last_log: list[ActionLogEntry] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_operations": self.active_operations,
            "cache_stats": {name: stats.to_dict() for name, stats in self.cache_stats.items()},
            "last_log": [entry.to_dict() for entry in self.last_log],
            "config": dict(self.config),
        }


class StatisticsAggregator:
    """Maintains per-category counters and builds statistics snapshots."""

    def __init__(
        self,
        registry: OperationRegistry,
        action_log: ActionLog,
        config: CacheManagerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.action_log = action_log
        self.config = config or CacheManagerConfig()
        self._clock = clock
        self._counters: dict[str, CategoryStats] = defaultdict(CategoryStats)

    def record_hit(self, category: str) -> None:
        self._counters[category].hits += 1

    def record_miss(self, category: str) -> None:
        self._counters[category].misses += 1

    def record_duration(self, category: str, duration_ms: float) -> None:
        """Count an operation finishing within the max load time as a hit."""
        if duration_ms > self.config.max_load_time_ms:
            self.record_miss(category)
        else:
            self.record_hit(category)

    def mark_cleared(self, timestamp: float | None = None) -> None:
        stamp = self._clock() if timestamp is None else timestamp
        for stats in self._counters.values():
            stats.last_clear = stamp

    def reset(self) -> None:
        self._counters.clear()

    def get_cache_stats(self) -> CacheStatistics:
        return CacheStatistics(
            active_operations=self.registry.count(),
            cache_stats={
                name: CategoryStats(stats.hits, stats.misses, stats.last_clear)
                for name, stats in self._counters.items()
            },
            last_log=self.action_log.recent(self.config.last_log_size),
            config={
                "max_load_time_ms": self.config.max_load_time_ms,
                "action_log_cap": self.config.action_log_cap,
                "levels": ["light", "medium", "full"],
            },
        )


__all__ = ["CacheStatistics", "CategoryStats", "StatisticsAggregator"]
