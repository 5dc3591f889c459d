"""Interfaces consumed by the cache coordinator, with concrete implementations.

The coordinator never owns these stores: it only clears them. The in-memory
variants back tests and single-process deployments; ``JsonFileStorage`` gives a
durable "local storage" that survives a process reload.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
from collections.abc import Awaitable, Callable, Hashable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Browser-style string key-value storage."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...

    def keys(self) -> list[str]: ...


class QueryCache(Protocol):
    """Persistent cache of fetched query results."""

    async def invalidate_stale(self) -> None: ...

    async def clear_all(self) -> None: ...


class Reloader(Protocol):
    """Discards in-memory application state and restarts the client."""

    def schedule_reload(self) -> None: ...


class NavigationTiming(Protocol):
    def load_time_ms(self) -> float | None: ...


class InMemoryStorage:
    """Dictionary-backed ``KeyValueStore``."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        return list(self._data)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStorage:
    """``KeyValueStore`` persisted to a JSON document on disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Discarding unreadable storage file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Discarding storage file %s with unexpected layout", self.path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(self._data, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = str(value)
        self._flush()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def clear(self) -> None:
        self._data.clear()
        self._flush()

    def keys(self) -> list[str]:
        return list(self._data)


@dataclass
class QueryEntry:
    """Cached result for one query key."""

    value: Any
    updated_at: float
    invalidated: bool = False


QueryKey = tuple[Hashable, ...]


@dataclass
class InMemoryQueryCache:
    """Query-result cache keyed by tuples, e.g. ``("prescriptions", patient_id)``.

    ``invalidate_stale`` marks old entries for refetch while keeping their value
    available; ``clear_all`` discards everything.
    """

    stale_after_ms: int = 60000
    protected_fragments: tuple[str, ...] = ("auth", "profile", "critical")
    clock: Callable[[], float] = time.time
    entries: dict[QueryKey, QueryEntry] = field(default_factory=dict)

    def set(self, key: QueryKey, value: Any) -> None:
        self.entries[tuple(key)] = QueryEntry(value=value, updated_at=self.clock())

    def get(self, key: QueryKey) -> Any | None:
        entry = self.entries.get(tuple(key))
        return entry.value if entry is not None else None

    def is_fresh(self, key: QueryKey) -> bool:
        entry = self.entries.get(tuple(key))
        return entry is not None and not entry.invalidated

    async def fetch(self, key: QueryKey, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value, refetching when missing or invalidated."""
        key = tuple(key)
        if self.is_fresh(key):
            return self.entries[key].value
        value = await loader()
        self.set(key, value)
        return value

    def _is_protected(self, key: QueryKey) -> bool:
        return any(
            isinstance(part, str) and fragment in part
            for part in key
            for fragment in self.protected_fragments
        )

    async def invalidate_stale(self) -> None:
        now = self.clock()
        threshold = self.stale_after_ms / 1000.0
        invalidated = 0
        for key, entry in self.entries.items():
            if entry.invalidated or self._is_protected(key):
                continue
            if now - entry.updated_at > threshold:
                entry.invalidated = True
                invalidated += 1
        logger.debug("Invalidated %d stale query entries", invalidated)

    async def clear_all(self) -> None:
        self.entries.clear()

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class StaticNavigationTiming:
    """Navigation timing with a known page/app load duration."""

    load_ms: float | None = None

    def load_time_ms(self) -> float | None:
        return self.load_ms


class CallbackReloader:
    """Runs ``callback`` to restart the client.

    With a running event loop the callback is scheduled with ``call_later`` so
    the current clearing pass can return first.
    """

    def __init__(self, callback: Callable[[], None], delay: float = 0.0) -> None:
        self.callback = callback
        self.delay = delay
        self.scheduled = 0

    def schedule_reload(self) -> None:
        self.scheduled += 1
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.callback()
            return
        loop.call_later(self.delay, self.callback)


class ProcessReloader:
    """Restart by re-executing the current interpreter with the same arguments."""

    def __init__(self, argv: Iterable[str] | None = None) -> None:
        self.argv = list(argv) if argv is not None else list(sys.argv)

    def _exec(self) -> None:
        logger.warning("Reloading process: %s %s", sys.executable, " ".join(self.argv))
        logging.shutdown()
        os.execv(sys.executable, [sys.executable, *self.argv])

    def schedule_reload(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._exec()
            return
        loop.call_soon(self._exec)


__all__ = [
    "CallbackReloader",
    "InMemoryQueryCache",
    "InMemoryStorage",
    "JsonFileStorage",
    "KeyValueStore",
    "NavigationTiming",
    "ProcessReloader",
    "QueryCache",
    "QueryEntry",
    "Reloader",
    "StaticNavigationTiming",
]
