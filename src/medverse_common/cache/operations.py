"""Registry of in-flight asynchronous operations and the bounded action log."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class Operation:
    """One tracked unit of in-flight work."""

    id: str
    name: str
    started_at: float

    def duration_ms(self, now: float) -> float:
        return max(0.0, (now - self.started_at) * 1000.0)


@dataclass(frozen=True)
class ActionLogEntry:
    action: str
    timestamp: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
        }


class ActionLog:
    """Append-only, bounded record of cache and lifecycle actions.

    Oldest entries are discarded once ``cap`` is reached.
    """

    def __init__(self, cap: int = 20, clock: Clock = time.time) -> None:
        if cap <= 0:
            raise ValueError("Action log cap must be positive")
        self.cap = cap
        self._clock = clock
        self._entries: deque[ActionLogEntry] = deque(maxlen=cap)

    def append(self, action: str) -> ActionLogEntry:
        entry = ActionLogEntry(action=action, timestamp=self._clock())
        self._entries.append(entry)
        logger.debug("Cache action recorded: %s", action)
        return entry

    def recent(self, limit: int | None = None) -> list[ActionLogEntry]:
        """Return entries most-recent-first."""
        entries = list(reversed(self._entries))
        return entries[:limit] if limit is not None else entries

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class OperationRegistry:
    """Process-wide table of in-flight named operations.

    Every mutation and its log entry happen in one synchronous step, so a
    statistics snapshot never sees one without the other.
    """

    def __init__(self, action_log: ActionLog, clock: Clock = time.time) -> None:
        self.action_log = action_log
        self._clock = clock
        self._operations: dict[str, Operation] = {}

    def start_operation(self, operation_id: str, name: str) -> Operation:
        """Register an operation; an existing id is restarted, not duplicated."""
        restarted = operation_id in self._operations
        operation = Operation(id=operation_id, name=name, started_at=self._clock())
        self._operations[operation_id] = operation
        self.action_log.append(f"start:{operation_id}")
        context = {"operation_id": operation_id, "operation_name": name}
        if restarted:
            logger.info("Restarted operation %s (%s)", operation_id, name, extra=context)
        else:
            logger.info("Starting operation %s (%s)", operation_id, name, extra=context)
        return operation

    def complete_operation(self, operation_id: str) -> Operation | None:
        """Remove an operation. Unknown ids are ignored."""
        operation = self._operations.pop(operation_id, None)
        if operation is None:
            self.action_log.append(f"complete:{operation_id}:unknown")
            logger.debug("Ignoring completion of unknown operation %s", operation_id)
            return None
        self.action_log.append(f"complete:{operation_id}")
        logger.info(
            "Completed operation %s in %.0fms",
            operation_id,
            operation.duration_ms(self._clock()),
            extra={"operation_id": operation_id, "operation_name": operation.name},
        )
        return operation

    def clear(self) -> int:
        """Forcibly end every tracked operation."""
        removed = len(self._operations)
        self._operations.clear()
        self.action_log.append("registry:cleared")
        if removed:
            logger.warning("Cleared %d active operations", removed)
        return removed

    def get(self, operation_id: str) -> Operation | None:
        return self._operations.get(operation_id)

    def contains(self, operation_id: str) -> bool:
        return operation_id in self._operations

    def count(self) -> int:
        return len(self._operations)

    def operations(self) -> list[Operation]:
        return list(self._operations.values())

    def now(self) -> float:
        return self._clock()


__all__ = ["ActionLog", "ActionLogEntry", "Operation", "OperationRegistry"]
