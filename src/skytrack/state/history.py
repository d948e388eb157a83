"""Bounded mutation history.

An append-only audit log of applied mutations kept in a ring buffer: once
capacity is reached the oldest entry is evicted first. Entries are frozen
and hold their own snapshots of the values involved.
"""

from __future__ import annotations

import copy
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_HISTORY_CAPACITY = 100


class MutationKind(StrEnum):
    SET = "set"
    DELETE = "delete"
    CLEAR = "clear"
    APPEND = "append"
    REMOVE = "remove"
    REORDER = "reorder"


class HistoryEntry(BaseModel):
    """One applied mutation."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    kind: MutationKind
    path: str
    new_value: Any = None
    old_value: Any = None


class MutationHistory:
    """Ring buffer of :class:`HistoryEntry` objects, most recent last."""

    def __init__(
        self,
        capacity: int = DEFAULT_HISTORY_CAPACITY,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("history capacity must be positive")
        self._entries: deque[HistoryEntry] = deque(maxlen=capacity)
        self._clock = clock

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: HistoryEntry) -> None:
        self._entries.append(entry)

    def record_mutation(self, kind: MutationKind, path: str, new_value: Any, old_value: Any) -> HistoryEntry:
        """Build and record an entry from raw mutation data."""
        entry = HistoryEntry(
            kind=kind,
            path=path,
            new_value=copy.deepcopy(new_value),
            old_value=copy.deepcopy(old_value),
            **({"timestamp": self._clock()} if self._clock is not None else {}),
        )
        self.record(entry)
        return entry

    def get_history(self) -> list[HistoryEntry]:
        """Copies of the recorded entries, oldest first."""
        return [entry.model_copy(deep=True) for entry in self._entries]

    def clear(self) -> None:
        self._entries.clear()
