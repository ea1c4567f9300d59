# services/api/offline/history.py
from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")

ACTIONS = ("load", "add", "remove", "update")


@dataclass(frozen=True)
class HistoryEntry(Generic[T]):
    action: str
    snapshot: List[T]


class AnnotationHistory(Generic[T]):
    """
    Bounded undo/redo over full snapshots of a document's annotation list.

    `push` drops any redo tail, and the oldest entry once past `limit`.
    Snapshots are deep-copied in and out so later edits cannot reach back
    into history.
    """

    def __init__(self, limit: int = 50) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self._entries: List[HistoryEntry[T]] = []
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    @property
    def current(self) -> Optional[HistoryEntry[T]]:
        if self._cursor < 0:
            return None
        return self._entries[self._cursor]

    def reset(self, snapshot: List[T]) -> None:
        """Forget everything; `snapshot` becomes the only ("load") entry."""
        self._entries = [HistoryEntry("load", deepcopy(snapshot))]
        self._cursor = 0

    def push(self, action: str, snapshot: List[T]) -> None:
        if action not in ACTIONS:
            raise ValueError(f"Unknown history action {action!r}")
        del self._entries[self._cursor + 1:]
        self._entries.append(HistoryEntry(action, deepcopy(snapshot)))
        if len(self._entries) > self.limit:
            del self._entries[0]
        self._cursor = len(self._entries) - 1

    def undo(self) -> Optional[List[T]]:
        if not self.can_undo:
            return None
        self._cursor -= 1
        return deepcopy(self._entries[self._cursor].snapshot)

    def redo(self) -> Optional[List[T]]:
        if not self.can_redo:
            return None
        self._cursor += 1
        return deepcopy(self._entries[self._cursor].snapshot)
