"""
JSON file storage for the offline operation queue.

One file holds the whole queue as a list. Every save rewrites it through a
temp file and an atomic rename, so a crash leaves either the old list or the
new one on disk, never a torn write.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

from models.pending_operation import PendingOperation

logger = logging.getLogger(__name__)


class JsonQueueStore:
    """
    File-backed store for PendingOperation records.
    Not safe for several processes sharing one file.
    """

    def __init__(self, path: Union[str, Path] = "data/sync_queue.json"):
        """
        Args:
            path: JSON file holding the queue (parent dirs are created)
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if not self.path.exists():
            self._write_file([])

    def _read_file(self) -> List[Dict[str, Any]]:
        """Read and parse the queue file."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as e:
            # keep the unreadable copy for inspection, start from empty
            broken = self.path.with_suffix(".corrupt")
            self.path.replace(broken)
            logger.warning(f"Queue file {self.path} unreadable ({e}); moved to {broken}")
            return []
        if not isinstance(data, list):
            raise ValueError(f"{self.path} must contain a JSON list")
        return data

    def _write_file(self, data: List[Dict[str, Any]]) -> None:
        """Write data to the queue file atomically."""
        tmp_file = self.path.with_suffix(".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        # Atomic rename
        tmp_file.replace(self.path)

    def load(self) -> List[PendingOperation]:
        return [PendingOperation.from_storage(row) for row in self._read_file()]

    def save(self, operations: List[PendingOperation]) -> None:
        self._write_file([op.to_storage() for op in operations])


class MemoryQueueStore:
    """Same interface as JsonQueueStore, kept in a list (tests, previews)."""

    def __init__(self) -> None:
        self.rows: List[Dict[str, Any]] = []
        self.saves = 0

    def load(self) -> List[PendingOperation]:
        return [PendingOperation.from_storage(row) for row in self.rows]

    def save(self, operations: List[PendingOperation]) -> None:
        self.rows = [op.to_storage() for op in operations]
        self.saves += 1
