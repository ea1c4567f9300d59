# services/api/offline/sync_queue.py
"""
Durable FIFO of operations made while offline (or that failed mid-flight).

Every change is written to the store first and only then swapped into
memory, so the file and the in-memory list never disagree after a crash.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx

from adapters.base import QueueStore
from models.pending_operation import OperationType, PendingOperation, ResourceType
from offline.errors import ApiError, SyncError

logger = logging.getLogger(__name__)

SyncedListener = Callable[[], None]
AppliedListener = Callable[[PendingOperation, Any], None]
FailedListener = Callable[[PendingOperation], None]


@dataclass
class SyncResult:
    succeeded: int = 0
    failed: int = 0
    skipped: Optional[str] = None  # "already_syncing" | "offline" | "empty"


class SyncQueue:
    def __init__(self, store: QueueStore, dispatcher, connectivity, max_retries: int = 3) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.connectivity = connectivity
        self.max_retries = max_retries

        self._operations: List[PendingOperation] = list(store.load())
        self._is_syncing = False
        self.last_sync_error: Optional[str] = None

        self._on_synced: List[SyncedListener] = []
        self._on_applied: List[AppliedListener] = []
        self._on_failed: List[FailedListener] = []

        if self._operations:
            logger.info(f"Loaded {len(self._operations)} pending operation(s)")

    # --------------------
    # State
    # --------------------
    @property
    def operations(self) -> List[PendingOperation]:
        return list(self._operations)

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def pending_count(self) -> int:
        return len(self._operations)

    @property
    def has_pending(self) -> bool:
        return bool(self._operations)

    @property
    def failed_operations(self) -> List[PendingOperation]:
        return [op for op in self._operations if op.retry_count > 0]

    @property
    def exhausted_operations(self) -> List[PendingOperation]:
        return [op for op in self._operations if not op.can_retry(self.max_retries)]

    def get(self, op_id: str) -> Optional[PendingOperation]:
        return next((op for op in self._operations if op.id == op_id), None)

    # --------------------
    # Listeners
    # --------------------
    def on_synced(self, listener: SyncedListener) -> None:
        """Called after a pass in which at least one operation was applied."""
        self._on_synced.append(listener)

    def on_applied(self, listener: AppliedListener) -> None:
        """Called with (operation, server response) for each success."""
        self._on_applied.append(listener)

    def on_failed(self, listener: FailedListener) -> None:
        """Called with the updated operation (retry_count bumped) for each failure."""
        self._on_failed.append(listener)

    # --------------------
    # Mutations (write-through)
    # --------------------
    def _commit(self, operations: List[PendingOperation]) -> None:
        self.store.save(operations)
        self._operations = operations

    def enqueue(
        self,
        operation: OperationType,
        resource_type: ResourceType,
        resource_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> PendingOperation:
        op = PendingOperation(
            operation=operation,
            resource_type=resource_type,
            resource_id=resource_id,
            payload=payload,
        )
        self._commit(self._operations + [op])
        logger.info(f"Queued {op.display_description} ({op.id}), {self.pending_count} pending")
        return op

    def dequeue(self, op_id: str) -> None:
        self._commit([op for op in self._operations if op.id != op_id])

    def mark_failed(self, op_id: str, error: str) -> None:
        self._commit([op.failed(error) if op.id == op_id else op for op in self._operations])

    def retry(self, op_id: str) -> None:
        """Manual retry of an exhausted operation: start its counter over."""
        updated = []
        for op in self._operations:
            if op.id == op_id:
                op = PendingOperation.from_storage({**op.to_storage(), "retry_count": 0, "error": None})
            updated.append(op)
        self._commit(updated)

    def clear(self) -> None:
        self._commit([])
        self.last_sync_error = None

    def clear_failed(self) -> int:
        """Discard exhausted operations; returns how many were dropped."""
        keep = [op for op in self._operations if op.can_retry(self.max_retries)]
        dropped = len(self._operations) - len(keep)
        self._commit(keep)
        if not self.exhausted_operations:
            self.last_sync_error = None
        return dropped

    # --------------------
    # Drain
    # --------------------
    async def process_pending(self) -> SyncResult:
        if self._is_syncing:
            logger.info("Sync already in progress, skipping")
            return SyncResult(skipped="already_syncing")
        if not self.connectivity.is_connected:
            logger.info("Offline, skipping sync")
            return SyncResult(skipped="offline")
        if not self._operations:
            return SyncResult(skipped="empty")

        self._is_syncing = True
        result = SyncResult()
        try:
            # list order is enqueue order; ops enqueued mid-pass wait for the next one
            batch = [op for op in self._operations if op.can_retry(self.max_retries)]
            for op in batch:
                if self.get(op.id) is None:
                    # discarded while an earlier call was in flight
                    continue
                try:
                    response = await self.dispatcher.dispatch(op)
                except (SyncError, ApiError, httpx.TransportError) as e:
                    logger.warning(f"Failed to sync {op.display_description} ({op.id}): {e}")
                    self._record_failure(op, e, result)
                    continue
                except Exception as e:
                    logger.error(f"Unexpected error syncing {op.display_description} ({op.id})", exc_info=True)
                    self._record_failure(op, e, result)
                    continue

                self.dequeue(op.id)
                result.succeeded += 1
                self._notify(self._on_applied, op, response)
        finally:
            self._is_syncing = False

        if result.failed:
            self.last_sync_error = f"{result.failed} operation(s) failed to sync"
        elif not self.exhausted_operations:
            self.last_sync_error = None

        logger.info(f"Sync pass done: {result.succeeded} succeeded, {result.failed} failed")
        if result.succeeded:
            self._notify(self._on_synced)
        return result

    def _record_failure(self, op: PendingOperation, error: Exception, result: SyncResult) -> None:
        failed_op = self.get(op.id)
        if failed_op is None:
            # discarded while its call was in flight; nothing left to fail
            logger.info(f"{op.display_description} ({op.id}) was discarded mid-sync")
            return
        self.mark_failed(op.id, str(error) or error.__class__.__name__)
        result.failed += 1
        self._notify(self._on_failed, self.get(op.id))

    def _notify(self, listeners: List[Callable[..., None]], *args: Any) -> None:
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.error(f"Sync listener {listener!r} raised", exc_info=True)
