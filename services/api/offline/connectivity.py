# services/api/offline/connectivity.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from offline.sync_queue import SyncQueue, SyncResult

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """
    Holds the device's online flag. Whatever watches the real network
    calls `set_connected`; listeners only fire on an actual change.
    """

    def __init__(self, connected: bool = True) -> None:
        self._connected = connected
        self._listeners: List[ConnectivityListener] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    def subscribe(self, listener: ConnectivityListener) -> None:
        self._listeners.append(listener)

    def set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("Network restored" if connected else "Network lost, entering offline mode")
        for listener in self._listeners:
            listener(connected)


@dataclass(frozen=True)
class SyncStatus:
    """idle | syncing | synced | pending(n) | error(msg)"""
    state: str
    pending: int = 0
    message: Optional[str] = None

    @property
    def display_text(self) -> str:
        if self.state == "idle":
            return "Ready"
        if self.state == "syncing":
            return "Syncing..."
        if self.state == "synced":
            return "Up to date"
        if self.state == "pending":
            return f"{self.pending} pending"
        return f"Error: {self.message}"


class OfflineManager:
    """
    Decides when the queue drains: app launch, app foreground, going back
    online, or the user asking. Each trigger is a no-op when the queue is
    empty or the device is offline.
    """

    def __init__(self, queue: SyncQueue, connectivity: ConnectivityMonitor) -> None:
        self.queue = queue
        self.connectivity = connectivity
        self.last_sync_time: Optional[datetime] = None
        self.reconnect_task: Optional[asyncio.Task] = None
        connectivity.subscribe(self._handle_connectivity_change)

    @property
    def is_offline_mode(self) -> bool:
        return not self.connectivity.is_connected

    @property
    def status(self) -> SyncStatus:
        if self.queue.is_syncing:
            return SyncStatus("syncing")
        if self.queue.last_sync_error:
            return SyncStatus("error", self.queue.pending_count, self.queue.last_sync_error)
        if self.queue.has_pending:
            return SyncStatus("pending", self.queue.pending_count)
        if self.last_sync_time is None:
            return SyncStatus("idle")
        return SyncStatus("synced")

    def _handle_connectivity_change(self, connected: bool) -> None:
        if not connected:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.info("Back online with no event loop; waiting for the next trigger")
            return
        self.reconnect_task = loop.create_task(self._drain_if_needed("reconnect"))
        self.reconnect_task.add_done_callback(self._log_reconnect_failure)

    @staticmethod
    def _log_reconnect_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Sync on reconnect failed", exc_info=error)

    async def _drain_if_needed(self, reason: str) -> Optional[SyncResult]:
        if self.is_offline_mode or not self.queue.has_pending:
            return None
        logger.info(f"Syncing {self.queue.pending_count} pending operation(s) on {reason}")
        result = await self.queue.process_pending()
        if result.skipped is None:
            self.last_sync_time = datetime.now(timezone.utc)
        return result

    async def on_launch(self) -> Optional[SyncResult]:
        return await self._drain_if_needed("launch")

    async def on_foreground(self) -> Optional[SyncResult]:
        return await self._drain_if_needed("foreground")

    async def sync_now(self) -> Optional[SyncResult]:
        return await self._drain_if_needed("user request")
