# services/api/offline/engine.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from adapters.base import QueueStore
from adapters.json import JsonQueueStore
from offline.annotations import AnnotationEditor
from offline.api_client import ApiClient
from offline.connectivity import ConnectivityMonitor, OfflineManager
from offline.handlers import ResourceDispatcher
from offline.sync_queue import SyncQueue
from settings import Settings, get_settings


@dataclass
class OfflineEngine:
    """
    The device-side pieces for one signed-in user, built together so they
    share one queue, one connectivity flag and one API client.
    """
    api: ApiClient
    connectivity: ConnectivityMonitor
    queue: SyncQueue
    manager: OfflineManager
    history_limit: int = 50

    @classmethod
    def build(
        cls,
        base_url: str,
        user_id: str,
        *,
        store: Optional[QueueStore] = None,
        connected: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        settings: Optional[Settings] = None,
    ) -> "OfflineEngine":
        settings = settings or get_settings()
        api = ApiClient(base_url, user_id, transport=transport)
        connectivity = ConnectivityMonitor(connected)
        queue = SyncQueue(
            store if store is not None else JsonQueueStore(settings.sync_queue_path),
            ResourceDispatcher(api),
            connectivity,
            max_retries=settings.sync_max_retries,
        )
        return cls(
            api=api,
            connectivity=connectivity,
            queue=queue,
            manager=OfflineManager(queue, connectivity),
            history_limit=settings.annotation_history_limit,
        )

    def editor(self, doc_id: str) -> AnnotationEditor:
        return AnnotationEditor(doc_id, self.api, self.queue, self.connectivity, history_limit=self.history_limit)

    async def aclose(self) -> None:
        await self.api.aclose()
