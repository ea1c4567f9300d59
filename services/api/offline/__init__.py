"""
Device-side offline engine: durable operation queue, replay dispatcher,
connectivity-driven sync triggers and optimistic annotation editing.

Nothing here is a singleton; build the pieces and pass them around:

    engine = OfflineEngine.build(base_url, user_id)
    editor = engine.editor(doc_id)
    await engine.manager.on_launch()
"""
from .annotations import AnnotationEditor, LocalAnnotation, MutationState
from .api_client import ApiClient
from .connectivity import ConnectivityMonitor, OfflineManager, SyncStatus
from .engine import OfflineEngine
from .errors import ApiError, SyncError
from .handlers import RESOURCE_PATHS, ResourceDispatcher
from .history import AnnotationHistory
from .sync_queue import SyncQueue, SyncResult

__all__ = [
    "AnnotationEditor",
    "LocalAnnotation",
    "MutationState",
    "ApiClient",
    "ConnectivityMonitor",
    "OfflineManager",
    "OfflineEngine",
    "SyncStatus",
    "ApiError",
    "SyncError",
    "RESOURCE_PATHS",
    "ResourceDispatcher",
    "AnnotationHistory",
    "SyncQueue",
    "SyncResult",
]
