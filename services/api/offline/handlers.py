# services/api/offline/handlers.py
"""
Turns a queued PendingOperation back into the REST call it stands for.
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from models.pending_operation import OperationType, PendingOperation, ResourceType
from offline.errors import SyncError

logger = logging.getLogger(__name__)

RESOURCE_PATHS = {
    ResourceType.PROJECT: "/projects",
    ResourceType.DAILY_LOG: "/daily-logs",
    ResourceType.TIME_ENTRY: "/time-entries",
    ResourceType.EQUIPMENT: "/equipment",
    ResourceType.INCIDENT: "/safety/incidents",
    ResourceType.DOCUMENT: "/documents",
    ResourceType.COMMENT: "/comments",
    ResourceType.PUNCH_LIST: "/safety/punch-lists",
}

# Resources that have no submit workflow on the server
NO_SUBMIT = {ResourceType.PROJECT, ResourceType.TIME_ENTRY, ResourceType.ANNOTATION}


class ResourceDispatcher:
    """
    Maps (resource_type, operation, resource_id, payload) to one API call.

    Local validation problems raise SyncError before anything is sent;
    the queue counts them as failed attempts like any network error.
    """

    def __init__(self, api) -> None:
        self.api = api

    async def dispatch(self, op: PendingOperation) -> Any:
        if op.operation in (OperationType.CREATE, OperationType.UPDATE) and op.payload is None:
            raise SyncError(f"Missing payload for {op.operation.value} {op.resource_type.value}")
        if op.operation != OperationType.CREATE and not op.resource_id:
            raise SyncError(f"Missing resource id for {op.operation.value} {op.resource_type.value}")
        if op.operation == OperationType.SUBMIT and op.resource_type in NO_SUBMIT:
            raise SyncError(f"{op.resource_type.value} does not support submit")

        if op.resource_type == ResourceType.ANNOTATION:
            return await self._dispatch_annotation(op)

        base = RESOURCE_PATHS[op.resource_type]
        if op.operation == OperationType.CREATE:
            return await self.api.post(base, json=op.payload)
        if op.operation == OperationType.UPDATE:
            return await self.api.put(f"{base}/{op.resource_id}", json=op.payload)
        if op.operation == OperationType.DELETE:
            return await self.api.delete(f"{base}/{op.resource_id}")
        return await self.api.post(f"{base}/{op.resource_id}/submit")

    async def _dispatch_annotation(self, op: PendingOperation) -> Any:
        """Pins live under their document: the payload must name doc_id."""
        payload: Dict[str, Any] = dict(op.payload or {})
        doc_id = payload.pop("doc_id", None)
        if not doc_id:
            raise SyncError("Annotation operation is missing doc_id")
        base = f"/documents/{doc_id}/annotations"

        if op.operation == OperationType.CREATE:
            # the client-side id travels along so a replay is recognised
            if op.resource_id:
                payload.setdefault("annotation_id", op.resource_id)
            return await self.api.post(base, json=payload)
        if op.operation == OperationType.UPDATE:
            return await self.api.patch(f"{base}/{op.resource_id}", json=payload)
        return await self.api.delete(f"{base}/{op.resource_id}")
