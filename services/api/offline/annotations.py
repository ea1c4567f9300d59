# services/api/offline/annotations.py
"""
Device-side annotation state for one document.

Each local pin carries an explicit MutationState:

* CONFIRMED - the server has it, values match the last server response
* PENDING   - created (or re-created by undo/redo) locally, queued for sync
* FAILED    - its queued operation exhausted its retries

Only creates are applied before the server answers. Updates, deletes and
resolve/unresolve go to the server first and leave local state untouched
when they fail.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from models.annotation import (
    DEFAULT_PIN_COLOR,
    MUTABLE_FIELDS,
    Annotation,
    AnnotationKind,
    LinkedEntity,
)
from models.pending_operation import OperationType, PendingOperation, ResourceType
from offline.errors import ApiError, SyncError
from offline.history import AnnotationHistory

logger = logging.getLogger(__name__)


class MutationState(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class LocalAnnotation:
    annotation: Annotation
    state: MutationState = MutationState.CONFIRMED
    op_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def annotation_id(self) -> str:
        return self.annotation.annotation_id


def create_payload(ann: Annotation) -> Dict[str, Any]:
    """Queued create body; doc_id is stripped by the dispatcher into the URL."""
    return {
        "doc_id": ann.doc_id,
        "annotation_id": ann.annotation_id,
        "page_number": ann.page_number,
        "position": {"x": ann.x, "y": ann.y},
        "kind": ann.kind.value,
        "label": ann.label,
        "color": ann.color,
        "comment": ann.comment,
        "linked_entity": ann.linked_entity.to_api() if ann.linked_entity else None,
    }


def _mutable_values(ann: Annotation) -> Dict[str, Any]:
    values = {k: getattr(ann, k) for k in MUTABLE_FIELDS}
    if ann.linked_entity is not None:
        values["linked_entity"] = ann.linked_entity.to_api()
    return values


def _update_payload(ann: Annotation) -> Dict[str, Any]:
    values = _mutable_values(ann)
    x, y = values.pop("x"), values.pop("y")
    return {"doc_id": ann.doc_id, "position": {"x": x, "y": y}, **values}


class AnnotationEditor:
    def __init__(self, doc_id: str, api, queue, connectivity, history_limit: int = 50) -> None:
        self.doc_id = doc_id
        self.api = api
        self.queue = queue
        self.connectivity = connectivity
        self.history: AnnotationHistory[LocalAnnotation] = AnnotationHistory(limit=history_limit)
        self._items: Dict[str, LocalAnnotation] = {}
        self.history.reset([])

        queue.on_applied(self.apply_server_result)
        queue.on_failed(self.apply_failure)

    @property
    def base_path(self) -> str:
        return f"/documents/{self.doc_id}/annotations"

    @property
    def annotations(self) -> List[LocalAnnotation]:
        return list(self._items.values())

    def get(self, annotation_id: str) -> Optional[LocalAnnotation]:
        return self._items.get(annotation_id)

    def _push(self, action: str) -> None:
        self.history.push(action, self.annotations)

    async def load(self, page: Optional[int] = None) -> List[LocalAnnotation]:
        """Replace local state with the server's list and restart history."""
        if page is None:
            data = await self.api.get(self.base_path)
        else:
            data = await self.api.get(self.base_path, page=page)
        self._items = {}
        for row in data["annotations"]:
            ann = Annotation.from_response(row)
            self._items[ann.annotation_id] = LocalAnnotation(ann)
        # pins created offline are not on the server yet; keep them visible
        for op in self.queue.operations:
            if self._is_own_create(op) and op.resource_id not in self._items:
                ann = Annotation.from_response({**op.payload, "created_by": None})
                self._items[ann.annotation_id] = LocalAnnotation(ann, MutationState.PENDING, op.id)
        self.history.reset(self.annotations)
        return self.annotations

    # --------------------
    # Mutations
    # --------------------
    async def create(
        self,
        *,
        page_number: int,
        x: float,
        y: float,
        kind: AnnotationKind = AnnotationKind.COMMENT,
        comment: Optional[str] = None,
        linked_entity: Optional[LinkedEntity] = None,
        label: Optional[str] = None,
        color: str = DEFAULT_PIN_COLOR,
    ) -> LocalAnnotation:
        """
        Optimistic create. Offline, or when the network drops mid-call, the
        pin stays PENDING and an annotation/create operation is queued.

        Raises:
            ValueError: the pin breaks a local invariant (nothing is changed)
            ApiError: the server rejected it (the pin is removed again)
        """
        ann = Annotation(
            doc_id=self.doc_id,
            page_number=page_number,
            x=x,
            y=y,
            kind=kind,
            comment=comment,
            linked_entity=linked_entity,
            label=label,
            color=color,
        )
        ann.validate()
        local = LocalAnnotation(ann, MutationState.PENDING)
        self._items[ann.annotation_id] = local

        if not self.connectivity.is_connected:
            self._queue_create(local)
            self._push("add")
            return local

        payload = create_payload(ann)
        payload.pop("doc_id")
        try:
            data = await self.api.post(self.base_path, json=payload)
        except httpx.TransportError as e:
            logger.info(f"Create of {ann.annotation_id} deferred: {e}")
            self._queue_create(local)
            self._push("add")
            return local
        except ApiError:
            del self._items[ann.annotation_id]
            raise

        confirmed = LocalAnnotation(Annotation.from_response(data))
        self._items[ann.annotation_id] = confirmed
        self._push("add")
        return confirmed

    def _queue_create(self, local: LocalAnnotation) -> None:
        op = self.queue.enqueue(
            OperationType.CREATE,
            ResourceType.ANNOTATION,
            resource_id=local.annotation_id,
            payload=create_payload(local.annotation),
        )
        local.op_id = op.id
        local.state = MutationState.PENDING

    def _confirmed(self, annotation_id: str) -> LocalAnnotation:
        local = self._items.get(annotation_id)
        if local is None:
            raise KeyError(annotation_id)
        if local.state != MutationState.CONFIRMED:
            raise SyncError(f"Annotation {annotation_id} has not reached the server yet")
        return local

    async def update(self, annotation_id: str, **fields: Any) -> LocalAnnotation:
        """Server first; local state only changes on success."""
        self._confirmed(annotation_id)
        body = dict(fields)
        if "x" in body or "y" in body:
            current = self._items[annotation_id].annotation
            body["position"] = {"x": body.pop("x", current.x), "y": body.pop("y", current.y)}
        if isinstance(body.get("linked_entity"), LinkedEntity):
            body["linked_entity"] = body["linked_entity"].to_api()
        data = await self.api.patch(f"{self.base_path}/{annotation_id}", json=body)
        self._items[annotation_id] = LocalAnnotation(Annotation.from_response(data))
        self._push("update")
        return self._items[annotation_id]

    async def delete(self, annotation_id: str) -> None:
        local = self._items.get(annotation_id)
        if local is None:
            raise KeyError(annotation_id)
        if local.state != MutationState.CONFIRMED:
            # never reached the server: just drop the queued create
            if local.op_id:
                self.queue.dequeue(local.op_id)
        else:
            await self.api.delete(f"{self.base_path}/{annotation_id}")
        del self._items[annotation_id]
        self._push("remove")

    async def resolve(self, annotation_id: str) -> LocalAnnotation:
        return await self._set_resolved(annotation_id, "resolve")

    async def unresolve(self, annotation_id: str) -> LocalAnnotation:
        return await self._set_resolved(annotation_id, "unresolve")

    async def _set_resolved(self, annotation_id: str, action: str) -> LocalAnnotation:
        self._confirmed(annotation_id)
        data = await self.api.post(f"{self.base_path}/{annotation_id}/{action}")
        self._items[annotation_id] = LocalAnnotation(Annotation.from_response(data))
        self._push("update")
        return self._items[annotation_id]

    # --------------------
    # Reducer for queued results
    # --------------------
    def _is_own_create(self, op: PendingOperation) -> bool:
        return (
            op.resource_type == ResourceType.ANNOTATION
            and op.operation == OperationType.CREATE
            and (op.payload or {}).get("doc_id") == self.doc_id
        )

    def apply_server_result(self, op: PendingOperation, result: Any) -> None:
        """Swap a PENDING pin for the server's record once its create lands."""
        if op.resource_type != ResourceType.ANNOTATION or (op.payload or {}).get("doc_id") != self.doc_id:
            return
        local = self._items.get(op.resource_id or "")
        if local is None or local.op_id != op.id:
            return
        if op.operation in (OperationType.CREATE, OperationType.UPDATE) and isinstance(result, dict):
            self._items[local.annotation_id] = LocalAnnotation(Annotation.from_response(result))
        else:
            self._items[local.annotation_id] = replace(local, state=MutationState.CONFIRMED, op_id=None, error=None)

    def apply_failure(self, op: PendingOperation) -> None:
        local = self._items.get(op.resource_id or "")
        if local is None or local.op_id != op.id:
            return
        if not op.can_retry(self.queue.max_retries):
            local.state = MutationState.FAILED
        local.error = op.error

    # --------------------
    # Undo / redo
    # --------------------
    async def undo(self) -> bool:
        snapshot = self.history.undo()
        if snapshot is None:
            return False
        await self._restore(snapshot)
        return True

    async def redo(self) -> bool:
        snapshot = self.history.redo()
        if snapshot is None:
            return False
        await self._restore(snapshot)
        return True

    async def _restore(self, snapshot: List[LocalAnnotation]) -> None:
        """
        Make local state match `snapshot`, queueing whatever the server needs
        to follow: re-creates for pins that come back, deletes for confirmed
        pins that go away, updates for confirmed pins whose values differ.
        """
        target = {item.annotation_id: item for item in snapshot}
        restored: Dict[str, LocalAnnotation] = {}

        for annotation_id, local in self._items.items():
            if annotation_id in target:
                continue
            if local.state == MutationState.CONFIRMED:
                self.queue.enqueue(
                    OperationType.DELETE,
                    ResourceType.ANNOTATION,
                    resource_id=annotation_id,
                    payload={"doc_id": self.doc_id},
                )
            elif local.op_id:
                self.queue.dequeue(local.op_id)

        for annotation_id, wanted in target.items():
            current = self._items.get(annotation_id)
            if current is None:
                item = LocalAnnotation(wanted.annotation, MutationState.PENDING)
                self._queue_create(item)
            elif _mutable_values(current.annotation) != _mutable_values(wanted.annotation):
                item = replace(current, annotation=wanted.annotation)
                if current.state == MutationState.CONFIRMED:
                    op = self.queue.enqueue(
                        OperationType.UPDATE,
                        ResourceType.ANNOTATION,
                        resource_id=annotation_id,
                        payload=_update_payload(wanted.annotation),
                    )
                    item = replace(item, state=MutationState.PENDING, op_id=op.id)
                else:
                    # queued create carries stale values; queue a fresh one
                    if current.op_id:
                        self.queue.dequeue(current.op_id)
                    self._queue_create(item)
            else:
                item = current
            restored[annotation_id] = item

        self._items = restored
        if self.connectivity.is_connected:
            await self.queue.process_pending()
