# services/api/routers/annotations.py
from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from core.access import Caller
from core.validation import coerce_color, validate_page_number, validate_position
from main import get_caller, get_storage_adapter
from models.annotation import DEFAULT_PIN_COLOR, Annotation, LinkedEntity
from routers.documents import load_visible_document
from schemas.annotation import AnnotationCreate, AnnotationUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents/{doc_id}/annotations", tags=["annotations"])

Storage = Annotated[object, Depends(get_storage_adapter)]
CurrentCaller = Annotated[Caller, Depends(get_caller)]


def require_editor(caller: Caller) -> None:
    if not caller.at_least("FIELD_WORKER"):
        raise HTTPException(status_code=403, detail="Viewers cannot modify annotations")


def load_annotation(storage, doc_id: str, annotation_id: str) -> Annotation:
    ann = storage.get_annotation(doc_id, annotation_id)
    if ann is None:
        raise HTTPException(status_code=404, detail="Annotation not found")
    return ann


@router.get("")
async def list_annotations(
    doc_id: str,
    storage: Storage,
    caller: CurrentCaller,
    page: Optional[int] = Query(None, ge=1, description="Only pins on this 1-based page"),
) -> Dict[str, Any]:
    load_visible_document(storage, caller, doc_id, revisions_limit=1)
    items = storage.list_annotations(doc_id, page)
    return {"annotations": [a.to_api() for a in items], "count": len(items)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_annotation(
    doc_id: str,
    body: AnnotationCreate,
    response: Response,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    """
    Place a pin. Re-sending a create with a known annotation_id (an offline
    replay) returns the stored pin with 200 instead of duplicating it.
    """
    require_editor(caller)
    load_visible_document(storage, caller, doc_id, revisions_limit=1)

    validate_page_number(body.page_number)
    validate_position(body.position.x, body.position.y)

    fields = dict(
        doc_id=doc_id,
        page_number=body.page_number,
        x=body.position.x,
        y=body.position.y,
        kind=body.kind,
        label=body.label,
        color=coerce_color(body.color, DEFAULT_PIN_COLOR),
        comment=body.comment,
        linked_entity=(
            LinkedEntity.from_api(body.linked_entity.model_dump(mode="json"))
            if body.linked_entity else None
        ),
        created_by=caller.user_id,
    )
    if body.annotation_id:
        fields["annotation_id"] = body.annotation_id
    ann = Annotation(**fields)
    try:
        ann.validate()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    stored, created = storage.create_annotation(ann)
    if not created:
        response.status_code = status.HTTP_200_OK
    else:
        logger.info(f"Annotation {stored.annotation_id} ({stored.kind.value}) on {doc_id} p{stored.page_number}")
    return stored.to_api()


@router.patch("/{annotation_id}")
async def update_annotation(
    doc_id: str,
    annotation_id: str,
    body: AnnotationUpdate,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    require_editor(caller)
    load_visible_document(storage, caller, doc_id, revisions_limit=1)
    current = load_annotation(storage, doc_id, annotation_id)

    fields = body.model_dump(exclude_unset=True, mode="json")
    if fields.pop("doc_id", doc_id) != doc_id:
        raise HTTPException(status_code=400, detail="Annotations cannot be moved to another document")
    if fields.pop("page_number", current.page_number) != current.page_number:
        raise HTTPException(status_code=400, detail="Annotations cannot be moved to another page")
    if not fields:
        raise HTTPException(status_code=400, detail="No patchable fields")

    position = fields.pop("position", None)
    if position is not None:
        validate_position(position["x"], position["y"])
        fields["x"], fields["y"] = position["x"], position["y"]
    if "color" in fields:
        fields["color"] = coerce_color(fields["color"], current.color)

    return storage.update_annotation(doc_id, annotation_id, fields).to_api()


@router.delete("/{annotation_id}")
async def delete_annotation(
    doc_id: str,
    annotation_id: str,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    require_editor(caller)
    load_visible_document(storage, caller, doc_id, revisions_limit=1)
    ann = load_annotation(storage, doc_id, annotation_id)
    if not caller.is_admin and ann.created_by != caller.user_id:
        raise HTTPException(status_code=403, detail="Only the creator or an admin can delete this annotation")

    storage.delete_annotation(doc_id, annotation_id)
    logger.info(f"Annotation {annotation_id} deleted by {caller.user_id}")
    return {"success": True, "annotation_id": annotation_id}


@router.delete("")
async def clear_own_annotations(
    doc_id: str,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    """Remove every pin the caller placed on this document."""
    require_editor(caller)
    load_visible_document(storage, caller, doc_id, revisions_limit=1)
    deleted = storage.delete_user_annotations(doc_id, caller.user_id)
    return {"success": True, "deleted": deleted}


@router.post("/{annotation_id}/resolve")
async def resolve_annotation(
    doc_id: str,
    annotation_id: str,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    require_editor(caller)
    load_visible_document(storage, caller, doc_id, revisions_limit=1)
    return storage.resolve_annotation(doc_id, annotation_id, caller.user_id).to_api()


@router.post("/{annotation_id}/unresolve")
async def unresolve_annotation(
    doc_id: str,
    annotation_id: str,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    require_editor(caller)
    load_visible_document(storage, caller, doc_id, revisions_limit=1)
    return storage.unresolve_annotation(doc_id, annotation_id).to_api()
