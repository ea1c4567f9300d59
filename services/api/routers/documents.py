# services/api/routers/documents.py
from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from core.access import Caller
from core.validation import parse_id_list, unique_ids, validate_category
from main import get_caller, get_storage_adapter, settings
from schemas.document import AssignmentsUpdate, DocumentCreate, DocumentMetadataIn, DocumentPatch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])

# ---- DI aliases (no default value allowed) ----
Storage = Annotated[object, Depends(get_storage_adapter)]
CurrentCaller = Annotated[Caller, Depends(get_caller)]


def load_visible_document(storage, caller: Caller, doc_id: str, revisions_limit: Optional[int] = None):
    """404 for both missing and hidden documents."""
    doc = storage.get_document(caller, doc_id, revisions_limit=revisions_limit)
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return doc


def require_editor_of(doc, caller: Caller) -> None:
    if not caller.is_admin and doc.uploaded_by != caller.user_id:
        raise HTTPException(status_code=403, detail="Only the uploader or an admin can edit this document")


@router.get("")
async def list_documents(
    storage: Storage,
    caller: CurrentCaller,
    project_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    assignee_ids: Optional[str] = Query(None, description="Comma-separated user ids"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
) -> Dict[str, Any]:
    """
    Visible documents, newest first.

    The restricted category never widens access: asking for it explicitly
    just narrows the already-filtered set, possibly to nothing.
    """
    size = min(limit or settings.default_page_size, settings.max_page_size)
    return storage.list_documents(
        caller,
        project_id=project_id or None,
        category=validate_category(category),
        search=(search or "").strip() or None,
        assignee_ids=parse_id_list(assignee_ids),
        page=page,
        limit=size,
    )


@router.get("/{doc_id}")
async def get_document(doc_id: str, storage: Storage, caller: CurrentCaller) -> Dict[str, Any]:
    doc = load_visible_document(storage, caller, doc_id)
    return doc.to_api()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_document(body: DocumentCreate, storage: Storage, caller: CurrentCaller) -> Dict[str, Any]:
    """
    Create a document with its first revision.
    Any invalid assignee id rejects the whole request.
    """
    if not caller.at_least("FIELD_WORKER"):
        raise HTTPException(status_code=403, detail="Viewers cannot upload documents")

    data = body.model_dump()
    data["category"] = validate_category(body.category)
    data["assignee_ids"] = unique_ids(body.assignee_ids)
    data["metadata"] = body.metadata.model_dump(exclude_none=True) if body.metadata else None

    doc = storage.create_document(data, caller.user_id)
    return doc.to_api()


@router.patch("/{doc_id}")
async def patch_document(
    doc_id: str,
    body: DocumentPatch,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    doc = load_visible_document(storage, caller, doc_id)
    require_editor_of(doc, caller)

    fields = body.model_dump(exclude_unset=True)
    if not fields.get("metadata"):
        fields.pop("metadata", None)
    if not fields:
        raise HTTPException(status_code=400, detail="No patchable fields")
    if "category" in fields:
        fields["category"] = validate_category(fields["category"])
    if fields.get("name") is not None and not fields["name"].strip():
        raise HTTPException(status_code=400, detail="name must not be blank")

    updated = storage.update_document(doc_id, fields)
    logger.info(f"Document {doc_id} patched by {caller.user_id}: {sorted(fields)}")
    return updated.to_api()


@router.put("/{doc_id}/assignments")
async def replace_assignments(
    doc_id: str,
    body: AssignmentsUpdate,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can change assignments")
    load_visible_document(storage, caller, doc_id)
    doc = storage.set_assignments(doc_id, unique_ids(body.assignee_ids))
    return doc.to_api()


@router.get("/{doc_id}/metadata")
async def get_metadata(doc_id: str, storage: Storage, caller: CurrentCaller) -> Dict[str, Any]:
    doc = load_visible_document(storage, caller, doc_id, revisions_limit=0)
    return {"doc_id": doc_id, "metadata": doc.metadata}


@router.patch("/{doc_id}/metadata")
async def patch_metadata(
    doc_id: str,
    body: DocumentMetadataIn,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    """Upsert drawing fields; only the fields sent are touched."""
    doc = load_visible_document(storage, caller, doc_id, revisions_limit=0)
    require_editor_of(doc, caller)

    meta = body.model_dump(exclude_unset=True)
    if not meta:
        raise HTTPException(status_code=400, detail="No metadata fields")

    updated = storage.update_document(doc_id, {"metadata": meta})
    logger.info(f"Document {doc_id} metadata updated by {caller.user_id}: {sorted(meta)}")
    return {"doc_id": doc_id, "metadata": updated.metadata}
