# services/api/routers/revisions.py
from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from core.access import Caller
from core.validation import validate_change_notes
from main import get_caller, get_storage_adapter
from routers.documents import load_visible_document
from schemas.revision import RevisionCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents/{doc_id}/revisions", tags=["revisions"])

Storage = Annotated[object, Depends(get_storage_adapter)]
CurrentCaller = Annotated[Caller, Depends(get_caller)]


@router.get("")
async def list_revisions(
    doc_id: str,
    storage: Storage,
    caller: CurrentCaller,
    limit: Optional[int] = Query(None, ge=1, le=500),
) -> Dict[str, Any]:
    doc = load_visible_document(storage, caller, doc_id, revisions_limit=1)
    revisions = storage.list_revisions(doc_id, limit)
    return {
        "doc_id": doc_id,
        "current_version": doc.current_version,
        "revisions": [r.to_api() for r in revisions],
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_revision(
    doc_id: str,
    body: RevisionCreate,
    storage: Storage,
    caller: CurrentCaller,
) -> Dict[str, Any]:
    """
    Re-upload: appends version N+1 and makes it the latest.
    """
    if not caller.at_least("FIELD_WORKER"):
        raise HTTPException(status_code=403, detail="Viewers cannot upload revisions")
    load_visible_document(storage, caller, doc_id, revisions_limit=1)
    validate_change_notes(body.change_notes)
    if not body.storage_path.strip():
        raise HTTPException(status_code=400, detail="storage_path must not be blank")

    revision = storage.add_revision(
        doc_id,
        body.storage_path.strip(),
        body.change_notes,
        caller.user_id,
        file_size=body.file_size,
        checksum=body.checksum,
    )
    logger.info(f"Revision v{revision.version} uploaded for {doc_id} by {caller.user_id}")
    return {"revision": revision.to_api(), "new_version": revision.version}
