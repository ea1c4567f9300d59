# services/api/core/revisions.py
"""
Append-only revision history for documents.

All functions take an open SQLAlchemy Connection so the caller decides the
transaction boundary (document creation and re-uploads each run in one
`engine.begin()` block).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import and_, insert, select, update
from sqlalchemy.engine import Connection

from adapters.sqlite.schema import document_revisions, documents, utcnow

logger = logging.getLogger(__name__)

INITIAL_NOTES = "Initial upload"


def _revision_row(
    *,
    doc_id: str,
    version: int,
    storage_path: str,
    change_notes: Optional[str],
    uploader_id: Optional[str],
    file_size: Optional[int] = None,
    checksum: Optional[str] = None,
) -> Dict[str, Any]:
    return dict(
        revision_id=str(uuid4()),
        doc_id=doc_id,
        version=version,
        storage_path=storage_path,
        change_notes=change_notes,
        file_size=file_size,
        checksum=checksum,
        uploaded_by=uploader_id,
        is_latest=1,
        created_at=utcnow(),
    )


def record_initial(
    conn: Connection,
    doc_id: str,
    storage_path: str,
    uploader_id: Optional[str],
) -> Dict[str, Any]:
    """Version 1; call once, inside the transaction that inserts the document."""
    row = _revision_row(
        doc_id=doc_id,
        version=1,
        storage_path=storage_path,
        change_notes=INITIAL_NOTES,
        uploader_id=uploader_id,
    )
    conn.execute(insert(document_revisions).values(**row))
    return row


def record_new_version(
    conn: Connection,
    doc_id: str,
    storage_path: str,
    change_notes: Optional[str],
    uploader_id: Optional[str],
    file_size: Optional[int] = None,
    checksum: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Bump the document's version and append the matching revision.

    The increment happens in the database (`current_version + 1 ... RETURNING`),
    which takes the write lock before anything is read, so two uploads racing
    on the same document get N+1 and N+2.

    Returns:
        The new revision row, or None if the document does not exist.
    """
    now = utcnow()
    bumped = conn.execute(
        update(documents)
        .where(documents.c.doc_id == doc_id)
        .values(
            current_version=documents.c.current_version + 1,
            storage_path=storage_path,
            updated_at=now,
        )
        .returning(documents.c.current_version)
    ).first()
    if bumped is None:
        return None
    version = int(bumped.current_version)

    conn.execute(
        update(document_revisions)
        .where(
            and_(
                document_revisions.c.doc_id == doc_id,
                document_revisions.c.is_latest == 1,
            )
        )
        .values(is_latest=0)
    )

    row = _revision_row(
        doc_id=doc_id,
        version=version,
        storage_path=storage_path,
        change_notes=change_notes,
        uploader_id=uploader_id,
        file_size=file_size,
        checksum=checksum,
    )
    row["created_at"] = now
    conn.execute(insert(document_revisions).values(**row))
    logger.info(f"Document {doc_id} now at version {version}")
    return row


def list_revisions(
    conn: Connection,
    doc_id: str,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Newest first; `limit` gives the short "recent revisions" read."""
    q = (
        select(document_revisions)
        .where(document_revisions.c.doc_id == doc_id)
        .order_by(document_revisions.c.version.desc())
    )
    if limit is not None:
        q = q.limit(limit)
    return [dict(r) for r in conn.execute(q).mappings().all()]
