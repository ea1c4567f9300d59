# services/api/adapters/sqlite/__init__.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from cachetools import TTLCache
from fastapi import HTTPException
from sqlalchemy import (
    and_,
    delete,
    exists,
    func,
    insert,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core import access
from core import revisions as revision_tracker
from models import METADATA_FIELDS, Annotation, Document, Revision
from .schema import (
    annotations,
    document_assignments,
    document_metadata,
    document_revisions,
    documents,
    make_engine,
    metadata,
    projects,
    users,
    utcnow,
)

logger = logging.getLogger(__name__)

DOCUMENT_PATCH_FIELDS = {"name", "description", "category", "tags"}


# ========== Retry decorator for write-lock / version races ==========
def retry_version_race(func):
    """Retry a whole transaction when SQLite is locked or a version collides."""
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        retry=retry_if_exception_type((OperationalError, IntegrityError)),
        reraise=True,
    )
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


# ---- Adapter implementation --------------------------------------------------

@dataclass
class SqliteAdapter:
    engine: Engine
    restricted_category: str = "BLASTING"
    recent_revisions_limit: int = 5
    caller_cache_ttl: int = 5
    _user_cache: TTLCache = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._user_cache = TTLCache(maxsize=100, ttl=self.caller_cache_ttl)

    @classmethod
    def from_url(cls, db_url: str = "sqlite:///data/constructionpro.db", **kwargs: Any) -> "SqliteAdapter":
        eng = make_engine(db_url)
        metadata.create_all(eng)
        return cls(engine=eng, **kwargs)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()

    # ========== Users / projects ==========

    def create_user(
        self,
        *,
        name: str,
        email: str,
        role: str = "FIELD_WORKER",
        is_blaster: bool = False,
        status: str = "ACTIVE",
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        row = dict(
            user_id=user_id or str(uuid4()),
            name=name,
            email=email,
            role=role,
            is_blaster=1 if is_blaster else 0,
            status=status,
            created_at=utcnow(),
        )
        with self.engine.begin() as conn:
            conn.execute(insert(users).values(**row))
        self._user_cache.pop(row["user_id"], None)
        return row

    def set_user_status(self, user_id: str, status: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(update(users).where(users.c.user_id == user_id).values(status=status))
        self._user_cache.pop(user_id, None)

    def get_active_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Cached for a few seconds; every request resolves its caller through here."""
        if user_id in self._user_cache:
            return self._user_cache[user_id]
        with self.engine.connect() as conn:
            row = conn.execute(
                select(users).where(and_(users.c.user_id == user_id, users.c.status == "ACTIVE"))
            ).mappings().first()
        user = dict(row) if row else None
        if user:
            self._user_cache[user_id] = user
        return user

    def create_project(self, name: str, project_id: Optional[str] = None) -> Dict[str, Any]:
        row = dict(project_id=project_id or str(uuid4()), name=name, created_at=utcnow())
        with self.engine.begin() as conn:
            conn.execute(insert(projects).values(**row))
        return row

    # ========== Documents ==========

    def _base_filters(
        self,
        caller: access.Caller,
        *,
        project_id: Optional[str] = None,
        search: Optional[str] = None,
        assignee_ids: Optional[List[str]] = None,
    ) -> List[Any]:
        filters = [access.visibility_clause(caller, self.restricted_category)]
        if project_id:
            filters.append(documents.c.project_id == project_id)
        if search:
            term = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{term}%"
            filters.append(
                or_(
                    documents.c.name.ilike(pattern, escape="\\"),
                    documents.c.description.ilike(pattern, escape="\\"),
                )
            )
        if assignee_ids:
            filters.append(
                exists(
                    select(document_assignments.c.doc_id).where(
                        and_(
                            document_assignments.c.doc_id == documents.c.doc_id,
                            document_assignments.c.user_id.in_(assignee_ids),
                        )
                    )
                )
            )
        return filters

    def list_documents(
        self,
        caller: access.Caller,
        *,
        project_id: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        assignee_ids: Optional[List[str]] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """
        One page of visible documents, the total behind it and a category
        histogram. All three share the visibility clause; the histogram
        ignores only the category filter.
        """
        base = self._base_filters(
            caller, project_id=project_id, search=search, assignee_ids=assignee_ids
        )
        filters = list(base)
        if category:
            filters.append(documents.c.category == category)
        where = and_(*filters)

        with self.engine.connect() as conn:
            total = conn.execute(
                select(func.count()).select_from(documents).where(where)
            ).scalar_one()

            rows = conn.execute(
                select(documents, projects.c.name.label("project_name"))
                .select_from(documents.outerjoin(projects, documents.c.project_id == projects.c.project_id))
                .where(where)
                .order_by(documents.c.created_at.desc(), documents.c.doc_id.asc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).mappings().all()

            histogram = conn.execute(
                select(documents.c.category, func.count().label("n"))
                .where(and_(*base))
                .group_by(documents.c.category)
            ).all()

            docs = self._hydrate(conn, rows, revisions_limit=self.recent_revisions_limit)

        categories = {(r.category or "UNCATEGORIZED"): int(r.n) for r in histogram}
        return {
            "documents": [d.to_api() for d in docs],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": int(total),
                "pages": math.ceil(total / limit) if limit else 0,
            },
            "categories": categories,
        }

    def get_document(
        self,
        caller: access.Caller,
        doc_id: str,
        revisions_limit: Optional[int] = None,
    ) -> Optional[Document]:
        """By-id read through the same visibility clause; hidden == missing."""
        with self.engine.connect() as conn:
            return self._get_document(conn, caller, doc_id, revisions_limit)

    def _get_document(
        self,
        conn: Connection,
        caller: Optional[access.Caller],
        doc_id: str,
        revisions_limit: Optional[int] = None,
    ) -> Optional[Document]:
        where = documents.c.doc_id == doc_id
        if caller is not None:
            where = and_(where, access.visibility_clause(caller, self.restricted_category))
        rows = conn.execute(
            select(documents, projects.c.name.label("project_name"))
            .select_from(documents.outerjoin(projects, documents.c.project_id == projects.c.project_id))
            .where(where)
        ).mappings().all()
        docs = self._hydrate(conn, rows, revisions_limit=revisions_limit)
        return docs[0] if docs else None

    def _hydrate(
        self,
        conn: Connection,
        rows: Iterable[Any],
        revisions_limit: Optional[int],
    ) -> List[Document]:
        """Attach assignees, counts, revisions and metadata without per-row queries."""
        docs = [Document.from_storage(dict(r)) for r in rows]
        if not docs:
            return docs
        ids = [d.doc_id for d in docs]
        by_id = {d.doc_id: d for d in docs}

        assignee_rows = conn.execute(
            select(
                document_assignments.c.doc_id,
                users.c.user_id,
                users.c.name,
                users.c.email,
            )
            .select_from(document_assignments.join(users, document_assignments.c.user_id == users.c.user_id))
            .where(document_assignments.c.doc_id.in_(ids))
            .order_by(users.c.name.asc())
        ).all()
        for r in assignee_rows:
            by_id[r.doc_id].assignees.append({"user_id": r.user_id, "name": r.name, "email": r.email})

        annotation_counts = conn.execute(
            select(annotations.c.doc_id, func.count().label("n"))
            .where(annotations.c.doc_id.in_(ids))
            .group_by(annotations.c.doc_id)
        ).all()
        for r in annotation_counts:
            by_id[r.doc_id].annotation_count = int(r.n)

        revision_rows = conn.execute(
            select(document_revisions)
            .where(document_revisions.c.doc_id.in_(ids))
            .order_by(document_revisions.c.doc_id, document_revisions.c.version.desc())
        ).mappings().all()
        for r in revision_rows:
            doc = by_id[r["doc_id"]]
            doc.revision_count += 1
            if revisions_limit is None or len(doc.revisions) < revisions_limit:
                doc.revisions.append(Revision.from_storage(dict(r)))

        meta_rows = conn.execute(
            select(document_metadata).where(document_metadata.c.doc_id.in_(ids))
        ).mappings().all()
        for r in meta_rows:
            by_id[r["doc_id"]].metadata = {k: r[k] for k in METADATA_FIELDS}

        return docs

    def _validate_assignees(self, conn: Connection, assignee_ids: List[str]) -> None:
        """Every id must be an ACTIVE blaster; one bad id rejects the whole list."""
        if not assignee_ids:
            return
        found = conn.execute(
            select(users.c.user_id).where(
                and_(
                    users.c.user_id.in_(assignee_ids),
                    users.c.status == "ACTIVE",
                    users.c.is_blaster == 1,
                )
            )
        ).scalars().all()
        invalid = sorted(set(assignee_ids) - set(found))
        if invalid:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid assignee ids (must be active blasters): {', '.join(invalid)}",
            )

    def create_document(self, data: Dict[str, Any], uploader_id: Optional[str]) -> Document:
        """
        Insert a document, its assignments, its metadata and revision 1 in one
        transaction. `data` has already been through the request schema.
        """
        doc_id = str(uuid4())
        now = utcnow()
        assignee_ids = list(data.get("assignee_ids") or [])

        with self.engine.begin() as conn:
            project_id = data.get("project_id")
            if project_id:
                found = conn.execute(
                    select(projects.c.project_id).where(projects.c.project_id == project_id)
                ).first()
                if not found:
                    raise HTTPException(status_code=400, detail=f"Unknown project_id {project_id}")

            self._validate_assignees(conn, assignee_ids)

            conn.execute(
                insert(documents).values(
                    doc_id=doc_id,
                    project_id=project_id,
                    name=data["name"],
                    description=data.get("description"),
                    category=data.get("category"),
                    doc_type=data.get("doc_type") or "document",
                    storage_path=data["storage_path"],
                    tags=list(data.get("tags") or []),
                    gps_latitude=data.get("gps_latitude"),
                    gps_longitude=data.get("gps_longitude"),
                    is_admin_only=1 if data.get("is_admin_only") else 0,
                    current_version=1,
                    uploaded_by=uploader_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            if assignee_ids:
                conn.execute(
                    document_assignments.insert(),
                    [dict(doc_id=doc_id, user_id=uid, assigned_at=now) for uid in assignee_ids],
                )
            meta = data.get("metadata")
            if meta:
                conn.execute(insert(document_metadata).values(doc_id=doc_id, **meta))

            revision_tracker.record_initial(conn, doc_id, data["storage_path"], uploader_id)

            doc = self._get_document(conn, None, doc_id)

        logger.info(f"Created document {doc_id} ({len(assignee_ids)} assignees)")
        return doc

    def update_document(self, doc_id: str, fields: Dict[str, Any]) -> Document:
        """
        Patch document columns and upsert drawing metadata. `metadata` is a
        partial dict of METADATA_FIELDS; a top-level `scale` is folded into it.
        """
        values = {k: v for k, v in fields.items() if k in DOCUMENT_PATCH_FIELDS}
        meta = {k: v for k, v in (fields.get("metadata") or {}).items() if k in METADATA_FIELDS}
        if fields.get("scale") is not None:
            meta["scale"] = fields["scale"]

        with self.engine.begin() as conn:
            if values or meta:
                conn.execute(
                    update(documents)
                    .where(documents.c.doc_id == doc_id)
                    .values(**values, updated_at=utcnow())
                )
            if meta:
                self._upsert_metadata(conn, doc_id, meta)

            doc = self._get_document(conn, None, doc_id, self.recent_revisions_limit)

        if doc is None:
            raise HTTPException(status_code=404, detail="Document not found")
        return doc

    @staticmethod
    def _upsert_metadata(conn, doc_id: str, meta: Dict[str, Any]) -> None:
        existing = conn.execute(
            select(document_metadata.c.doc_id).where(document_metadata.c.doc_id == doc_id)
        ).first()
        if existing:
            conn.execute(
                update(document_metadata)
                .where(document_metadata.c.doc_id == doc_id)
                .values(**meta)
            )
        else:
            conn.execute(insert(document_metadata).values(doc_id=doc_id, **meta))

    def set_assignments(self, doc_id: str, assignee_ids: List[str]) -> Document:
        """Replace the assignee set wholesale (same validation as create)."""
        with self.engine.begin() as conn:
            self._validate_assignees(conn, assignee_ids)
            conn.execute(delete(document_assignments).where(document_assignments.c.doc_id == doc_id))
            if assignee_ids:
                now = utcnow()
                conn.execute(
                    document_assignments.insert(),
                    [dict(doc_id=doc_id, user_id=uid, assigned_at=now) for uid in assignee_ids],
                )
            doc = self._get_document(conn, None, doc_id, self.recent_revisions_limit)

        if doc is None:
            raise HTTPException(status_code=404, detail="Document not found")
        logger.info(f"Document {doc_id} assignees replaced ({len(assignee_ids)})")
        return doc

    # ========== Revisions ==========

    @retry_version_race
    def add_revision(
        self,
        doc_id: str,
        storage_path: str,
        change_notes: Optional[str],
        uploader_id: Optional[str],
        file_size: Optional[int] = None,
        checksum: Optional[str] = None,
    ) -> Revision:
        with self.engine.begin() as conn:
            row = revision_tracker.record_new_version(
                conn,
                doc_id,
                storage_path,
                change_notes,
                uploader_id,
                file_size=file_size,
                checksum=checksum,
            )
        if row is None:
            raise HTTPException(status_code=404, detail="Document not found")
        return Revision.from_storage(row)

    def list_revisions(self, doc_id: str, limit: Optional[int] = None) -> List[Revision]:
        with self.engine.connect() as conn:
            rows = revision_tracker.list_revisions(conn, doc_id, limit)
        return [Revision.from_storage(r) for r in rows]

    # ========== Annotations ==========

    def list_annotations(self, doc_id: str, page_number: Optional[int] = None) -> List[Annotation]:
        q = select(annotations).where(annotations.c.doc_id == doc_id)
        if page_number is not None:
            q = q.where(annotations.c.page_number == page_number)
        q = q.order_by(annotations.c.created_at.asc(), annotations.c.annotation_id.asc())
        with self.engine.connect() as conn:
            rows = conn.execute(q).mappings().all()
        return [Annotation.from_storage(dict(r)) for r in rows]

    def get_annotation(self, doc_id: str, annotation_id: str) -> Optional[Annotation]:
        with self.engine.connect() as conn:
            return self._get_annotation(conn, doc_id, annotation_id)

    def _get_annotation(self, conn: Connection, doc_id: str, annotation_id: str) -> Optional[Annotation]:
        row = conn.execute(
            select(annotations).where(
                and_(annotations.c.doc_id == doc_id, annotations.c.annotation_id == annotation_id)
            )
        ).mappings().first()
        return Annotation.from_storage(dict(row)) if row else None

    def create_annotation(self, ann: Annotation) -> Tuple[Annotation, bool]:
        """
        Insert a pin. Replaying a create with an id that already exists on the
        same document returns the stored pin instead of a second copy.

        Returns:
            (annotation, created)
        """
        now = utcnow()
        with self.engine.begin() as conn:
            existing = self._get_annotation(conn, ann.doc_id, ann.annotation_id)
            if existing:
                return existing, False
            try:
                conn.execute(
                    insert(annotations).values(**ann.to_storage(), created_at=now, updated_at=now)
                )
            except IntegrityError as e:
                raise HTTPException(status_code=400, detail="annotation_id already in use") from e
            return self._get_annotation(conn, ann.doc_id, ann.annotation_id), True

    def update_annotation(self, doc_id: str, annotation_id: str, updates: Dict[str, Any]) -> Annotation:
        """Merge partial fields; last write wins."""
        with self.engine.begin() as conn:
            current = self._get_annotation(conn, doc_id, annotation_id)
            if current is None:
                raise HTTPException(status_code=404, detail="Annotation not found")
            try:
                merged = current.merged(updates)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e

            values = merged.to_storage()
            for key in ("annotation_id", "doc_id", "page_number", "created_by"):
                values.pop(key)
            conn.execute(
                update(annotations)
                .where(annotations.c.annotation_id == annotation_id)
                .values(**values, updated_at=utcnow())
            )
            return self._get_annotation(conn, doc_id, annotation_id)

    def delete_annotation(self, doc_id: str, annotation_id: str) -> bool:
        with self.engine.begin() as conn:
            res = conn.execute(
                delete(annotations).where(
                    and_(annotations.c.doc_id == doc_id, annotations.c.annotation_id == annotation_id)
                )
            )
        return res.rowcount > 0

    def delete_user_annotations(self, doc_id: str, user_id: str) -> int:
        with self.engine.begin() as conn:
            res = conn.execute(
                delete(annotations).where(
                    and_(annotations.c.doc_id == doc_id, annotations.c.created_by == user_id)
                )
            )
        return res.rowcount

    def resolve_annotation(self, doc_id: str, annotation_id: str, user_id: str) -> Annotation:
        """Idempotent: an already-resolved pin keeps its original resolver."""
        now = utcnow()
        with self.engine.begin() as conn:
            conn.execute(
                update(annotations)
                .where(
                    and_(
                        annotations.c.doc_id == doc_id,
                        annotations.c.annotation_id == annotation_id,
                        annotations.c.resolved_at.is_(None),
                    )
                )
                .values(resolved_at=now, resolved_by=user_id, updated_at=now)
            )
            ann = self._get_annotation(conn, doc_id, annotation_id)
        if ann is None:
            raise HTTPException(status_code=404, detail="Annotation not found")
        return ann

    def unresolve_annotation(self, doc_id: str, annotation_id: str) -> Annotation:
        with self.engine.begin() as conn:
            conn.execute(
                update(annotations)
                .where(
                    and_(
                        annotations.c.doc_id == doc_id,
                        annotations.c.annotation_id == annotation_id,
                        annotations.c.resolved_at.is_not(None),
                    )
                )
                .values(resolved_at=None, resolved_by=None, updated_at=utcnow())
            )
            ann = self._get_annotation(conn, doc_id, annotation_id)
        if ann is None:
            raise HTTPException(status_code=404, detail="Annotation not found")
        return ann
