# services/api/adapters/sqlite/schema.py
from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---- Engine (SQLite) with WAL & pragmas -------------------------------------

def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)


def make_engine(db_url: str) -> Engine:
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection so every session sees the same in-memory db
        engine = create_engine(
            "sqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        if db_url.startswith("sqlite:///"):
            _ensure_dir(db_url.replace("sqlite:///", "", 1))
        engine = create_engine(db_url, future=True, pool_pre_ping=True)

    # Apply pragmas per-connection
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore
        if isinstance(dbapi_connection, sqlite3.Connection):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA busy_timeout=5000;")
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return engine


# ---- Schema via SQLAlchemy Core ---------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("user_id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("email", String, nullable=False, unique=True),
    Column("role", String, nullable=False, default="FIELD_WORKER"),
    Column("is_blaster", Integer, nullable=False, default=0),  # 0/1
    Column("status", String, nullable=False, default="ACTIVE"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

projects = Table(
    "projects",
    metadata,
    Column("project_id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

documents = Table(
    "documents",
    metadata,
    Column("doc_id", String, primary_key=True),
    Column("project_id", String, ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=True),
    Column("name", String, nullable=False),
    Column("description", Text),
    Column("category", String, nullable=True),
    Column("doc_type", String, nullable=False, default="document"),
    Column("storage_path", Text, nullable=False),
    Column("tags", JSON, nullable=False, default=list),
    Column("gps_latitude", Float),
    Column("gps_longitude", Float),
    Column("is_admin_only", Integer, nullable=False, default=0),  # 0/1
    Column("current_version", Integer, nullable=False, default=1),
    Column("uploaded_by", String, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
    CheckConstraint("current_version >= 1", name="ck_documents_version"),
)

document_assignments = Table(
    "document_assignments",
    metadata,
    Column("doc_id", String, ForeignKey("documents.doc_id", ondelete="CASCADE"), nullable=False),
    Column("user_id", String, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
    Column("assigned_at", DateTime(timezone=True), nullable=False, default=utcnow),
    UniqueConstraint("doc_id", "user_id", name="uq_assignment_doc_user"),
)

document_revisions = Table(
    "document_revisions",
    metadata,
    Column("revision_id", String, primary_key=True),
    Column("doc_id", String, ForeignKey("documents.doc_id", ondelete="CASCADE"), nullable=False),
    Column("version", Integer, nullable=False),
    Column("storage_path", Text, nullable=False),
    Column("change_notes", Text),
    Column("file_size", Integer),
    Column("checksum", String),
    Column("uploaded_by", String, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True),
    Column("is_latest", Integer, nullable=False, default=0),  # 0/1
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    UniqueConstraint("doc_id", "version", name="uq_revision_doc_version"),
)

document_metadata = Table(
    "document_metadata",
    metadata,
    Column("doc_id", String, ForeignKey("documents.doc_id", ondelete="CASCADE"), primary_key=True),
    Column("discipline", String),
    Column("drawing_number", String),
    Column("sheet_title", String),
    Column("revision", String),
    Column("scale", String),
    Column("building", String),
    Column("floor", String),
    Column("zone", String),
)

annotations = Table(
    "annotations",
    metadata,
    Column("annotation_id", String, primary_key=True),
    Column("doc_id", String, ForeignKey("documents.doc_id", ondelete="CASCADE"), nullable=False),
    Column("page_number", Integer, nullable=False),
    Column("x", Float, nullable=False),
    Column("y", Float, nullable=False),
    Column("kind", String, nullable=False, default="COMMENT"),
    Column("label", String),
    Column("color", String, nullable=False, default="#3B82F6"),
    Column("comment", Text),
    Column("linked_type", String),
    Column("linked_id", String),
    Column("linked_title", String),
    Column("linked_status", String),
    Column("created_by", String, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("resolved_at", DateTime(timezone=True), nullable=True),
    Column("resolved_by", String, nullable=True),
    CheckConstraint("page_number >= 1", name="ck_annotations_page"),
    CheckConstraint("x >= 0 AND x <= 1", name="ck_annotations_x"),
    CheckConstraint("y >= 0 AND y <= 1", name="ck_annotations_y"),
    CheckConstraint(
        "(resolved_at IS NULL AND resolved_by IS NULL) OR "
        "(resolved_at IS NOT NULL AND resolved_by IS NOT NULL)",
        name="ck_annotations_resolved_pair",
    ),
)

Index("idx_documents_project", documents.c.project_id)
Index("idx_documents_category", documents.c.category)
Index("idx_assignments_user", document_assignments.c.user_id)
Index("idx_revisions_doc", document_revisions.c.doc_id, document_revisions.c.version)
Index("idx_annotations_doc_page", annotations.c.doc_id, annotations.c.page_number)
