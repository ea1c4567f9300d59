from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .annotation import iso_or_none


CATEGORIES = (
    "DRAWINGS",
    "SPECIFICATIONS",
    "CONTRACTS",
    "PHOTOS",
    "REPORTS",
    "BLASTING",
    "OTHER",
)

METADATA_FIELDS = (
    "discipline",
    "drawing_number",
    "sheet_title",
    "revision",
    "scale",
    "building",
    "floor",
    "zone",
)


@dataclass
class Revision:
    """Immutable snapshot of a document's stored content."""
    revision_id: str
    doc_id: str
    version: int
    storage_path: str
    change_notes: Optional[str] = None
    file_size: Optional[int] = None
    checksum: Optional[str] = None
    uploaded_by: Optional[str] = None
    is_latest: bool = False
    created_at: Optional[str] = None

    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "Revision":
        return cls(
            revision_id=row["revision_id"],
            doc_id=row["doc_id"],
            version=int(row["version"]),
            storage_path=row["storage_path"],
            change_notes=row.get("change_notes"),
            file_size=row.get("file_size"),
            checksum=row.get("checksum"),
            uploaded_by=row.get("uploaded_by"),
            is_latest=bool(row.get("is_latest")),
            created_at=iso_or_none(row.get("created_at")),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "revision_id": self.revision_id,
            "doc_id": self.doc_id,
            "version": self.version,
            "storage_path": self.storage_path,
            "change_notes": self.change_notes,
            "file_size": self.file_size,
            "checksum": self.checksum,
            "uploaded_by": self.uploaded_by,
            "is_latest": self.is_latest,
            "created_at": self.created_at,
        }


@dataclass
class Document:
    """
    Domain model for an uploaded file.

    `assignees` only matters for the restricted category: those users (if
    they also hold the blaster flag) may see the document.
    """
    doc_id: str
    name: str
    storage_path: str

    project_id: Optional[str] = None
    project_name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    doc_type: str = "document"
    tags: List[str] = field(default_factory=list)
    gps_latitude: Optional[float] = None
    gps_longitude: Optional[float] = None

    is_admin_only: bool = False
    current_version: int = 1
    uploaded_by: Optional[str] = None

    # filled in by the adapter from related tables
    assignees: List[Dict[str, Any]] = field(default_factory=list)
    revisions: List[Revision] = field(default_factory=list)
    revision_count: int = 0
    annotation_count: int = 0
    metadata: Optional[Dict[str, Any]] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def assignee_ids(self) -> List[str]:
        return [a["user_id"] for a in self.assignees]

    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "Document":
        return cls(
            doc_id=row["doc_id"],
            name=row.get("name") or "",
            storage_path=row.get("storage_path") or "",
            project_id=row.get("project_id"),
            project_name=row.get("project_name"),
            description=row.get("description"),
            category=row.get("category"),
            doc_type=row.get("doc_type") or "document",
            tags=list(row.get("tags") or []),
            gps_latitude=row.get("gps_latitude"),
            gps_longitude=row.get("gps_longitude"),
            is_admin_only=bool(row.get("is_admin_only")),
            current_version=int(row.get("current_version") or 1),
            uploaded_by=row.get("uploaded_by"),
            created_at=iso_or_none(row.get("created_at")),
            updated_at=iso_or_none(row.get("updated_at")),
        )

    def to_api(self) -> Dict[str, Any]:
        project = None
        if self.project_id:
            project = {"project_id": self.project_id, "name": self.project_name}
        return {
            "doc_id": self.doc_id,
            "project": project,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "doc_type": self.doc_type,
            "storage_path": self.storage_path,
            "tags": list(self.tags),
            "gps_latitude": self.gps_latitude,
            "gps_longitude": self.gps_longitude,
            "is_admin_only": self.is_admin_only,
            "current_version": self.current_version,
            "uploaded_by": self.uploaded_by,
            "assignees": list(self.assignees),
            "revision_count": self.revision_count,
            "annotation_count": self.annotation_count,
            "revisions": [r.to_api() for r in self.revisions],
            "metadata": self.metadata,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
