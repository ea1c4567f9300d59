# services/api/models/annotation.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4


def _gen_id() -> str:
    return f"a-{uuid4().hex[:12]}"


DEFAULT_PIN_COLOR = "#3B82F6"


class AnnotationKind(str, Enum):
    COMMENT = "COMMENT"
    ISSUE = "ISSUE"
    RFI = "RFI"
    PUNCH_LIST_ITEM = "PUNCH_LIST_ITEM"


# Fields a partial update may touch (never doc_id or page_number).
MUTABLE_FIELDS = ("x", "y", "label", "color", "comment", "linked_entity")


# ---------- low-level transformers (page size / rotation) ----------

def normalize_point(
    x: float,
    y: float,
    page_width: float,
    page_height: float,
    rotation_deg: int = 0,
) -> Tuple[float, float]:
    """
    Convert an ABSOLUTE point (top-left origin, as displayed) into
    normalized [0..1] coords on the unrotated page.
    """
    rot = rotation_deg % 360

    if page_width <= 0 or page_height <= 0:
        raise ValueError("page_width/page_height must be > 0")

    if rot == 0:
        return x / page_width, y / page_height
    if rot == 90:
        return y / page_height, (page_width - x) / page_width
    if rot == 180:
        return (page_width - x) / page_width, (page_height - y) / page_height
    if rot == 270:
        return (page_height - y) / page_height, x / page_width
    raise ValueError(f"Unsupported rotation: {rotation_deg} (use 0/90/180/270)")


def denormalize_point(
    nx: float,
    ny: float,
    page_width: float,
    page_height: float,
    rotation_deg: int = 0,
) -> Tuple[float, float]:
    """Inverse of normalize_point."""
    rot = rotation_deg % 360

    if page_width <= 0 or page_height <= 0:
        raise ValueError("page_width/page_height must be > 0")

    if rot == 0:
        return nx * page_width, ny * page_height
    if rot == 90:
        return page_width - ny * page_width, nx * page_height
    if rot == 180:
        return page_width - nx * page_width, page_height - ny * page_height
    if rot == 270:
        return ny * page_width, page_height - nx * page_height
    raise ValueError(f"Unsupported rotation: {rotation_deg} (use 0/90/180/270)")


@dataclass
class LinkedEntity:
    """Snapshot of the issue / RFI / punch-list item a pin points at."""
    kind: AnnotationKind
    entity_id: str
    title: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "LinkedEntity":
        return cls(
            kind=AnnotationKind(str(data.get("kind") or data.get("type") or "").upper()),
            entity_id=str(data.get("entity_id") or data.get("id") or "").strip(),
            title=data.get("title"),
            status=data.get("status"),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "entity_id": self.entity_id,
            "title": self.title,
            "status": self.status,
        }


@dataclass
class Annotation:
    """
    A pin placed on one page of a document.

    Position is NORMALIZED (0..1) with origin at the top-left of the
    unrotated page, so it survives re-rendering at any resolution.
    """

    doc_id: str
    page_number: int          # 1-based
    x: float
    y: float
    kind: AnnotationKind = AnnotationKind.COMMENT

    annotation_id: str = field(default_factory=_gen_id)
    label: Optional[str] = None
    color: str = DEFAULT_PIN_COLOR
    comment: Optional[str] = None
    linked_entity: Optional[LinkedEntity] = None

    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None

    # --------------------
    # Validation
    # --------------------
    def validate(self) -> None:
        """
        Raises ValueError if any invariant is broken.
        """
        if self.page_number < 1:
            raise ValueError("page_number must be >= 1")

        for field_name in ("x", "y"):
            v = getattr(self, field_name)
            if not (0.0 <= v <= 1.0):
                raise ValueError(f"position.{field_name} must be in [0, 1], got {v}")

        has_comment = bool((self.comment or "").strip())
        has_link = self.linked_entity is not None

        if self.kind == AnnotationKind.COMMENT:
            if not has_comment:
                raise ValueError("COMMENT annotations require comment text")
            if has_link:
                raise ValueError("COMMENT annotations cannot link an entity")
        else:
            if has_comment == has_link:
                raise ValueError(
                    f"{self.kind.value} annotations need exactly one of comment or linked_entity"
                )
            if has_link:
                if self.linked_entity.kind != self.kind:
                    raise ValueError(
                        f"linked_entity.kind {self.linked_entity.kind.value} "
                        f"does not match annotation kind {self.kind.value}"
                    )
                if not self.linked_entity.entity_id:
                    raise ValueError("linked_entity.entity_id is required")

        if (self.resolved_at is None) != (self.resolved_by is None):
            raise ValueError("resolved_at and resolved_by must be set together")

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    # --------------------
    # Page-size / rotation helpers
    # --------------------
    @classmethod
    def from_page_point(
        cls,
        *,
        doc_id: str,
        page_number: int,
        px: float,
        py: float,
        page_width: float,
        page_height: float,
        rotation_deg: int = 0,
        **fields: Any,
    ) -> "Annotation":
        nx, ny = normalize_point(px, py, page_width, page_height, rotation_deg)
        ann = cls(doc_id=doc_id, page_number=page_number, x=nx, y=ny, **fields)
        ann.validate()
        return ann

    def to_page_point(
        self,
        page_width: float,
        page_height: float,
        rotation_deg: int = 0,
    ) -> Dict[str, float]:
        px, py = denormalize_point(self.x, self.y, page_width, page_height, rotation_deg)
        return {"x": px, "y": py}

    # --------------------
    # Conversions – storage layer
    # --------------------
    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "Annotation":
        linked = None
        if row.get("linked_type"):
            linked = LinkedEntity(
                kind=AnnotationKind(row["linked_type"]),
                entity_id=row.get("linked_id") or "",
                title=row.get("linked_title"),
                status=row.get("linked_status"),
            )
        return cls(
            annotation_id=row["annotation_id"],
            doc_id=row["doc_id"],
            page_number=int(row["page_number"]),
            x=float(row["x"]),
            y=float(row["y"]),
            kind=AnnotationKind(row["kind"]),
            label=row.get("label"),
            color=row.get("color") or DEFAULT_PIN_COLOR,
            comment=row.get("comment"),
            linked_entity=linked,
            created_by=row.get("created_by"),
            created_at=iso_or_none(row.get("created_at")),
            updated_at=iso_or_none(row.get("updated_at")),
            resolved_at=iso_or_none(row.get("resolved_at")),
            resolved_by=row.get("resolved_by"),
        )

    def to_storage(self) -> Dict[str, Any]:
        """
        Flat dict for the annotations table (timestamps are set by the adapter).
        """
        self.validate()
        link = self.linked_entity
        return {
            "annotation_id": self.annotation_id,
            "doc_id": self.doc_id,
            "page_number": self.page_number,
            "x": self.x,
            "y": self.y,
            "kind": self.kind.value,
            "label": self.label,
            "color": self.color,
            "comment": self.comment,
            "linked_type": link.kind.value if link else None,
            "linked_id": link.entity_id if link else None,
            "linked_title": link.title if link else None,
            "linked_status": link.status if link else None,
            "created_by": self.created_by,
        }

    # --------------------
    # Conversions – API (FastAPI / pydantic)
    # --------------------
    @classmethod
    def from_api(cls, data: Dict[str, Any], doc_id: str) -> "Annotation":
        """
        Build from an incoming request dict. Position arrives already normalized.
        """
        position = data.get("position") or {}
        linked = data.get("linked_entity")
        ann = cls(
            annotation_id=data.get("annotation_id") or _gen_id(),
            doc_id=doc_id,
            page_number=int(data.get("page_number", 1)),
            x=float(position.get("x", data.get("x", 0.0))),
            y=float(position.get("y", data.get("y", 0.0))),
            kind=AnnotationKind(str(data.get("kind") or "COMMENT").upper()),
            label=data.get("label"),
            color=data.get("color") or DEFAULT_PIN_COLOR,
            comment=data.get("comment"),
            linked_entity=LinkedEntity.from_api(linked) if linked else None,
            created_by=data.get("created_by"),
        )
        ann.validate()
        return ann

    def to_api(self) -> Dict[str, Any]:
        return {
            "annotation_id": self.annotation_id,
            "doc_id": self.doc_id,
            "page_number": self.page_number,
            "position": {"x": self.x, "y": self.y},
            "kind": self.kind.value,
            "label": self.label,
            "color": self.color,
            "comment": self.comment,
            "linked_entity": self.linked_entity.to_api() if self.linked_entity else None,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "resolved_at": self.resolved_at,
            "resolved_by": self.resolved_by,
        }

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "Annotation":
        """Inverse of to_api (server responses on the device side)."""
        ann = cls.from_api(data, data["doc_id"])
        ann.created_at = data.get("created_at")
        ann.updated_at = data.get("updated_at")
        ann.resolved_at = data.get("resolved_at")
        ann.resolved_by = data.get("resolved_by")
        return ann

    def merged(self, updates: Dict[str, Any]) -> "Annotation":
        """
        Return a copy with `updates` applied (only MUTABLE_FIELDS) and re-validated.
        """
        data = {**self.__dict__}
        for key in MUTABLE_FIELDS:
            if key not in updates:
                continue
            value = updates[key]
            if key == "linked_entity" and isinstance(value, dict):
                value = LinkedEntity.from_api(value)
            data[key] = value
        ann = Annotation(**data)
        ann.validate()
        return ann


def iso_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
