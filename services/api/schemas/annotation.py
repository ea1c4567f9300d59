"""
Pydantic schemas for annotations (pins).

Coordinate bounds and the comment-or-link rule are checked by the router so
they come back as 400 with a readable message; the schemas only fix shapes
and types.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models.annotation import AnnotationKind


class Position(BaseModel):
    """Normalized point, origin top-left of the unrotated page."""
    x: float = Field(..., description="Fraction of page width (0..1)")
    y: float = Field(..., description="Fraction of page height (0..1)")


class LinkedEntityIn(BaseModel):
    kind: AnnotationKind
    entity_id: str = Field(..., min_length=1)
    title: Optional[str] = Field(None, max_length=255)
    status: Optional[str] = Field(None, max_length=50)


class AnnotationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    annotation_id: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-assigned id (offline devices); server generates one if omitted",
    )
    page_number: int = Field(1, description="1-based page")
    position: Position
    kind: AnnotationKind = AnnotationKind.COMMENT
    label: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=9)
    comment: Optional[str] = Field(None, max_length=5000)
    linked_entity: Optional[LinkedEntityIn] = None


class AnnotationUpdate(BaseModel):
    """
    Partial update. doc_id / page_number are accepted only so the router
    can refuse them explicitly.
    """
    model_config = ConfigDict(extra="forbid")

    doc_id: Optional[str] = None
    page_number: Optional[int] = None
    position: Optional[Position] = None
    label: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=9)
    comment: Optional[str] = Field(None, max_length=5000)
    linked_entity: Optional[LinkedEntityIn] = None
