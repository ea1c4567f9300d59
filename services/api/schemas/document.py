"""
Pydantic schemas for documents.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DocumentMetadataIn(BaseModel):
    """Drawing fields stored alongside a document."""
    model_config = ConfigDict(extra="forbid")

    discipline: Optional[str] = Field(None, max_length=100)
    drawing_number: Optional[str] = Field(None, max_length=100)
    sheet_title: Optional[str] = Field(None, max_length=200)
    revision: Optional[str] = Field(None, max_length=50)
    scale: Optional[str] = Field(None, max_length=50)
    building: Optional[str] = Field(None, max_length=100)
    floor: Optional[str] = Field(None, max_length=50)
    zone: Optional[str] = Field(None, max_length=100)


class DocumentCreate(BaseModel):
    """Schema for creating a document via API."""
    model_config = ConfigDict(extra="forbid")

    project_id: Optional[str] = Field(None, description="Owning project (must exist)")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    storage_path: str = Field(..., min_length=1, description="Where the file content lives")
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[str] = Field(None, description="DRAWINGS, SPECIFICATIONS, ... or BLASTING")
    doc_type: Optional[str] = Field(None, max_length=50, description="Loose file type, e.g. pdf or image")
    tags: List[str] = Field(default_factory=list)
    gps_latitude: Optional[float] = Field(None, ge=-90, le=90)
    gps_longitude: Optional[float] = Field(None, ge=-180, le=180)
    is_admin_only: bool = False
    assignee_ids: List[str] = Field(
        default_factory=list,
        description="Users granted access to a restricted-category document",
    )
    metadata: Optional[DocumentMetadataIn] = None

    @field_validator("name", "storage_path")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class DocumentPatch(BaseModel):
    """Partial update; only the fields sent are touched."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    scale: Optional[str] = Field(None, max_length=50)
    metadata: Optional[DocumentMetadataIn] = None


class AssignmentsUpdate(BaseModel):
    """Replace the full assignee set of a document."""
    model_config = ConfigDict(extra="forbid")

    assignee_ids: List[str] = Field(default_factory=list)
