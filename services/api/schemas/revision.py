"""
Pydantic schemas for document revisions.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RevisionCreate(BaseModel):
    """A re-upload of an existing document."""
    model_config = ConfigDict(extra="forbid")

    storage_path: str = Field(..., min_length=1, description="Location of the new content")
    change_notes: Optional[str] = Field(None, description="Free text, at most 2000 characters")
    file_size: Optional[int] = Field(None, ge=0, description="Bytes")
    checksum: Optional[str] = Field(None, max_length=128)
