"""
Pydantic schemas for API request/response validation.
"""
from .annotation import AnnotationCreate, AnnotationUpdate, LinkedEntityIn, Position
from .document import AssignmentsUpdate, DocumentCreate, DocumentMetadataIn, DocumentPatch
from .revision import RevisionCreate

__all__ = [
    "AnnotationCreate",
    "AnnotationUpdate",
    "LinkedEntityIn",
    "Position",
    "AssignmentsUpdate",
    "DocumentCreate",
    "DocumentMetadataIn",
    "DocumentPatch",
    "RevisionCreate",
]
