from __future__ import annotations

from .annotation import (
    Annotation,
    AnnotationKind,
    LinkedEntity,
    normalize_point,
    denormalize_point,
)
from .document import CATEGORIES, METADATA_FIELDS, Document, Revision
from .pending_operation import (
    OperationState,
    OperationType,
    PendingOperation,
    ResourceType,
)

__all__ = [
    "Annotation",
    "AnnotationKind",
    "LinkedEntity",
    "normalize_point",
    "denormalize_point",
    "CATEGORIES",
    "Document",
    "Revision",
    "METADATA_FIELDS",
    "OperationState",
    "OperationType",
    "PendingOperation",
    "ResourceType",
]
