"""
Storage adapter interface for the document service.
Defines the contract that storage backends must implement.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple

from core.access import Caller
from models import Annotation, Document, PendingOperation, Revision


class StorageAdapter(Protocol):
    """
    Protocol for the server-side store.

    Routers only talk to this interface, so a different backend can be
    swapped in without touching them. Every document read takes the Caller
    and applies the visibility rules in the query itself.
    """

    def ping(self) -> None:
        """Raise if the backing store is unreachable."""
        ...

    # ========== Users / projects ==========

    def get_active_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Return the user row if it exists and is ACTIVE, else None.
        """
        ...

    def create_user(self, *, name: str, email: str, role: str = "FIELD_WORKER",
                    is_blaster: bool = False, status: str = "ACTIVE",
                    user_id: Optional[str] = None) -> Dict[str, Any]:
        ...

    def create_project(self, name: str, project_id: Optional[str] = None) -> Dict[str, Any]:
        ...

    # ========== Documents ==========

    def list_documents(
        self,
        caller: Caller,
        *,
        project_id: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        assignee_ids: Optional[List[str]] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """
        Return {"documents", "pagination", "categories"}.

        Page, total and histogram must all be computed from the same
        visibility-filtered query.
        """
        ...

    def get_document(
        self,
        caller: Caller,
        doc_id: str,
        revisions_limit: Optional[int] = None,
    ) -> Optional[Document]:
        """
        Fetch one document, or None if it does not exist OR the caller
        may not see it (the two cases are indistinguishable).
        """
        ...

    def create_document(self, data: Dict[str, Any], uploader_id: Optional[str]) -> Document:
        """
        Create the document, its assignments and revision 1 atomically.

        Raises:
            HTTPException(400) for an unknown project or any invalid assignee.
        """
        ...

    def update_document(self, doc_id: str, fields: Dict[str, Any]) -> Document:
        ...

    def set_assignments(self, doc_id: str, assignee_ids: List[str]) -> Document:
        ...

    # ========== Revisions ==========

    def add_revision(
        self,
        doc_id: str,
        storage_path: str,
        change_notes: Optional[str],
        uploader_id: Optional[str],
        file_size: Optional[int] = None,
        checksum: Optional[str] = None,
    ) -> Revision:
        """
        Append version current+1 and move the latest pointer, in one
        transaction.
        """
        ...

    def list_revisions(self, doc_id: str, limit: Optional[int] = None) -> List[Revision]:
        """Newest first."""
        ...

    # ========== Annotations ==========

    def list_annotations(self, doc_id: str, page_number: Optional[int] = None) -> List[Annotation]:
        ...

    def get_annotation(self, doc_id: str, annotation_id: str) -> Optional[Annotation]:
        ...

    def create_annotation(self, ann: Annotation) -> Tuple[Annotation, bool]:
        """
        Returns:
            (annotation, created). created is False when the id already existed.
        """
        ...

    def update_annotation(self, doc_id: str, annotation_id: str, updates: Dict[str, Any]) -> Annotation:
        ...

    def delete_annotation(self, doc_id: str, annotation_id: str) -> bool:
        ...

    def delete_user_annotations(self, doc_id: str, user_id: str) -> int:
        ...

    def resolve_annotation(self, doc_id: str, annotation_id: str, user_id: str) -> Annotation:
        ...

    def unresolve_annotation(self, doc_id: str, annotation_id: str) -> Annotation:
        ...


class QueueStore(Protocol):
    """Durable list of PendingOperation records (device side)."""

    def load(self) -> List[PendingOperation]:
        ...

    def save(self, operations: List[PendingOperation]) -> None:
        ...
