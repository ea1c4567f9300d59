from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SUBMIT = "submit"


class ResourceType(str, Enum):
    PROJECT = "project"
    DAILY_LOG = "dailyLog"
    TIME_ENTRY = "timeEntry"
    EQUIPMENT = "equipment"
    INCIDENT = "incident"
    DOCUMENT = "document"
    COMMENT = "comment"
    PUNCH_LIST = "punchList"
    ANNOTATION = "annotation"


class OperationState(str, Enum):
    QUEUED = "queued"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


@dataclass
class PendingOperation:
    """
    A mutation made on the device that the server has not confirmed yet.

    `id` is generated on the device and doubles as the client-side
    reference for whatever the operation creates.
    """
    operation: OperationType
    resource_type: ResourceType
    resource_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=utc_now_iso)
    retry_count: int = 0
    last_attempt: Optional[str] = None
    error: Optional[str] = None

    def can_retry(self, max_retries: int = 3) -> bool:
        return self.retry_count < max_retries

    def state(self, max_retries: int = 3) -> OperationState:
        if self.retry_count == 0:
            return OperationState.QUEUED
        if self.retry_count < max_retries:
            return OperationState.FAILED
        return OperationState.EXHAUSTED

    @property
    def display_description(self) -> str:
        # "dailyLog" -> "Daily Log"
        resource = re.sub(r"([A-Z])", r" \1", self.resource_type.value).title()
        return f"{self.operation.value.title()} {resource}"

    def failed(self, error: str) -> "PendingOperation":
        """Copy with the retry counter bumped and the error recorded."""
        return PendingOperation(
            operation=self.operation,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            payload=self.payload,
            id=self.id,
            created_at=self.created_at,
            retry_count=self.retry_count + 1,
            last_attempt=utc_now_iso(),
            error=error,
        )

    # --------------------
    # Conversions – JSON store
    # --------------------
    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "PendingOperation":
        return cls(
            operation=OperationType(row["operation"]),
            resource_type=ResourceType(row["resource_type"]),
            resource_id=row.get("resource_id"),
            payload=row.get("payload"),
            id=row["id"],
            created_at=row.get("created_at") or utc_now_iso(),
            retry_count=int(row.get("retry_count") or 0),
            last_attempt=row.get("last_attempt"),
            error=row.get("error"),
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation.value,
            "resource_type": self.resource_type.value,
            "resource_id": self.resource_id,
            "payload": self.payload,
            "created_at": self.created_at,
            "retry_count": self.retry_count,
            "last_attempt": self.last_attempt,
            "error": self.error,
        }
