"""
Document visibility rules.

The same predicate exists twice: `can_view` for a document already in
memory, and `visibility_clause` for SQL, so list pages, totals and the
category histogram are all filtered before anything reaches the caller.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import and_, exists, or_, select, true
from sqlalchemy.sql.elements import ColumnElement

from adapters.sqlite.schema import document_assignments, documents


# Ordered role hierarchy (higher = more privileged)
ROLE_HIERARCHY = {
    "VIEWER": 1,
    "FIELD_WORKER": 2,
    "CREW_LEADER": 3,
    "OFFICE": 3,
    "FOREMAN": 4,
    "ARCHITECT": 5,
    "DEVELOPER": 6,
    "PROJECT_MANAGER": 7,
    "ADMIN": 8,
}

RESTRICTED_CATEGORY = "BLASTING"


@dataclass(frozen=True)
class Caller:
    user_id: str
    role: str
    is_blaster: bool = False
    admin_role: str = "ADMIN"

    @property
    def is_admin(self) -> bool:
        return self.role == self.admin_role

    @property
    def level(self) -> int:
        return ROLE_HIERARCHY.get(self.role, 0)

    def at_least(self, role: str) -> bool:
        return self.level >= ROLE_HIERARCHY[role]


def can_view(
    caller: Caller,
    *,
    category: Optional[str],
    is_admin_only: bool,
    assignee_ids: Iterable[str],
    restricted_category: str = RESTRICTED_CATEGORY,
) -> bool:
    if caller.is_admin:
        return True
    if is_admin_only:
        return False
    if category == restricted_category:
        if not caller.is_blaster:
            return False
        return caller.user_id in set(assignee_ids)
    return True


def visibility_clause(
    caller: Caller,
    restricted_category: str = RESTRICTED_CATEGORY,
) -> ColumnElement:
    """
    WHERE expression equivalent to `can_view` over the documents table.

    NULL categories are ordinary; SQL's `!=` alone would drop them.
    """
    if caller.is_admin:
        return true()

    ordinary = or_(
        documents.c.category.is_(None),
        documents.c.category != restricted_category,
    )

    if caller.is_blaster:
        assigned = exists(
            select(document_assignments.c.doc_id).where(
                and_(
                    document_assignments.c.doc_id == documents.c.doc_id,
                    document_assignments.c.user_id == caller.user_id,
                )
            )
        )
        category_ok = or_(ordinary, assigned)
    else:
        category_ok = ordinary

    return and_(documents.c.is_admin_only == 0, category_ok)

