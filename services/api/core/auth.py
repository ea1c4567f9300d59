# services/api/core/auth.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException

from core.access import Caller

logger = logging.getLogger(__name__)

CALLER_HEADER = "X-User-Id"


def resolve_caller(storage, user_id: Optional[str], admin_role: str = "ADMIN") -> Caller:
    """
    Turn the caller header into a Caller.

    Only ACTIVE users are accepted. Authentication itself happens upstream;
    this service trusts the header it is given.
    """
    user_id = (user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail=f"Missing {CALLER_HEADER} header")

    user = storage.get_active_user(user_id)
    if not user:
        logger.warning(f"Rejected unknown or inactive caller {user_id}")
        raise HTTPException(status_code=401, detail="Unknown or inactive user")

    return Caller(
        user_id=user["user_id"],
        role=user["role"],
        is_blaster=bool(user["is_blaster"]),
        admin_role=admin_role,
    )
