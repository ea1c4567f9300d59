"""
Validation utilities for the document service.
Ensures data integrity and provides clear error messages.
"""
import re
from typing import Iterable, List, Optional

from fastapi import HTTPException

from models.document import CATEGORIES

MAX_CHANGE_NOTES = 2000

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def validate_position(x: float, y: float) -> None:
    """
    Validate that a pin position is normalized.

    Rules:
    - x, y must be in [0, 1] (fractions of page width / height)

    Raises:
        HTTPException: 400 if validation fails
    """
    if not (0 <= x <= 1):
        raise HTTPException(
            status_code=400,
            detail=f"position.x must be in range [0, 1], got {x}"
        )
    if not (0 <= y <= 1):
        raise HTTPException(
            status_code=400,
            detail=f"position.y must be in range [0, 1], got {y}"
        )


def validate_page_number(page_number: int) -> None:
    if page_number < 1:
        raise HTTPException(
            status_code=400,
            detail=f"page_number must be >= 1, got {page_number}"
        )


def validate_category(category: Optional[str]) -> Optional[str]:
    """
    Normalize a category to upper case and check it is known.

    Returns:
        The normalized category, or None when not given
    """
    if category is None or not category.strip():
        return None
    value = category.strip().upper()
    if value not in CATEGORIES:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown category {category!r}; expected one of {', '.join(CATEGORIES)}"
        )
    return value


def validate_change_notes(notes: Optional[str]) -> None:
    if notes is not None and len(notes) > MAX_CHANGE_NOTES:
        raise HTTPException(
            status_code=400,
            detail=f"change_notes must be at most {MAX_CHANGE_NOTES} characters"
        )


def unique_ids(ids: Iterable[str]) -> List[str]:
    """
    Strip, drop blanks and collapse duplicates, keeping first-seen order.
    """
    seen = set()
    out: List[str] = []
    for raw in ids:
        value = (raw or "").strip()
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


def parse_id_list(raw: Optional[str]) -> List[str]:
    """Split a comma-separated query value into ids."""
    if not raw:
        return []
    return unique_ids(raw.split(","))


def coerce_color(color: Optional[str], default: str) -> str:
    """
    Coerce a pin color to a hex string.

    Returns:
        The color if it is #RGB / #RRGGBB, otherwise `default`
    """
    if not color:
        return default
    color = color.strip()
    if _HEX_COLOR.match(color):
        return color.upper()
    return default
