from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# PUBLIC_INTERFACE
def page_envelope(
    items: Union[Sequence[Any], Iterable[Any]],
    page: int,
    page_size: int,
    has_more: bool,
    total: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Build a standard page envelope for list endpoints.

    Args:
        items: The list/iterable of items for the current page.
        page: One-based page number that was requested.
        page_size: Fixed number of rows per page.
        has_more: Whether a following page has rows.
        total: Exact number of matching rows, when known.

    Returns:
        Dict with keys: items, page, page_size, has_more, total.
    """
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    return {
        "items": materialized,
        "page": int(max(page, 1)),
        "page_size": int(max(page_size, 0)),
        "has_more": bool(has_more),
        "total": None if total is None else int(total),
    }
