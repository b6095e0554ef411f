from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from .backend import Query, RowStore, StorageError
from .errors import BackendError
from .permissions import Action
from .profiles import count_profiles
from .session import SessionContext
from .todo_queries import owner_scope
from .utils import as_utc, utc_now

log = structlog.get_logger()


@dataclass(frozen=True)
class DashboardStats:
    total_todos: int
    completed_todos: int
    upcoming_todos: int
    total_users: Optional[int] = None


async def _count(rows: RowStore, query: Query) -> int:
    result = await rows.select(query.range(0, -1).with_count())
    return result.count or 0


# PUBLIC_INTERFACE
async def dashboard_stats(rows: RowStore, context: SessionContext, *, now: Optional[datetime] = None) -> DashboardStats:
    """
    Counts shown on the dashboard for the session owner.

    upcoming = not completed and due after now. total_users is only filled in
    when the session's role may view the user count.
    """
    now = as_utc(now or utc_now())
    base = owner_scope(context.user_id)
    try:
        total = await _count(rows, base)
        completed = await _count(rows, base.eq("completed", True))
        upcoming = await _count(rows, base.eq("completed", False).gt("due_date", now))
    except StorageError as exc:
        log.warning("dashboard.load_failed", owner_id=context.user_id, error=str(exc))
        raise BackendError("Failed to load dashboard") from exc

    total_users = await count_profiles(rows) if context.can(Action.VIEW_USER_COUNT) else None
    return DashboardStats(
        total_todos=total,
        completed_todos=completed,
        upcoming_todos=upcoming,
        total_users=total_users,
    )
