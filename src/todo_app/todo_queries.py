"""
Todo list query construction.

Translates the list view's selections (filter, sort, page, search) into a
backend Query scoped to one owner, executes it and shapes the result into a
TodoPage. A request without an owner never reaches the backend.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import List, Optional, Tuple

import structlog

from .backend import Query, RowStore, StorageError
from .backend.tables import TODOS
from .errors import BackendError, OwnerScopeError
from .models import TodoEntity
from .utils import as_utc, utc_now

log = structlog.get_logger()

PAGE_SIZE = 10
SEARCH_COLUMNS = ("title", "description")


class TodoFilter(str, Enum):
    ALL = "all"
    TODAY = "today"
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    OVERDUE = "overdue"


class SortField(str, Enum):
    DUE_DATE = "due_date"
    PRIORITY = "priority"
    CREATED_AT = "created_at"
    TITLE = "title"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class TodoListRequest:
    owner_id: Optional[str]
    filter: TodoFilter = TodoFilter.ALL
    sort_field: SortField = SortField.DUE_DATE
    sort_order: SortOrder = SortOrder.ASC
    page: int = 1
    search: Optional[str] = None


@dataclass(frozen=True)
class TodoPage:
    items: List[TodoEntity] = field(default_factory=list)
    page: int = 1
    page_size: int = PAGE_SIZE
    has_more: bool = False
    total: Optional[int] = None


def day_bounds(now: datetime, tz: tzinfo = timezone.utc) -> Tuple[datetime, datetime]:
    """Return [start of now's calendar day, start of the next day) in tz, as UTC datetimes."""
    local_day = as_utc(now).astimezone(tz).date()
    start = datetime.combine(local_day, time.min, tzinfo=tz)
    end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=tz)
    return as_utc(start), as_utc(end)


def owner_scope(owner_id: Optional[str]) -> Query:
    """Base todos query for one owner. Raises OwnerScopeError when owner_id is missing."""
    if not owner_id:
        raise OwnerScopeError()
    return Query(table=TODOS).eq("user_id", owner_id)


# PUBLIC_INTERFACE
def build_todo_query(request: TodoListRequest, now: datetime, tz: tzinfo = timezone.utc) -> Query:
    """
    Build the backend query for one page of the todo list.

    Filters are evaluated relative to `now`:
    - today: due_date in [start of today, start of tomorrow) in tz
    - upcoming: due_date >= now and not completed
    - completed: completed
    - overdue: due_date < now and not completed
    - all: ownership only

    Ordering is the requested field and direction followed by id ascending,
    so that consecutive pages never share rows.
    """
    if request.page < 1:
        raise ValueError("page must be >= 1")
    query = owner_scope(request.owner_id)
    now = as_utc(now)

    if request.filter == TodoFilter.TODAY:
        start, end = day_bounds(now, tz)
        query = query.gte("due_date", start).lt("due_date", end)
    elif request.filter == TodoFilter.UPCOMING:
        query = query.gte("due_date", now).eq("completed", False)
    elif request.filter == TodoFilter.COMPLETED:
        query = query.eq("completed", True)
    elif request.filter == TodoFilter.OVERDUE:
        query = query.lt("due_date", now).eq("completed", False)

    term = (request.search or "").strip()
    if term:
        query = query.ilike_any(SEARCH_COLUMNS, term)

    query = query.order(request.sort_field.value, ascending=request.sort_order == SortOrder.ASC)
    query = query.order("id")

    start_row = (request.page - 1) * PAGE_SIZE
    return query.range(start_row, start_row + PAGE_SIZE - 1).with_count()


# PUBLIC_INTERFACE
async def fetch_todo_page(
    rows: RowStore,
    request: TodoListRequest,
    *,
    now: Optional[datetime] = None,
    tz: tzinfo = timezone.utc,
) -> TodoPage:
    """Execute the list query and return the page. Backend failures raise BackendError."""
    query = build_todo_query(request, now or utc_now(), tz)
    if not query.has_filter("user_id"):
        raise OwnerScopeError()

    try:
        result = await rows.select(query)
    except StorageError as exc:
        log.warning("todos.load_failed", owner_id=request.owner_id, error=str(exc))
        raise BackendError("Failed to load todos") from exc

    items: List[TodoEntity] = result.rows  # type: ignore[assignment]
    if result.count is not None:
        has_more = query.offset + len(items) < result.count
    else:
        has_more = len(items) == PAGE_SIZE
    return TodoPage(
        items=items,
        page=request.page,
        page_size=PAGE_SIZE,
        has_more=has_more,
        total=result.count,
    )
