from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..backend import Backend
from ..dependencies import get_app_settings, get_backend, get_clock, require_action
from ..permissions import Action
from ..schemas import TodoCreate, TodoOut, TodoPageOut, TodoUpdate
from ..session import SessionContext
from ..settings import Settings
from ..todo_queries import SortField, SortOrder, TodoFilter, TodoListRequest, fetch_todo_page
from ..todos import TodoService
from ..utils import page_envelope

router = APIRouter(
    prefix="/api/v1/todos",
    tags=["todos"],
)


def _get_service(
    ctx: SessionContext = Depends(require_action(Action.MANAGE_OWN_TODOS)),
    backend: Backend = Depends(get_backend),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> TodoService:
    """
    Dependency returning a TodoService scoped to the caller.
    """
    return TodoService(backend.rows, ctx.user_id, clock=clock)


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TodoOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Todo",
    description="Create a new Todo item owned by the caller and return the created resource.",
    responses={
        201: {"description": "Todo created successfully"},
        422: {"description": "Validation error"},
    },
)
async def create_todo(payload: TodoCreate, service: TodoService = Depends(_get_service)) -> TodoOut:
    """
    Create a new Todo.
    """
    created = await service.create(payload)
    return TodoOut(**created)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=TodoPageOut,
    summary="List Todos",
    description=(
        "List the caller's todos, ten per page.\n\n"
        "Query parameters:\n"
        "- filter: all, today, upcoming, completed or overdue\n"
        "- sort: due_date, priority, created_at or title\n"
        "- order: asc or desc\n"
        "- page: one-based page number\n"
        "- q: search text for title/description (case-insensitive substring match)\n\n"
        "Returns a page envelope with items, has_more and the exact total."
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
    },
)
async def list_todos(
    filter: TodoFilter = Query(TodoFilter.ALL, description="Which todos to show"),
    sort: SortField = Query(SortField.DUE_DATE, description="Sort field"),
    order: str = Query("asc", description="Sort direction: 'asc' or 'desc'"),
    page: int = Query(1, ge=1, description="One-based page number"),
    q: Optional[str] = Query(None, description="Search text for title/description"),
    ctx: SessionContext = Depends(require_action(Action.MANAGE_OWN_TODOS)),
    backend: Backend = Depends(get_backend),
    settings: Settings = Depends(get_app_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> TodoPageOut:
    """
    List todos with filter, sort, search and pagination.
    """
    ord_norm = (order or "asc").strip().lower()
    if ord_norm not in {"asc", "desc"}:
        raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")

    request = TodoListRequest(
        owner_id=ctx.user_id,
        filter=filter,
        sort_field=sort,
        sort_order=SortOrder(ord_norm),
        page=page,
        search=q.strip() if q else None,
    )
    result = await fetch_todo_page(backend.rows, request, now=clock(), tz=settings.tzinfo)
    envelope = page_envelope(
        items=[TodoOut(**it) for it in result.items],  # type: ignore[arg-type]
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_more,
        total=result.total,
    )
    return TodoPageOut(**envelope)


# PUBLIC_INTERFACE
@router.get(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Get Todo",
    description="Get a single Todo item by ID.",
    responses={
        200: {"description": "Todo found"},
        404: {"description": "Todo not found"},
    },
)
async def get_todo(todo_id: str, service: TodoService = Depends(_get_service)) -> TodoOut:
    item = await service.get(todo_id)
    return TodoOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.put(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Replace Todo",
    description=(
        "Replace an existing Todo item. Any fields omitted will be set to their default/null "
        "equivalent as per the schema."
    ),
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
    },
)
async def put_todo(todo_id: str, payload: TodoCreate, service: TodoService = Depends(_get_service)) -> TodoOut:
    updated = await service.replace(todo_id, payload)
    return TodoOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch(
    "/{todo_id}",
    response_model=TodoOut,
    summary="Update Todo",
    description="Partially update fields of a Todo item. An explicit null clears the description.",
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
    },
)
async def patch_todo(todo_id: str, payload: TodoUpdate, service: TodoService = Depends(_get_service)) -> TodoOut:
    updated = await service.update(todo_id, payload)
    return TodoOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post(
    "/{todo_id}/toggle",
    response_model=TodoOut,
    summary="Toggle Todo",
    description="Flip the completion status of a Todo item.",
    responses={
        200: {"description": "Todo updated"},
        404: {"description": "Todo not found"},
    },
)
async def toggle_todo(todo_id: str, service: TodoService = Depends(_get_service)) -> TodoOut:
    updated = await service.toggle(todo_id)
    return TodoOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{todo_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Todo",
    description="Delete a Todo item by ID.",
    responses={
        204: {"description": "Todo deleted"},
        404: {"description": "Todo not found"},
    },
)
async def delete_todo(todo_id: str, service: TodoService = Depends(_get_service)) -> None:
    """
    Delete a Todo. Returns 204 on success, 404 if not found.
    """
    await service.delete(todo_id)
    return None
