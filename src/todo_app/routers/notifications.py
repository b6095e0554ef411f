"""
Notification drawer and toast endpoints.

SSE stream:
- GET /stream emits one `toast` event per queued toast
- `: heartbeat` comments every HEARTBEAT_INTERVAL seconds keep the connection alive
- the stream ends when the client disconnects or the session is signed out
"""
from __future__ import annotations

from typing import AsyncGenerator, Dict, List

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from ..dependencies import require_action
from ..listener import Toast, ToastQueue
from ..notifications import Notification, NotificationCenter
from ..permissions import Action
from ..schemas import DrawerOut, NotificationListOut, NotificationOut, ToastOut
from ..session import SessionContext

log = structlog.get_logger()

HEARTBEAT_INTERVAL = 15.0

router = APIRouter(
    prefix="/api/v1/notifications",
    tags=["notifications"],
)

_session = require_action(Action.VIEW_NOTIFICATIONS)


def _notification_out(n: Notification) -> NotificationOut:
    return NotificationOut(
        id=n.id,
        title=n.title,
        message=n.message,
        type=n.severity.value,
        read=n.read,
        created_at=n.created_at,
        todo_id=n.todo_id,
    )


def _list_out(center: NotificationCenter) -> NotificationListOut:
    return NotificationListOut(
        items=[_notification_out(n) for n in center.notifications],
        unread_count=center.unread_count,
        is_open=center.is_open,
        is_loading=center.is_loading,
    )


def _toast_out(toast: Toast) -> ToastOut:
    return ToastOut(kind=toast.kind.value, message=toast.message, created_at=toast.created_at)


async def toast_events(
    request: Request,
    toasts: ToastQueue,
    heartbeat: float = HEARTBEAT_INTERVAL,
) -> AsyncGenerator[Dict[str, str], None]:
    """Yield SSE events for queued toasts until the client leaves or the queue is closed."""
    while True:
        if await request.is_disconnected():
            break
        batch = await toasts.wait(heartbeat)
        if not batch:
            if toasts.closed:
                break
            yield {"comment": "heartbeat"}
            continue
        for toast in batch:
            yield {"event": "toast", "data": _toast_out(toast).model_dump_json()}
        if toasts.closed:
            break


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=NotificationListOut,
    summary="List Notifications",
    description="Current notification set of the session with its unread count. refresh=true re-derives it first.",
    responses={
        200: {"description": "Notification set"},
        502: {"description": "Failed to load notifications"},
    },
)
async def list_notifications(
    refresh: bool = Query(False, description="Re-derive notifications before returning them"),
    ctx: SessionContext = Depends(_session),
) -> NotificationListOut:
    if refresh:
        await ctx.notifications.refresh()
    return _list_out(ctx.notifications)


# PUBLIC_INTERFACE
@router.post(
    "/refresh",
    response_model=NotificationListOut,
    summary="Refresh Notifications",
    description="Re-derive the notification set from the caller's most recent todos.",
    responses={
        200: {"description": "Notification set"},
        502: {"description": "Failed to load notifications"},
    },
)
async def refresh_notifications(ctx: SessionContext = Depends(_session)) -> NotificationListOut:
    await ctx.notifications.refresh()
    return _list_out(ctx.notifications)


# PUBLIC_INTERFACE
@router.post(
    "/read-all",
    response_model=NotificationListOut,
    summary="Mark All As Read",
)
async def mark_all_as_read(ctx: SessionContext = Depends(_session)) -> NotificationListOut:
    ctx.notifications.mark_all_as_read()
    return _list_out(ctx.notifications)


# PUBLIC_INTERFACE
@router.post(
    "/{notification_id}/read",
    response_model=NotificationListOut,
    summary="Mark As Read",
    description="Mark one notification as read. Unknown ids are ignored.",
)
async def mark_as_read(notification_id: str, ctx: SessionContext = Depends(_session)) -> NotificationListOut:
    ctx.notifications.mark_as_read(notification_id)
    return _list_out(ctx.notifications)


# PUBLIC_INTERFACE
@router.delete(
    "/",
    response_model=NotificationListOut,
    summary="Clear Notifications",
    description="Empty the notification set until the next refresh.",
)
async def clear_all(ctx: SessionContext = Depends(_session)) -> NotificationListOut:
    ctx.notifications.clear_all()
    return _list_out(ctx.notifications)


# PUBLIC_INTERFACE
@router.post(
    "/drawer/toggle",
    response_model=DrawerOut,
    summary="Toggle Drawer",
    description="Open or close the notification drawer. Opening marks everything as read.",
)
async def toggle_drawer(ctx: SessionContext = Depends(_session)) -> DrawerOut:
    is_open = ctx.notifications.toggle_drawer()
    return DrawerOut(is_open=is_open, unread_count=ctx.notifications.unread_count)


# PUBLIC_INTERFACE
@router.get(
    "/toasts",
    response_model=List[ToastOut],
    summary="Drain Toasts",
    description="Return and remove the toasts queued for the session.",
)
async def drain_toasts(ctx: SessionContext = Depends(_session)) -> List[ToastOut]:
    return [_toast_out(t) for t in ctx.toasts.drain()]


# PUBLIC_INTERFACE
@router.get(
    "/stream",
    summary="Toast Stream",
    description="Server-Sent Events stream of toasts (`event: toast`, JSON data).",
)
async def stream_toasts(request: Request, ctx: SessionContext = Depends(_session)) -> EventSourceResponse:
    log.info("notifications.stream_opened", user_id=ctx.user_id)
    return EventSourceResponse(toast_events(request, ctx.toasts))
