"""
Derived notifications.

Notifications are not stored anywhere. Each refresh re-derives them from the
owner's most recent todos plus a fixed set of system messages. Read flags are
kept in memory by the NotificationCenter of a session and survive refreshes
for ids that are still present.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

import structlog

from .backend import RowStore, StorageError
from .errors import BackendError
from .models import TodoEntity
from .todo_queries import owner_scope
from .utils import utc_now

log = structlog.get_logger()

RECENT_TODO_LIMIT = 10


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    id: str
    title: str
    message: str
    severity: Severity
    created_at: Optional[datetime]
    read: bool = False
    todo_id: Optional[str] = None


def notification_from_todo(todo: TodoEntity) -> Notification:
    if todo["completed"]:
        return Notification(
            id=f"todo-{todo['id']}",
            title="Task Completed",
            message=f"{todo['title']} has been completed",
            severity=Severity.SUCCESS,
            created_at=todo["updated_at"],
            todo_id=todo["id"],
        )
    return Notification(
        id=f"todo-{todo['id']}",
        title="Upcoming Task",
        message=f"{todo['title']} is due soon",
        severity=Severity.WARNING,
        created_at=todo["due_date"],
        todo_id=todo["id"],
    )


def system_notifications(now: datetime) -> List[Notification]:
    return [
        Notification(
            id="welcome-1",
            title="Welcome to Todo App",
            message="Start by creating your first task!",
            severity=Severity.INFO,
            created_at=now,
        )
    ]


class NotificationDeriver:
    """Builds the full notification list for one owner."""

    def __init__(self, rows: RowStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._rows = rows
        self._clock = clock

    async def derive(self, owner_id: str) -> List[Notification]:
        query = owner_scope(owner_id).order("created_at", ascending=False).range(0, RECENT_TODO_LIMIT - 1)
        try:
            result = await self._rows.select(query)
        except StorageError as exc:
            log.warning("notifications.load_failed", owner_id=owner_id, error=str(exc))
            raise BackendError("Failed to load notifications") from exc

        derived = [notification_from_todo(row) for row in result.rows]  # type: ignore[arg-type]
        return derived + system_notifications(self._clock())


class NotificationCenter:
    """
    In-memory notification state of one session.

    refresh() may be invoked reentrantly. Each call takes a sequence number;
    a result is applied only if no newer call has already been applied, and
    never after close().
    """

    def __init__(self, deriver: NotificationDeriver, owner_id: str) -> None:
        self._deriver = deriver
        self.owner_id = owner_id
        self._items: List[Notification] = []
        self._issued = 0
        self._applied = 0
        self._in_flight = 0
        self._closed = False
        self.is_open = False

    @property
    def notifications(self) -> List[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def refresh(self) -> bool:
        """
        Re-derive the notification set. Returns True if the result was applied.

        Raises BackendError on failure; the current set is left unchanged.
        """
        self._issued += 1
        seq = self._issued
        self._in_flight += 1
        try:
            derived = await self._deriver.derive(self.owner_id)
        finally:
            self._in_flight -= 1

        if self._closed:
            log.debug("notifications.refresh_discarded", owner_id=self.owner_id, seq=seq, reason="closed")
            return False
        if seq < self._applied:
            log.debug("notifications.refresh_discarded", owner_id=self.owner_id, seq=seq, reason="stale")
            return False

        read_ids = {n.id for n in self._items if n.read}
        self._items = [replace(n, read=n.id in read_ids) for n in derived]
        self._applied = seq
        return True

    def mark_as_read(self, notification_id: str) -> None:
        self._items = [replace(n, read=True) if n.id == notification_id else n for n in self._items]

    def mark_all_as_read(self) -> None:
        self._items = [replace(n, read=True) for n in self._items]

    def clear_all(self) -> None:
        self._items = []

    def toggle_drawer(self) -> bool:
        """Flip the drawer state; opening it marks everything as read. Returns the new state."""
        opening = not self.is_open
        self.is_open = opening
        if opening:
            self.mark_all_as_read()
        return self.is_open

    def close(self) -> None:
        self._closed = True
        self._items = []
