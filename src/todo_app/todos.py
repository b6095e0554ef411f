from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List

import structlog

from .backend import Filter, RowStore, StorageError
from .backend.tables import TODOS
from .errors import BackendError, NotFoundError, OwnerScopeError
from .models import TodoEntity
from .schemas import TodoCreate, TodoUpdate
from .todo_queries import owner_scope
from .utils import utc_now

log = structlog.get_logger()


class TodoService:
    """
    Owner-scoped todo mutations and single-row reads.

    Every statement carries `user_id = owner_id`; a row owned by someone else
    is indistinguishable from a missing one.
    """

    def __init__(self, rows: RowStore, owner_id: str, clock: Callable[[], datetime] = utc_now) -> None:
        if not owner_id:
            raise OwnerScopeError()
        self._rows = rows
        self.owner_id = owner_id
        self._clock = clock

    def _scope(self, todo_id: str) -> List[Filter]:
        return [Filter("id", "eq", todo_id), Filter("user_id", "eq", self.owner_id)]

    async def create(self, data: TodoCreate) -> TodoEntity:
        values: Dict[str, Any] = data.model_dump()
        values["user_id"] = self.owner_id
        try:
            created = await self._rows.insert(TODOS, values)
        except StorageError as exc:
            log.warning("todo.create_failed", owner_id=self.owner_id, error=str(exc))
            raise BackendError("Failed to save todo") from exc
        log.info("todo.created", owner_id=self.owner_id, todo_id=created["id"])
        return created  # type: ignore[return-value]

    async def get(self, todo_id: str) -> TodoEntity:
        try:
            result = await self._rows.select(owner_scope(self.owner_id).eq("id", todo_id).range(0, 0))
        except StorageError as exc:
            log.warning("todo.load_failed", owner_id=self.owner_id, todo_id=todo_id, error=str(exc))
            raise BackendError("Failed to load todo") from exc
        if not result.rows:
            raise NotFoundError("Todo not found")
        return result.rows[0]  # type: ignore[return-value]

    async def _apply(self, todo_id: str, values: Dict[str, Any]) -> TodoEntity:
        values["updated_at"] = self._clock()
        try:
            updated = await self._rows.update(TODOS, values, self._scope(todo_id))
        except StorageError as exc:
            log.warning("todo.update_failed", owner_id=self.owner_id, todo_id=todo_id, error=str(exc))
            raise BackendError("Failed to save todo") from exc
        if not updated:
            raise NotFoundError("Todo not found")
        log.info("todo.updated", owner_id=self.owner_id, todo_id=todo_id, fields=sorted(values))
        return updated[0]  # type: ignore[return-value]

    async def replace(self, todo_id: str, data: TodoCreate) -> TodoEntity:
        return await self._apply(todo_id, data.model_dump())

    async def update(self, todo_id: str, data: TodoUpdate) -> TodoEntity:
        # Only fields the client sent; an explicit null clears description
        values = data.model_dump(exclude_unset=True)
        for required in ("title", "due_date", "priority", "completed"):
            if values.get(required, "") is None:
                values.pop(required)
        return await self._apply(todo_id, values)

    async def toggle(self, todo_id: str) -> TodoEntity:
        current = await self.get(todo_id)
        return await self._apply(todo_id, {"completed": not current["completed"]})

    async def delete(self, todo_id: str) -> None:
        try:
            deleted = await self._rows.delete(TODOS, self._scope(todo_id))
        except StorageError as exc:
            log.warning("todo.delete_failed", owner_id=self.owner_id, todo_id=todo_id, error=str(exc))
            raise BackendError("Failed to delete todo") from exc
        if not deleted:
            raise NotFoundError("Todo not found")
        log.info("todo.deleted", owner_id=self.owner_id, todo_id=todo_id)

