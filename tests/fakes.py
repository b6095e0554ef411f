# tests/fakes.py

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from todo_app.backend import Filter, Query, QueryResult, RowStore, StorageError
from todo_app.notifications import Notification, NotificationDeriver, Severity
from todo_app.settings import Settings

FIXED_NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """
    Deterministic clock.

    - Returns `now` until advanced
    - advance() moves it forward, e.g. to give rows distinct created_at values
    """

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FailingRowStore(RowStore):
    """
    Wraps a RowStore and raises StorageError for the operations switched on.
    """

    def __init__(self, inner: RowStore) -> None:
        self.inner = inner
        self.fail_select = False
        self.fail_writes = False
        self.selects: List[Query] = []

    async def select(self, query: Query) -> QueryResult:
        self.selects.append(query)
        if self.fail_select:
            raise StorageError("connection reset")
        return await self.inner.select(query)

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_writes:
            raise StorageError("connection reset")
        return await self.inner.insert(table, values)

    async def update(self, table: str, values: Dict[str, Any], filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        if self.fail_writes:
            raise StorageError("connection reset")
        return await self.inner.update(table, values, filters)

    async def delete(self, table: str, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        if self.fail_writes:
            raise StorageError("connection reset")
        return await self.inner.delete(table, filters)


class ScriptedDeriver(NotificationDeriver):
    """
    Deriver returning queued results, optionally held until released.

    Each derive() call pops the next entry of `results`; an entry that is an
    exception is raised. After hold(), the next derive() waits for the returned event.
    """

    def __init__(self, results: Optional[List[Any]] = None) -> None:
        self.results: List[Any] = list(results or [])
        self.calls = 0
        self.gates: List[asyncio.Event] = []

    def hold(self) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates.append(gate)
        return gate

    async def derive(self, owner_id: str) -> List[Notification]:
        self.calls += 1
        result = self.results.pop(0) if self.results else []
        if self.gates:
            await self.gates.pop(0).wait()
        if isinstance(result, BaseException):
            raise result
        return list(result)


class FakeRequest:
    """Minimal stand-in for starlette Request in SSE generator tests."""

    def __init__(self, disconnect_after: Optional[int] = None) -> None:
        self._checks = 0
        self._disconnect_after = disconnect_after

    async def is_disconnected(self) -> bool:
        self._checks += 1
        return self._disconnect_after is not None and self._checks > self._disconnect_after


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        persistence_backend="memory",
        sqlite_db_path="./data/test.db",
        storage_dir="./data/storage",
        public_base_url="http://testserver",
        site_url="http://localhost:3000",
        cors_allow_origins=["*"],
        timezone="UTC",
        bootstrap_admin_emails=frozenset({"admin@example.com"}),
        session_ttl_seconds=3600,
        log_level="WARNING",
        log_json=False,
    )
    values.update(overrides)
    return Settings(**values)


def notification(nid: str, *, read: bool = False) -> Notification:
    return Notification(id=nid, title=nid, message=nid, severity=Severity.INFO, created_at=FIXED_NOW, read=read)
