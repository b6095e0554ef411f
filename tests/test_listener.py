import json

import pytest

from fakes import FIXED_NOW, FakeRequest, ScriptedDeriver
from todo_app.backend import Filter
from todo_app.backend.memory import MemoryRowStore
from todo_app.backend.realtime import LocalChangeFeed
from todo_app.backend.tables import TODOS
from todo_app.errors import BackendError
from todo_app.listener import ChangeFeedListener, ToastKind, ToastQueue
from todo_app.notifications import NotificationCenter
from todo_app.routers.notifications import toast_events


def todo_values(owner="u1", title="Plan trip", **extra):
    values = {"user_id": owner, "title": title, "due_date": FIXED_NOW, "priority": "medium", "completed": False}
    values.update(extra)
    return values


@pytest.fixture
def feed():
    return LocalChangeFeed()


@pytest.fixture
def rows(feed):
    return MemoryRowStore(feed=feed, clock=lambda: FIXED_NOW)


@pytest.fixture
def deriver():
    return ScriptedDeriver()


@pytest.fixture
def toasts():
    return ToastQueue()


@pytest.fixture
def listener(feed, deriver, toasts):
    return ChangeFeedListener(feed, NotificationCenter(deriver, "u1"), toasts, "u1")


class TestChangeFeedListener:
    @pytest.mark.asyncio
    async def test_insert_refreshes_once_and_toasts_once(self, listener, rows, deriver, toasts):
        await listener.start()
        await rows.insert(TODOS, todo_values(title="Plan trip"))

        assert deriver.calls == 1
        drained = toasts.drain()
        assert [(t.kind, t.message) for t in drained] == [(ToastKind.SUCCESS, "New task created: Plan trip")]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, listener, rows, deriver, toasts):
        await listener.start()
        row = await rows.insert(TODOS, todo_values())
        toasts.drain()

        scope = [Filter("id", "eq", row["id"]), Filter("user_id", "eq", "u1")]
        await rows.update(TODOS, {"title": "Renamed"}, scope)
        assert toasts.drain() == []

        await rows.update(TODOS, {"completed": True}, scope)
        assert [t.message for t in toasts.drain()] == ["Task completed: Renamed"]

        await rows.delete(TODOS, scope)
        assert toasts.drain() == []
        assert deriver.calls == 4

    @pytest.mark.asyncio
    async def test_other_owners_are_ignored(self, listener, rows, deriver, toasts):
        await listener.start()
        await rows.insert(TODOS, todo_values(owner="u2"))
        assert deriver.calls == 0
        assert len(toasts) == 0

    @pytest.mark.asyncio
    async def test_restart_keeps_single_subscription(self, listener, feed, rows, deriver):
        await listener.start()
        await listener.start()
        assert feed.active_count == 1

        await rows.insert(TODOS, todo_values())
        assert deriver.calls == 1

    @pytest.mark.asyncio
    async def test_no_refresh_after_stop(self, listener, feed, rows, deriver, toasts):
        await listener.start()
        await listener.stop()
        assert listener.active is False
        assert feed.active_count == 0

        await rows.insert(TODOS, todo_values())
        assert deriver.calls == 0
        assert len(toasts) == 0

    @pytest.mark.asyncio
    async def test_ended_session_unsubscribes(self, feed, rows, deriver, toasts):
        async def ended() -> bool:
            return False

        listener = ChangeFeedListener(feed, NotificationCenter(deriver, "u1"), toasts, "u1", is_live=ended)
        await listener.start()
        await rows.insert(TODOS, todo_values())

        assert deriver.calls == 0
        assert len(toasts) == 0
        assert listener.active is False
        assert feed.active_count == 0

    @pytest.mark.asyncio
    async def test_refresh_failure_becomes_error_toast(self, listener, rows, deriver, toasts):
        deriver.results.append(BackendError("Failed to load notifications"))
        await listener.start()
        await rows.insert(TODOS, todo_values())
        assert [(t.kind, t.message) for t in toasts.drain()] == [
            (ToastKind.SUCCESS, "New task created: Plan trip"),
            (ToastKind.ERROR, "Failed to load notifications"),
        ]


class TestToastQueue:
    @pytest.mark.asyncio
    async def test_wait_times_out_empty(self):
        queue = ToastQueue()
        assert await queue.wait(0.01) == []

    @pytest.mark.asyncio
    async def test_bounded_and_closed(self):
        queue = ToastQueue(maxlen=2)
        for i in range(3):
            queue.push(ToastKind.INFO, f"m{i}")
        assert [t.message for t in queue.drain()] == ["m1", "m2"]

        queue.close()
        queue.push(ToastKind.INFO, "late")
        assert len(queue) == 0
        assert await queue.wait(10) == []


class TestToastStream:
    @pytest.mark.asyncio
    async def test_streams_toasts_until_closed(self):
        queue = ToastQueue()
        queue.push(ToastKind.SUCCESS, "New task created: A")
        queue.close()

        events = [e async for e in toast_events(FakeRequest(), queue, heartbeat=0.01)]
        assert len(events) == 1
        assert events[0]["event"] == "toast"
        data = json.loads(events[0]["data"])
        assert data["kind"] == "success"
        assert data["message"] == "New task created: A"

    @pytest.mark.asyncio
    async def test_heartbeat_then_disconnect(self):
        queue = ToastQueue()
        events = [e async for e in toast_events(FakeRequest(disconnect_after=2), queue, heartbeat=0.01)]
        assert events == [{"comment": "heartbeat"}, {"comment": "heartbeat"}]
