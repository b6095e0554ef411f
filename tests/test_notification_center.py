import asyncio
from datetime import timedelta

import pytest

from fakes import FIXED_NOW, FailingRowStore, ScriptedDeriver, notification
from todo_app.backend.memory import MemoryRowStore
from todo_app.backend.tables import TODOS
from todo_app.errors import BackendError
from todo_app.notifications import NotificationCenter, NotificationDeriver, Severity


def ids(center: NotificationCenter) -> list:
    return [n.id for n in center.notifications]


def assert_unread_invariant(center: NotificationCenter) -> None:
    assert center.unread_count == sum(1 for n in center.notifications if not n.read)


class TestNotificationDeriver:
    @pytest.mark.asyncio
    async def test_maps_recent_todos_then_system(self):
        rows = MemoryRowStore(clock=lambda: FIXED_NOW)
        pending = await rows.insert(
            TODOS,
            {"user_id": "u1", "title": "Pay rent", "due_date": FIXED_NOW + timedelta(days=2), "priority": "high", "completed": False},
        )
        done = await rows.insert(
            TODOS,
            {
                "user_id": "u1",
                "title": "Walk dog",
                "due_date": FIXED_NOW,
                "priority": "low",
                "completed": True,
                "created_at": FIXED_NOW + timedelta(minutes=1),
            },
        )
        await rows.insert(TODOS, {"user_id": "u2", "title": "Not mine", "due_date": FIXED_NOW, "priority": "low", "completed": False})

        derived = await NotificationDeriver(rows, clock=lambda: FIXED_NOW).derive("u1")

        assert [n.id for n in derived] == [f"todo-{done['id']}", f"todo-{pending['id']}", "welcome-1"]
        completed, upcoming, welcome = derived
        assert (completed.title, completed.message, completed.severity) == (
            "Task Completed",
            "Walk dog has been completed",
            Severity.SUCCESS,
        )
        assert completed.created_at == done["updated_at"]
        assert (upcoming.title, upcoming.message, upcoming.severity) == (
            "Upcoming Task",
            "Pay rent is due soon",
            Severity.WARNING,
        )
        assert upcoming.created_at == pending["due_date"]
        assert upcoming.todo_id == pending["id"]
        assert welcome.severity == Severity.INFO
        assert welcome.created_at == FIXED_NOW
        assert not any(n.read for n in derived)

    @pytest.mark.asyncio
    async def test_failure(self):
        rows = FailingRowStore(MemoryRowStore())
        rows.fail_select = True
        with pytest.raises(BackendError, match="Failed to load notifications"):
            await NotificationDeriver(rows).derive("u1")


class TestNotificationCenter:
    @pytest.mark.asyncio
    async def test_operations_keep_unread_count_consistent(self):
        center = NotificationCenter(ScriptedDeriver([[notification("a"), notification("b"), notification("c")]]), "u1")
        assert await center.refresh() is True
        assert center.unread_count == 3

        center.mark_as_read("b")
        assert center.unread_count == 2
        assert_unread_invariant(center)

        center.mark_as_read("missing")
        assert center.unread_count == 2

        center.mark_all_as_read()
        assert center.unread_count == 0
        assert_unread_invariant(center)

        center.clear_all()
        assert center.notifications == []
        center.mark_as_read("a")
        assert center.notifications == []
        assert center.unread_count == 0

    @pytest.mark.asyncio
    async def test_refresh_merges_read_flags(self):
        deriver = ScriptedDeriver(
            [
                [notification("a"), notification("b")],
                [notification("b"), notification("c")],
            ]
        )
        center = NotificationCenter(deriver, "u1")
        await center.refresh()
        center.mark_as_read("a")
        center.mark_as_read("b")

        await center.refresh()
        assert ids(center) == ["b", "c"]
        assert [n.read for n in center.notifications] == [True, False]
        assert center.unread_count == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_leaves_set_unchanged(self):
        deriver = ScriptedDeriver([[notification("a")], BackendError("Failed to load notifications")])
        center = NotificationCenter(deriver, "u1")
        await center.refresh()
        with pytest.raises(BackendError):
            await center.refresh()
        assert ids(center) == ["a"]
        assert center.is_loading is False

    @pytest.mark.asyncio
    async def test_stale_result_is_discarded(self):
        deriver = ScriptedDeriver([[notification("old")], [notification("new")]])
        center = NotificationCenter(deriver, "u1")
        slow_gate = deriver.hold()

        slow = asyncio.create_task(center.refresh())
        await asyncio.sleep(0)
        assert center.is_loading is True

        assert await center.refresh() is True
        assert ids(center) == ["new"]

        slow_gate.set()
        assert await slow is False
        assert ids(center) == ["new"]
        assert center.is_loading is False

    @pytest.mark.asyncio
    async def test_result_after_close_is_discarded(self):
        deriver = ScriptedDeriver([[notification("a")]])
        center = NotificationCenter(deriver, "u1")
        gate = deriver.hold()
        pending = asyncio.create_task(center.refresh())
        await asyncio.sleep(0)

        center.close()
        gate.set()
        assert await pending is False
        assert center.closed is True
        assert center.notifications == []

    @pytest.mark.asyncio
    async def test_toggle_drawer(self):
        center = NotificationCenter(ScriptedDeriver([[notification("a"), notification("b")]]), "u1")
        await center.refresh()
        assert center.toggle_drawer() is True
        assert center.unread_count == 0
        assert center.toggle_drawer() is False
        assert center.is_open is False
