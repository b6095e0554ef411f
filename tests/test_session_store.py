import pytest
import pytest_asyncio

from fakes import FIXED_NOW, FailingRowStore, FakeClock, make_settings
from todo_app.backend import AuthApiError, Backend, Filter, build_backend
from todo_app.backend.tables import PROFILES, TODOS
from todo_app.errors import AuthenticationError
from todo_app.permissions import Action, Role
from todo_app.session import SessionStore

PASSWORD = "Secret123!"


@pytest.fixture
def backend():
    inner = build_backend(make_settings(), clock=FakeClock(), bcrypt_rounds=4)
    rows = FailingRowStore(inner.rows)
    return Backend(name="memory", auth=inner.auth, rows=rows, realtime=inner.realtime, storage=inner.storage)


@pytest_asyncio.fixture
async def store(backend):
    store = SessionStore(backend, bootstrap_admin_emails=frozenset({"boss@example.com"}), clock=FakeClock())
    await store.start()
    yield store
    await store.stop()


def todo_row(user_id: str, title: str) -> dict:
    return {"user_id": user_id, "title": title, "due_date": FIXED_NOW, "priority": "low", "completed": False}


def todo_selects(rows: FailingRowStore) -> int:
    return sum(1 for q in rows.selects if q.table == TODOS)


class TestSessionStore:
    @pytest.mark.asyncio
    async def test_sign_in_opens_context(self, backend, store):
        session = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        ctx = store.get(session.access_token)
        assert ctx is not None
        assert len(store) == 1
        assert ctx.identity.name == "Ann"
        assert ctx.identity.role == Role.USER
        assert ctx.listener.active is True
        assert [n.id for n in ctx.notifications.notifications] == ["welcome-1"]
        assert ctx.can(Action.MANAGE_OWN_TODOS)
        assert not ctx.can(Action.VIEW_USERS)

    @pytest.mark.asyncio
    async def test_bootstrap_admin(self, backend, store):
        session = await backend.auth.sign_up("Boss@Example.com", PASSWORD, "Boss")
        assert store.get(session.access_token).identity.role == Role.ADMIN

    @pytest.mark.asyncio
    async def test_zero_refreshes_after_sign_out(self, backend, store):
        session = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        ctx = store.get(session.access_token)
        user_id = ctx.user_id

        await backend.rows.insert(TODOS, todo_row(user_id, "before"))
        assert len(ctx.notifications.notifications) == 2
        assert [t.message for t in ctx.toasts.drain()] == ["New task created: before"]

        await backend.auth.sign_out(session.access_token)
        assert store.get(session.access_token) is None
        assert len(store) == 0

        selects = todo_selects(backend.rows)
        await backend.rows.insert(TODOS, todo_row(user_id, "after"))
        assert todo_selects(backend.rows) == selects
        assert len(ctx.toasts) == 0

    @pytest.mark.asyncio
    async def test_each_session_has_its_own_context(self, backend, store):
        first = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        second = await backend.auth.sign_in_with_password("ann@example.com", PASSWORD)
        assert store.get(first.access_token) is not store.get(second.access_token)
        assert len(store.contexts_for(first.user.id)) == 2

        await backend.auth.sign_out(first.access_token)
        assert store.get(second.access_token) is not None

    @pytest.mark.asyncio
    async def test_resolve(self, backend, store):
        await store.stop()
        session = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        # not subscribed: nothing opened yet, but the token is still valid
        assert store.get(session.access_token) is None

        ctx = await store.resolve(session.access_token)
        assert ctx is store.get(session.access_token)
        assert await store.resolve(session.access_token) is ctx

        with pytest.raises(AuthenticationError):
            await store.resolve("unknown-token")

    @pytest.mark.asyncio
    async def test_recovery_session_is_rejected(self, backend, store):
        await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        await backend.auth.reset_password_for_email("ann@example.com", "http://localhost:3000/auth/update-password")
        link = backend.auth.outbox[-1]["link"]
        token = link.split("access_token=")[1].split("&")[0]
        with pytest.raises(AuthenticationError):
            await store.resolve(token)

    @pytest.mark.asyncio
    async def test_identity_is_cached_until_refreshed(self, backend, store):
        session = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        ctx = store.get(session.access_token)
        await backend.rows.update(PROFILES, {"role": "admin"}, [Filter("id", "eq", ctx.user_id)])
        assert ctx.identity.role == Role.USER

        identity = await store.refresh_identity(session.access_token)
        assert identity.role == Role.ADMIN
        assert ctx.identity.role == Role.ADMIN

    @pytest.mark.asyncio
    async def test_user_updated_event_rereads_identity(self, backend, store):
        session = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        ctx = store.get(session.access_token)
        await backend.rows.update(PROFILES, {"name": "Ann B."}, [Filter("id", "eq", ctx.user_id)])

        await backend.auth.update_user(session.access_token, password="Another789%")
        assert ctx.identity.name == "Ann B."


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def short_lived(clock):
    backend = build_backend(make_settings(session_ttl_seconds=60), clock=clock, bcrypt_rounds=4)
    store = SessionStore(backend, clock=clock)
    await store.start()
    yield backend, store
    await store.stop()


class TestSessionExpiry:
    @pytest.mark.asyncio
    async def test_expired_session_stops_listening(self, short_lived, clock):
        backend, store = short_lived
        session = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        ctx = store.get(session.access_token)
        user_id = ctx.user_id

        clock.advance(hours=2)
        with pytest.raises(AuthApiError):
            await backend.auth.get_session(session.access_token)

        await backend.rows.insert(TODOS, todo_row(user_id, "late"))
        assert len(store) == 0
        assert ctx.listener.active is False
        assert backend.realtime.active_count == 0
        assert len(ctx.toasts) == 0
        assert ctx.notifications.closed is True

    @pytest.mark.asyncio
    async def test_expired_contexts_are_swept_on_open_and_resolve(self, short_lived, clock):
        backend, store = short_lived
        ann = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        bob = await backend.auth.sign_up("bob@example.com", PASSWORD, "Bob")
        assert len(store) == 2

        clock.advance(minutes=2)
        again = await backend.auth.sign_in_with_password("bob@example.com", PASSWORD)
        assert len(store) == 1
        assert store.get(ann.access_token) is None
        assert store.get(bob.access_token) is None
        assert store.get(again.access_token) is not None

        with pytest.raises(AuthenticationError):
            await store.resolve(ann.access_token)

    @pytest.mark.asyncio
    async def test_refresh_after_expiry_opens_a_fresh_context(self, short_lived, clock):
        backend, store = short_lived
        session = await backend.auth.sign_up("ann@example.com", PASSWORD, "Ann")
        old = store.get(session.access_token)

        clock.advance(hours=2)
        refreshed = await backend.auth.refresh_session(session.refresh_token)
        new = store.get(refreshed.access_token)
        assert new is not None
        assert new is not old
        assert old.listener.active is False
        assert new.listener.active is True
        assert backend.realtime.active_count == 1
