"""
Session store.

One SessionContext per signed-in session, created when the auth provider
reports SIGNED_IN and torn down on SIGNED_OUT or once its access token has
expired. A context owns everything that
lives for the duration of a session: the cached identity and role, the
in-memory notification center, the toast queue and the change-feed listener.

Other components reach a context only through SessionStore.get/resolve.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from functools import partial
from datetime import datetime
from typing import AbstractSet, Callable, Dict, List, Optional

import structlog

from .backend import AuthApiError, AuthEvent, AuthSession, Backend, Subscription
from .errors import AuthenticationError, BackendError
from .listener import ChangeFeedListener, ToastKind, ToastQueue
from .models import ProfileEntity
from .notifications import NotificationCenter, NotificationDeriver
from .permissions import Action, Role, can, parse_role, require
from .profiles import load_or_create_profile
from .utils import utc_now

log = structlog.get_logger()


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    name: Optional[str]
    avatar_url: Optional[str]
    role: Role

    @classmethod
    def from_profile(cls, profile: ProfileEntity) -> "Identity":
        return cls(
            id=profile["id"],
            email=profile["email"],
            name=profile.get("name"),
            avatar_url=profile.get("avatar_url"),
            role=parse_role(profile.get("role")),
        )


class SessionContext:
    def __init__(
        self,
        session: AuthSession,
        identity: Identity,
        notifications: NotificationCenter,
        toasts: ToastQueue,
        listener: ChangeFeedListener,
    ) -> None:
        self.session = session
        self.identity = identity
        self.notifications = notifications
        self.toasts = toasts
        self.listener = listener

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def access_token(self) -> str:
        return self.session.access_token

    @property
    def user_id(self) -> str:
        return self.identity.id

    def can(self, action: Action) -> bool:
        return can(self.identity.role, action)

    def require(self, action: Action) -> None:
        require(self.identity.role, action)

    def expired(self, now: datetime) -> bool:
        return self.session.expires_at <= now

    def update_identity(self, **changes: object) -> Identity:
        self.identity = replace(self.identity, **changes)
        return self.identity

    async def close(self) -> None:
        await self.listener.stop()
        self.notifications.close()
        self.toasts.close()


class SessionStore:
    def __init__(
        self,
        backend: Backend,
        *,
        bootstrap_admin_emails: AbstractSet[str] = frozenset(),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._backend = backend
        self._admins = bootstrap_admin_emails
        self._clock = clock
        self._deriver = NotificationDeriver(backend.rows, clock=clock)
        self._contexts: Dict[str, SessionContext] = {}
        self._tokens: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._subscription: Optional[Subscription] = None

    def __len__(self) -> int:
        return len(self._contexts)

    async def start(self) -> None:
        if self._subscription is None:
            self._subscription = await self._backend.auth.on_auth_state_change(self._on_auth_event)

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
        for session_id in list(self._contexts):
            await self._close(session_id)

    def get(self, access_token: str) -> Optional[SessionContext]:
        session_id = self._tokens.get(access_token)
        return self._contexts.get(session_id) if session_id else None

    def contexts_for(self, user_id: str) -> List[SessionContext]:
        return [c for c in self._contexts.values() if c.user_id == user_id]

    async def resolve(self, access_token: str) -> SessionContext:
        """Return the context for a token the auth provider still accepts, opening it if needed."""
        await self._close_expired()
        try:
            session = await self._backend.auth.get_session(access_token)
        except AuthApiError as exc:
            raise AuthenticationError(str(exc)) from exc
        if session.recovery:
            raise AuthenticationError("Recovery sessions can only update the password")
        context = self.get(access_token)
        if context is not None:
            return context
        return await self._open(session)

    async def refresh_identity(self, access_token: str) -> Identity:
        """Re-read the profile (and so the role) of a session from the backend."""
        context = await self.resolve(access_token)
        profile = await load_or_create_profile(self._backend.rows, context.session.user, self._admins)
        context.identity = Identity.from_profile(profile)
        return context.identity

    async def _on_auth_event(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        if session is None:
            return
        if event in (AuthEvent.SIGNED_IN, AuthEvent.TOKEN_REFRESHED):
            if not session.recovery:
                await self._open(session)
        elif event == AuthEvent.USER_UPDATED:
            if session.session_id in self._contexts:
                await self.refresh_identity(session.access_token)
        elif event == AuthEvent.SIGNED_OUT:
            await self._close(session.session_id)
        else:
            log.debug("session.auth_event_ignored", auth_event=event.value)

    async def _open(self, session: AuthSession) -> SessionContext:
        await self._close_expired()
        async with self._lock:
            context = self._contexts.get(session.session_id)
            if context is not None:
                if context.access_token != session.access_token:
                    self._tokens.pop(context.access_token, None)
                    context.session = session
                    self._tokens[session.access_token] = session.session_id
                return context

            profile = await load_or_create_profile(self._backend.rows, session.user, self._admins)
            identity = Identity.from_profile(profile)
            center = NotificationCenter(self._deriver, identity.id)
            toasts = ToastQueue()
            listener = ChangeFeedListener(
                self._backend.realtime,
                center,
                toasts,
                identity.id,
                is_live=partial(self._is_live, session.session_id),
            )
            context = SessionContext(session, identity, center, toasts, listener)

            await listener.start()
            try:
                await center.refresh()
            except BackendError as exc:
                toasts.push(ToastKind.ERROR, exc.message)

            self._contexts[session.session_id] = context
            self._tokens[session.access_token] = session.session_id
            log.info("session.opened", user_id=identity.id, role=identity.role.value)
            return context

    async def _is_live(self, session_id: str) -> bool:
        """False once the session's access token has expired; the context is closed then."""
        context = self._contexts.get(session_id)
        if context is None or not context.expired(self._clock()):
            return True
        log.info("session.expired", user_id=context.user_id)
        await self._close(session_id)
        return False

    async def _close_expired(self) -> None:
        now = self._clock()
        for session_id in [sid for sid, c in self._contexts.items() if c.expired(now)]:
            log.info("session.expired", user_id=self._contexts[session_id].user_id)
            await self._close(session_id)

    async def _close(self, session_id: str) -> None:
        async with self._lock:
            context = self._contexts.pop(session_id, None)
            if context is None:
                return
            for token in [t for t, sid in self._tokens.items() if sid == session_id]:
                del self._tokens[token]
        await context.close()
        log.info("session.closed", user_id=context.user_id)
