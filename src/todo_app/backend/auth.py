from __future__ import annotations

import asyncio
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
from urllib.parse import urlencode

import bcrypt
import structlog

from ..utils import utc_now
from .base import (
    AuthApiError,
    AuthEvent,
    AuthProvider,
    AuthSession,
    AuthStateCallback,
    AuthUser,
    RowStore,
    Subscription,
)
from .query import Filter, Query, Row
from .tables import AUTH_USERS

log = structlog.get_logger()

SUPPORTED_OAUTH_PROVIDERS = frozenset({"google"})


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return bcrypt.checkpw(password.encode(), hashed.encode())


@dataclass
class _Grant:
    session_id: str
    user: AuthUser
    access_token: str
    refresh_token: str
    expires_at: datetime
    refresh_expires_at: datetime
    recovery: bool = False

    def to_session(self) -> AuthSession:
        return AuthSession(
            session_id=self.session_id,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=self.expires_at,
            user=self.user,
            recovery=self.recovery,
        )


@dataclass(frozen=True)
class _PendingOAuth:
    email: str
    name: Optional[str]
    provider: str


class LocalAuthProvider(AuthProvider):
    """
    Self-contained identity provider for local runs and tests.

    Credentials live in the auth_users table of the given row store; issued
    tokens live in memory and are dropped once expired (access tokens after
    session_ttl, refresh tokens after refresh_ttl). State changes are pushed
    to every subscriber: SIGNED_IN on sign-up/sign-in/code exchange,
    TOKEN_REFRESHED on refresh, USER_UPDATED on password change,
    PASSWORD_RECOVERY when a recovery link session is set, SIGNED_OUT on
    sign-out.

    Password reset emails are not sent; they are appended to `outbox`.
    """

    def __init__(
        self,
        rows: RowStore,
        *,
        base_url: str,
        session_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = utc_now,
        bcrypt_rounds: int = 12,
    ) -> None:
        self._rows = rows
        self._base_url = base_url.rstrip("/")
        self._ttl = session_ttl
        self._refresh_ttl = refresh_ttl
        self._clock = clock
        self._rounds = bcrypt_rounds
        self._by_access: Dict[str, _Grant] = {}
        self._by_refresh: Dict[str, _Grant] = {}
        self._oauth_codes: Dict[str, _PendingOAuth] = {}
        self._listeners: Dict[int, AuthStateCallback] = {}
        self.outbox: List[Dict[str, str]] = []

    # -- helpers ----------------------------------------------------------

    async def _find_user(self, email: str) -> Optional[Row]:
        result = await self._rows.select(Query(table=AUTH_USERS).eq("email", email.strip().lower()).range(0, 0))
        return result.rows[0] if result.rows else None

    @staticmethod
    def _to_user(row: Row) -> AuthUser:
        return AuthUser(id=row["id"], email=row["email"], name=row.get("name"), provider=row.get("provider") or "email")

    def _issue(self, user: AuthUser, *, session_id: Optional[str] = None, recovery: bool = False) -> _Grant:
        self._prune()
        now = self._clock()
        grant = _Grant(
            session_id=session_id or str(uuid.uuid4()),
            user=user,
            access_token=secrets.token_urlsafe(32),
            refresh_token=secrets.token_urlsafe(32),
            expires_at=now + self._ttl,
            refresh_expires_at=now + self._refresh_ttl,
            recovery=recovery,
        )
        self._by_access[grant.access_token] = grant
        self._by_refresh[grant.refresh_token] = grant
        return grant

    def _revoke(self, grant: _Grant) -> None:
        self._by_access.pop(grant.access_token, None)
        self._by_refresh.pop(grant.refresh_token, None)

    def _prune(self) -> None:
        """Forget access tokens past their expiry and refresh tokens past theirs."""
        now = self._clock()
        for token in [t for t, g in self._by_access.items() if g.expires_at <= now]:
            del self._by_access[token]
        for token in [t for t, g in self._by_refresh.items() if g.refresh_expires_at <= now]:
            del self._by_refresh[token]

    def _grant_for(self, access_token: str) -> _Grant:
        self._prune()
        grant = self._by_access.get(access_token)
        if grant is None or grant.expires_at <= self._clock():
            raise AuthApiError("Invalid or expired token")
        return grant

    async def _emit(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        callbacks = list(self._listeners.values())
        results = await asyncio.gather(*(cb(event, session) for cb in callbacks), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                log.error("auth.listener_failed", auth_event=event.value, error=repr(result))

    # -- AuthProvider -----------------------------------------------------

    async def sign_up(self, email: str, password: str, name: str) -> AuthSession:
        email = email.strip().lower()
        if await self._find_user(email) is not None:
            raise AuthApiError("User already registered")
        password_hash = await asyncio.to_thread(hash_password, password, self._rounds)
        row = await self._rows.insert(
            AUTH_USERS,
            {"email": email, "password_hash": password_hash, "name": name, "provider": "email"},
        )
        session = self._issue(self._to_user(row)).to_session()
        log.info("auth.signed_up", user_id=row["id"])
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        row = await self._find_user(email)
        hashed = row.get("password_hash") if row else None
        if not hashed or not await asyncio.to_thread(verify_password, password, hashed):
            raise AuthApiError("Invalid login credentials")
        session = self._issue(self._to_user(row)).to_session()
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        if provider not in SUPPORTED_OAUTH_PROVIDERS:
            raise AuthApiError(f"Unsupported provider: {provider}")
        query = urlencode({"provider": provider, "redirect_to": redirect_to})
        return f"{self._base_url}/auth/v1/authorize?{query}"

    def issue_oauth_code(self, email: str, name: Optional[str] = None, provider: str = "google") -> str:
        """Record a completed provider login and return the code the callback receives."""
        code = secrets.token_urlsafe(16)
        self._oauth_codes[code] = _PendingOAuth(email=email.strip().lower(), name=name, provider=provider)
        return code

    async def exchange_code_for_session(self, code: str) -> AuthSession:
        pending = self._oauth_codes.pop(code, None)
        if pending is None:
            raise AuthApiError("Invalid or expired auth code")
        row = await self._find_user(pending.email)
        if row is None:
            row = await self._rows.insert(
                AUTH_USERS,
                {"email": pending.email, "name": pending.name, "provider": pending.provider},
            )
        session = self._issue(self._to_user(row)).to_session()
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        self._prune()
        grant = self._by_refresh.get(refresh_token)
        if grant is None or grant.recovery:
            raise AuthApiError("Invalid refresh token")
        self._revoke(grant)
        session = self._issue(grant.user, session_id=grant.session_id).to_session()
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def set_session(self, access_token: str, refresh_token: str) -> AuthSession:
        grant = self._grant_for(access_token)
        if grant.refresh_token != refresh_token:
            raise AuthApiError("Invalid or expired token")
        session = grant.to_session()
        await self._emit(AuthEvent.PASSWORD_RECOVERY if grant.recovery else AuthEvent.SIGNED_IN, session)
        return session

    async def get_session(self, access_token: str) -> AuthSession:
        return self._grant_for(access_token).to_session()

    async def get_user(self, access_token: str) -> AuthUser:
        return self._grant_for(access_token).user

    async def update_user(self, access_token: str, *, password: Optional[str] = None) -> AuthUser:
        grant = self._grant_for(access_token)
        if password is not None:
            password_hash = await asyncio.to_thread(hash_password, password, self._rounds)
            await self._rows.update(
                AUTH_USERS,
                {"password_hash": password_hash, "updated_at": self._clock()},
                [Filter("id", "eq", grant.user.id)],
            )
        await self._emit(AuthEvent.USER_UPDATED, grant.to_session())
        return grant.user

    async def sign_out(self, access_token: str) -> None:
        grant = self._grant_for(access_token)
        grants = [*self._by_access.values(), *self._by_refresh.values()]
        for other in [g for g in grants if g.session_id == grant.session_id]:
            self._revoke(other)
        await self._emit(AuthEvent.SIGNED_OUT, grant.to_session())

    async def reset_password_for_email(self, email: str, redirect_to: str) -> None:
        row = await self._find_user(email)
        if row is None:
            # unknown addresses get the same response as known ones
            return
        grant = self._issue(self._to_user(row), recovery=True)
        query = urlencode(
            {"access_token": grant.access_token, "refresh_token": grant.refresh_token, "type": "recovery"}
        )
        self.outbox.append({"email": row["email"], "link": f"{redirect_to}?{query}"})
        log.info("auth.recovery_sent", user_id=row["id"])

    async def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription:
        subscription = Subscription(lambda s: self._listeners.pop(s.id, None), "auth")
        self._listeners[subscription.id] = callback
        return subscription
