from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .query import Filter, Query, QueryResult, Row


class StorageError(Exception):
    """A row or object operation was rejected by the backend or could not reach it."""


class AuthApiError(Exception):
    """The auth provider rejected a request (bad credentials, expired token, ...)."""


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    name: Optional[str] = None
    provider: str = "email"


@dataclass(frozen=True)
class AuthSession:
    """A signed-in session. session_id stays the same across token refreshes."""

    session_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    user: AuthUser
    recovery: bool = False


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: ChangeType
    new: Optional[Row] = None
    old: Optional[Row] = None


AuthStateCallback = Callable[[AuthEvent, Optional[AuthSession]], Awaitable[None]]
ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]

_subscription_ids = itertools.count(1)


class Subscription:
    """
    Handle for a standing subscription (auth state or change feed).

    unsubscribe() is idempotent and is the only cancellation primitive.
    """

    def __init__(self, on_cancel: Callable[["Subscription"], None], topic: str) -> None:
        self.id = next(_subscription_ids)
        self.topic = topic
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._on_cancel(self)

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, topic={self.topic!r}, active={self._active})"


# PUBLIC_INTERFACE
class RowStore(ABC):
    """Relational row access: filtered/ordered/paged reads and id-scoped writes."""

    @abstractmethod
    async def select(self, query: Query) -> QueryResult:
        """Return the rows matching the query and, when query.count is set, the exact total."""

    @abstractmethod
    async def insert(self, table: str, values: Dict[str, Any]) -> Row:
        """Insert a row and return it as stored (generated id and timestamps filled in)."""

    @abstractmethod
    async def update(self, table: str, values: Dict[str, Any], filters: Sequence[Filter]) -> List[Row]:
        """Update every row matching all filters. Return the updated rows."""

    @abstractmethod
    async def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        """Delete every row matching all filters. Return the deleted rows."""


# PUBLIC_INTERFACE
class ChangeFeed(ABC):
    """Push-based stream of row-level change events."""

    @abstractmethod
    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        column: Optional[str] = None,
        value: Any = None,
    ) -> Subscription:
        """Deliver events on table to callback, optionally only where row[column] == value."""

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every matching active subscription."""


# PUBLIC_INTERFACE
class AuthProvider(ABC):
    """Identity provider: credentials, federation, sessions and state changes."""

    @abstractmethod
    async def sign_up(self, email: str, password: str, name: str) -> AuthSession: ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession: ...

    @abstractmethod
    async def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        """Return the URL the client must be redirected to."""

    @abstractmethod
    async def exchange_code_for_session(self, code: str) -> AuthSession: ...

    @abstractmethod
    async def refresh_session(self, refresh_token: str) -> AuthSession: ...

    @abstractmethod
    async def set_session(self, access_token: str, refresh_token: str) -> AuthSession: ...

    @abstractmethod
    async def get_session(self, access_token: str) -> AuthSession:
        """Return the live session an access token belongs to."""

    @abstractmethod
    async def get_user(self, access_token: str) -> AuthUser: ...

    @abstractmethod
    async def update_user(self, access_token: str, *, password: Optional[str] = None) -> AuthUser: ...

    @abstractmethod
    async def sign_out(self, access_token: str) -> None: ...

    @abstractmethod
    async def reset_password_for_email(self, email: str, redirect_to: str) -> None: ...

    @abstractmethod
    async def on_auth_state_change(self, callback: AuthStateCallback) -> Subscription: ...


# PUBLIC_INTERFACE
class ObjectStorage(ABC):
    """Binary object storage addressed by bucket and path."""

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> None: ...

    @abstractmethod
    async def download(self, bucket: str, path: str) -> Tuple[bytes, str]:
        """Return (data, content_type). Raise StorageError if absent."""

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str: ...


@dataclass
class Backend:
    """The backend collaborators the application talks to."""

    name: str
    auth: AuthProvider
    rows: RowStore
    realtime: ChangeFeed
    storage: ObjectStorage
