"""
Backend port: the managed services the application delegates to.

build_backend() wires the local implementations selected by settings:
- memory: MemoryRowStore + MemoryObjectStorage
- sqlite: SQLiteRowStore + LocalFileStorage
Both use the in-process change feed and the local auth provider.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from ..settings import Settings
from ..utils import utc_now
from .auth import LocalAuthProvider
from .base import (
    AuthApiError,
    AuthEvent,
    AuthProvider,
    AuthSession,
    AuthUser,
    Backend,
    ChangeEvent,
    ChangeFeed,
    ChangeType,
    ObjectStorage,
    RowStore,
    StorageError,
    Subscription,
)
from .memory import MemoryRowStore
from .query import Filter, Query, QueryResult
from .realtime import LocalChangeFeed
from .storage import LocalFileStorage, MemoryObjectStorage

__all__ = [
    "AuthApiError",
    "AuthEvent",
    "AuthProvider",
    "AuthSession",
    "AuthUser",
    "Backend",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeType",
    "Filter",
    "ObjectStorage",
    "Query",
    "QueryResult",
    "RowStore",
    "StorageError",
    "Subscription",
    "build_backend",
]


# PUBLIC_INTERFACE
def build_backend(
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utc_now,
    bcrypt_rounds: int = 12,
) -> Backend:
    """Return the Backend configured by settings.persistence_backend."""
    feed = LocalChangeFeed()
    if settings.persistence_backend == "sqlite":
        from .sqlite import SQLiteRowStore

        rows: RowStore = SQLiteRowStore(settings.sqlite_db_path, feed=feed, clock=clock)
        storage: ObjectStorage = LocalFileStorage(settings.storage_dir, settings.public_base_url)
    else:
        rows = MemoryRowStore(feed=feed, clock=clock)
        storage = MemoryObjectStorage(settings.public_base_url)

    auth = LocalAuthProvider(
        rows,
        base_url=settings.public_base_url,
        session_ttl=timedelta(seconds=settings.session_ttl_seconds),
        clock=clock,
        bcrypt_rounds=bcrypt_rounds,
    )
    return Backend(name=settings.persistence_backend, auth=auth, rows=rows, realtime=feed, storage=storage)
