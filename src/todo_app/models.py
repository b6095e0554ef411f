from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, TypedDict

Priority = Literal["low", "medium", "high"]
RoleName = Literal["user", "admin"]


# PUBLIC_INTERFACE
class TodoEntity(TypedDict):
    """
    A todo row as stored in the backend 'todos' table.

    Fields:
    - id: Opaque identifier assigned by the storage layer
    - user_id: Owner identity
    - title: Short title (1..100 chars, trimmed on input via schemas)
    - description: Optional detailed description (<= 1000 chars)
    - due_date: Due timestamp (aware, UTC)
    - priority: low, medium or high
    - completed: Boolean completion flag
    - created_at: Creation timestamp (aware, UTC)
    - updated_at: Last update timestamp (aware, UTC)
    """

    id: str
    user_id: str
    title: str
    description: Optional[str]
    due_date: datetime
    priority: Priority
    completed: bool
    created_at: datetime
    updated_at: datetime


# PUBLIC_INTERFACE
class ProfileEntity(TypedDict):
    """A row of the backend 'profiles' table; id equals the auth user id."""

    id: str
    email: str
    name: Optional[str]
    avatar_url: Optional[str]
    role: RoleName
    created_at: datetime
    updated_at: datetime
