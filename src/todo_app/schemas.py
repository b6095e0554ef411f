from __future__ import annotations

import re
from datetime import date, datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .utils import as_utc

# Shared type for incoming due_date which can be a date, datetime, or ISO8601 string
DueDateInput = Union[date, datetime, str]
PriorityLiteral = Literal["low", "medium", "high"]
RoleLiteral = Literal["user", "admin"]

TITLE_MAX = 100
DESCRIPTION_MAX = 1000


def _parse_due_date(value: Optional[DueDateInput]) -> Optional[datetime]:
    """
    Internal helper to normalize due_date input into an aware UTC datetime.
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - Naive datetimes are taken as UTC.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return as_utc(value)

    if isinstance(value, date):
        return as_utc(datetime(value.year, value.month, value.day, 0, 0, 0))

    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(s))
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return as_utc(datetime(d.year, d.month, d.day, 0, 0, 0))
            except ValueError as e:
                raise ValueError(
                    "Invalid due_date format. Use ISO8601 date or datetime string (e.g., '2025-01-31' or '2025-01-31T13:45:00Z')."
                ) from e

    raise ValueError("Invalid type for due_date; expected date, datetime, or ISO8601 string.")


def _clean_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    s = v.strip()
    if not s:
        raise ValueError("Title is required")
    if len(s) > TITLE_MAX:
        raise ValueError("Title is too long")
    return s


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating (or fully replacing) a Todo item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries",
                "description": "Milk, eggs, bread",
                "due_date": "2025-02-01T17:00:00Z",
                "priority": "medium",
                "completed": False,
            }
        }
    )

    title: str = Field(..., description="Short title for the todo item", min_length=1, max_length=TITLE_MAX)
    description: Optional[str] = Field(
        default=None, description="Optional detailed description", max_length=DESCRIPTION_MAX
    )
    due_date: datetime = Field(
        ..., description="Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00 UTC"
    )
    priority: PriorityLiteral = Field(default="medium", description="Priority: low, medium or high")
    completed: bool = Field(default=False, description="Completion status flag")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..100 length.
        """
        if v is None:
            raise ValueError("Title is required")
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        """
        Normalize due_date from str/date/datetime to an aware UTC datetime.
        """
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class TodoUpdate(BaseModel):
    """
    Schema for partially updating an existing Todo item.
    All fields are optional; only provided fields will be updated.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy groceries and supplies",
                "completed": True,
                "due_date": "2025-02-02T09:30:00Z",
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the todo item", min_length=1, max_length=TITLE_MAX)
    description: Optional[str] = Field(default=None, description="Optional detailed description", max_length=DESCRIPTION_MAX)
    due_date: Optional[datetime] = Field(default=None, description="Due date/time of the todo item")
    priority: Optional[PriorityLiteral] = Field(default=None, description="Priority: low, medium or high")
    completed: Optional[bool] = Field(default=None, description="Completion status flag")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DueDateInput]) -> Optional[datetime]:
        return _parse_due_date(v)


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    id: str = Field(..., description="Opaque identifier of the todo item")
    user_id: str = Field(..., description="Owner of the todo item")
    title: str
    description: Optional[str] = None
    due_date: datetime
    priority: PriorityLiteral
    completed: bool
    created_at: datetime
    updated_at: datetime


class TodoPageOut(BaseModel):
    """
    Envelope for one page of the todo list.
    """

    items: List[TodoOut] = Field(..., description="Todos on this page")
    page: int = Field(..., description="One-based page number")
    page_size: int = Field(..., description="Rows per page (fixed)")
    has_more: bool = Field(..., description="Whether a following page has rows")
    total: Optional[int] = Field(default=None, description="Exact number of matching todos")


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

_PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "Password must contain at least one uppercase letter"),
    (re.compile(r"[a-z]"), "Password must contain at least one lowercase letter"),
    (re.compile(r"[0-9]"), "Password must contain at least one number"),
    (re.compile(r"[^A-Za-z0-9]"), "Password must contain at least one special character"),
)


def _check_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters long")
    for pattern, message in _PASSWORD_RULES:
        if not pattern.search(v):
            raise ValueError(message)
    return v


class SignInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SignUpRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    name: str = Field(..., min_length=2, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        s = v.strip()
        if len(s) < 2:
            raise ValueError("Name must be at least 2 characters.")
        return s


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordUpdateRequest(BaseModel):
    """New password submitted from the recovery link."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordUpdateRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class NavItemOut(BaseModel):
    name: str
    href: str


class IdentityOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: RoleLiteral
    is_admin: bool
    navigation: List[NavItemOut] = Field(default_factory=list)


class SessionOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: IdentityOut


class RedirectOut(BaseModel):
    url: str


class MessageOut(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationOut(BaseModel):
    id: str
    title: str
    message: str
    type: Literal["info", "success", "warning", "error"]
    read: bool
    created_at: Optional[datetime] = None
    todo_id: Optional[str] = None


class NotificationListOut(BaseModel):
    items: List[NotificationOut]
    unread_count: int
    is_open: bool
    is_loading: bool


class ToastOut(BaseModel):
    kind: Literal["success", "error", "info"]
    message: str
    created_at: datetime


class DrawerOut(BaseModel):
    is_open: bool
    unread_count: int


# ---------------------------------------------------------------------------
# Profiles, admin, dashboard
# ---------------------------------------------------------------------------


class ProfileOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    role: RoleLiteral
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProfileUpdate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        s = v.strip()
        if len(s) < 2:
            raise ValueError("Name must be at least 2 characters.")
        return s


class RoleUpdate(BaseModel):
    role: RoleLiteral


class UserCountOut(BaseModel):
    total_users: int


class DashboardStatsOut(BaseModel):
    total_todos: int
    completed_todos: int
    upcoming_todos: int
    total_users: Optional[int] = None
