"""
Data-driven authorization: which role may perform which action.

Every guarded call site names the Action it performs and asks `can` or
`require`; there are no role comparisons elsewhere in the code base.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List

from .errors import AuthorizationError


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class Action(str, Enum):
    VIEW_DASHBOARD = "view_dashboard"
    MANAGE_OWN_TODOS = "manage_own_todos"
    VIEW_NOTIFICATIONS = "view_notifications"
    EDIT_PROFILE = "edit_profile"
    VIEW_USER_COUNT = "view_user_count"
    VIEW_USERS = "view_users"
    MANAGE_ROLES = "manage_roles"


_USER_ACTIONS = frozenset(
    {
        Action.VIEW_DASHBOARD,
        Action.MANAGE_OWN_TODOS,
        Action.VIEW_NOTIFICATIONS,
        Action.EDIT_PROFILE,
    }
)

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Action]] = {
    Role.USER: _USER_ACTIONS,
    Role.ADMIN: _USER_ACTIONS | {Action.VIEW_USER_COUNT, Action.VIEW_USERS, Action.MANAGE_ROLES},
}


def parse_role(value: object) -> Role:
    """Map a stored role value to a Role; anything unrecognised is a plain user."""
    try:
        return Role(value)
    except ValueError:
        return Role.USER


def can(role: Role, action: Action) -> bool:
    return action in ROLE_PERMISSIONS.get(role, frozenset())


def require(role: Role, action: Action) -> None:
    if not can(role, action):
        raise AuthorizationError()


@dataclass(frozen=True)
class NavItem:
    name: str
    href: str
    action: Action


NAV_ITEMS = (
    NavItem("Dashboard", "/dashboard", Action.VIEW_DASHBOARD),
    NavItem("My Todos", "/dashboard/todos", Action.MANAGE_OWN_TODOS),
    NavItem("Users", "/dashboard/admin/users", Action.VIEW_USERS),
    NavItem("Profile", "/dashboard/profile", Action.EDIT_PROFILE),
)


def navigation_for(role: Role) -> List[NavItem]:
    return [item for item in NAV_ITEMS if can(role, item.action)]
