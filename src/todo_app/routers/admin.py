from __future__ import annotations

from datetime import datetime
from typing import Callable, List

import structlog
from fastapi import APIRouter, Depends

from ..backend import Backend
from ..dependencies import get_backend, get_clock, require_action
from ..permissions import Action, Role
from ..profiles import count_profiles, list_profiles, set_role
from ..schemas import ProfileOut, RoleUpdate, UserCountOut
from ..session import SessionContext

log = structlog.get_logger()

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
)


# PUBLIC_INTERFACE
@router.get(
    "/users",
    response_model=List[ProfileOut],
    summary="List Users",
    responses={403: {"description": "Forbidden"}},
)
async def list_users(
    ctx: SessionContext = Depends(require_action(Action.VIEW_USERS)),
    backend: Backend = Depends(get_backend),
) -> List[ProfileOut]:
    return [ProfileOut(**p) for p in await list_profiles(backend.rows)]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/users/count",
    response_model=UserCountOut,
    summary="Count Users",
    responses={403: {"description": "Forbidden"}},
)
async def count_users(
    ctx: SessionContext = Depends(require_action(Action.VIEW_USER_COUNT)),
    backend: Backend = Depends(get_backend),
) -> UserCountOut:
    return UserCountOut(total_users=await count_profiles(backend.rows))


# PUBLIC_INTERFACE
@router.patch(
    "/users/{user_id}/role",
    response_model=ProfileOut,
    summary="Set User Role",
    description=(
        "Change a user's role. Other sessions of that user keep their cached role until they "
        "re-read it; changing your own role takes effect immediately."
    ),
    responses={
        403: {"description": "Forbidden"},
        404: {"description": "User not found"},
    },
)
async def change_role(
    user_id: str,
    payload: RoleUpdate,
    ctx: SessionContext = Depends(require_action(Action.MANAGE_ROLES)),
    backend: Backend = Depends(get_backend),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ProfileOut:
    role = Role(payload.role)
    profile = await set_role(backend.rows, user_id, role, clock=clock)
    if user_id == ctx.user_id:
        ctx.update_identity(role=role)
    log.info("admin.role_changed", actor=ctx.user_id, user_id=user_id, role=role.value)
    return ProfileOut(**profile)  # type: ignore[arg-type]
