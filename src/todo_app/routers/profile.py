from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, File, UploadFile

from ..backend import Backend
from ..dependencies import get_backend, get_clock, require_action
from ..errors import NotFoundError
from ..permissions import Action
from ..profiles import MAX_AVATAR_BYTES, get_profile, update_profile, upload_avatar
from ..schemas import ProfileOut, ProfileUpdate
from ..session import SessionContext

router = APIRouter(
    prefix="/api/v1/profile",
    tags=["profile"],
)

_session = require_action(Action.EDIT_PROFILE)


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=ProfileOut,
    summary="Get Profile",
    description="Profile of the current session.",
    responses={404: {"description": "User not found"}},
)
async def read_profile(ctx: SessionContext = Depends(_session), backend: Backend = Depends(get_backend)) -> ProfileOut:
    profile = await get_profile(backend.rows, ctx.user_id)
    if profile is None:
        raise NotFoundError("User not found")
    return ProfileOut(**profile)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch(
    "",
    response_model=ProfileOut,
    summary="Update Profile",
    description="Change the display name. The session identity is updated as well.",
)
async def edit_profile(
    payload: ProfileUpdate,
    ctx: SessionContext = Depends(_session),
    backend: Backend = Depends(get_backend),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ProfileOut:
    profile = await update_profile(backend.rows, ctx.user_id, clock=clock, name=payload.name)
    ctx.update_identity(name=profile["name"])
    return ProfileOut(**profile)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post(
    "/avatar",
    response_model=ProfileOut,
    summary="Upload Avatar",
    description=(
        "Upload an avatar image (multipart form field 'file', image/*, at most 2MB). It is stored in the "
        "profile-avatars bucket and its public URL is saved on the profile."
    ),
    responses={
        422: {"description": "Not an image, or larger than 2MB"},
        502: {"description": "Failed to upload avatar"},
    },
)
async def upload_profile_avatar(
    file: UploadFile = File(..., description="Avatar image"),
    ctx: SessionContext = Depends(_session),
    backend: Backend = Depends(get_backend),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ProfileOut:
    data = await file.read(MAX_AVATAR_BYTES + 1)
    url = await upload_avatar(
        backend.storage,
        ctx.user_id,
        file.filename or "",
        data,
        file.content_type or "application/octet-stream",
    )
    profile = await update_profile(backend.rows, ctx.user_id, clock=clock, avatar_url=url)
    ctx.update_identity(avatar_url=url)
    return ProfileOut(**profile)  # type: ignore[arg-type]
