"""
Profile records: identity details and role, plus avatar storage.
"""
from __future__ import annotations

import mimetypes
import os
import secrets
from datetime import datetime
from typing import AbstractSet, Callable, List, Optional

import structlog

from .backend import AuthUser, Filter, ObjectStorage, Query, RowStore, StorageError
from .backend.tables import PROFILES
from .errors import BackendError, InvalidUploadError, NotFoundError
from .models import ProfileEntity
from .permissions import Role
from .utils import utc_now

log = structlog.get_logger()

AVATAR_BUCKET = "profile-avatars"
MAX_AVATAR_BYTES = 2 * 1024 * 1024


def default_name(user: AuthUser) -> str:
    return user.name or user.email.split("@", 1)[0]


async def get_profile(rows: RowStore, user_id: str) -> Optional[ProfileEntity]:
    try:
        result = await rows.select(Query(table=PROFILES).eq("id", user_id).range(0, 0))
    except StorageError as exc:
        log.warning("profiles.load_failed", user_id=user_id, error=str(exc))
        raise BackendError("Failed to load profile") from exc
    return result.rows[0] if result.rows else None  # type: ignore[return-value]


async def load_or_create_profile(
    rows: RowStore,
    user: AuthUser,
    bootstrap_admin_emails: AbstractSet[str] = frozenset(),
) -> ProfileEntity:
    """Return the user's profile, creating it with defaults on first sign-in."""
    profile = await get_profile(rows, user.id)
    if profile is not None:
        return profile

    role = Role.ADMIN if user.email.lower() in bootstrap_admin_emails else Role.USER
    try:
        created = await rows.insert(
            PROFILES,
            {"id": user.id, "email": user.email, "name": default_name(user), "role": role.value},
        )
    except StorageError as exc:
        log.warning("profiles.create_failed", user_id=user.id, error=str(exc))
        raise BackendError("Failed to create profile") from exc
    log.info("profile.created", user_id=user.id, role=role.value)
    return created  # type: ignore[return-value]


async def update_profile(
    rows: RowStore,
    user_id: str,
    *,
    clock: Callable[[], datetime] = utc_now,
    **values: object,
) -> ProfileEntity:
    values["updated_at"] = clock()
    try:
        updated = await rows.update(PROFILES, dict(values), [Filter("id", "eq", user_id)])
    except StorageError as exc:
        log.warning("profiles.update_failed", user_id=user_id, error=str(exc))
        raise BackendError("Failed to update profile") from exc
    if not updated:
        raise NotFoundError("User not found")
    return updated[0]  # type: ignore[return-value]


def avatar_path(user_id: str, filename: str, content_type: str) -> str:
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    # the extension decides the served type on file storage, so it must name an image
    if not (mimetypes.guess_type(f"avatar.{ext}")[0] or "").startswith("image/"):
        ext = (mimetypes.guess_extension(content_type) or ".img").lstrip(".")
    return f"avatars/{user_id}-{secrets.token_hex(6)}.{ext}"


async def upload_avatar(
    storage: ObjectStorage,
    user_id: str,
    filename: str,
    data: bytes,
    content_type: str,
) -> str:
    """
    Store the avatar image and return its public URL.

    Only image/* content up to MAX_AVATAR_BYTES is accepted; anything else
    raises InvalidUploadError before the storage is touched.
    """
    if not content_type.lower().startswith("image/"):
        raise InvalidUploadError("Avatar must be an image")
    if len(data) > MAX_AVATAR_BYTES:
        raise InvalidUploadError("Avatar must be 2MB or smaller")
    path = avatar_path(user_id, filename, content_type)
    try:
        await storage.upload(AVATAR_BUCKET, path, data, content_type=content_type, upsert=True)
    except StorageError as exc:
        log.warning("profiles.avatar_upload_failed", user_id=user_id, error=str(exc))
        raise BackendError("Failed to upload avatar") from exc
    return storage.get_public_url(AVATAR_BUCKET, path)


async def list_profiles(rows: RowStore) -> List[ProfileEntity]:
    try:
        result = await rows.select(Query(table=PROFILES).order("created_at").order("id"))
    except StorageError as exc:
        log.warning("profiles.list_failed", error=str(exc))
        raise BackendError("Failed to load users") from exc
    return result.rows  # type: ignore[return-value]


async def count_profiles(rows: RowStore) -> int:
    try:
        result = await rows.select(Query(table=PROFILES).range(0, -1).with_count())
    except StorageError as exc:
        log.warning("profiles.count_failed", error=str(exc))
        raise BackendError("Failed to count users") from exc
    return result.count or 0


async def set_role(rows: RowStore, user_id: str, role: Role, *, clock: Callable[[], datetime] = utc_now) -> ProfileEntity:
    profile = await update_profile(rows, user_id, clock=clock, role=role.value)
    log.info("profile.role_changed", user_id=user_id, role=role.value)
    return profile
