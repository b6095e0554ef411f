from __future__ import annotations

import asyncio
import mimetypes
import os
from typing import Dict, Tuple
from urllib.parse import quote

from .base import ObjectStorage, StorageError

PUBLIC_OBJECT_PREFIX = "/storage/v1/object/public"


def _check_path(bucket: str, path: str) -> None:
    for part in (bucket, *path.split("/")):
        if part in {"", ".", ".."}:
            raise StorageError(f"Invalid object path: {bucket}/{path}")


class _PublicUrlMixin:
    _public_base_url: str

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self._public_base_url}{PUBLIC_OBJECT_PREFIX}/{quote(bucket)}/{quote(path)}"


class MemoryObjectStorage(_PublicUrlMixin, ObjectStorage):
    """Object storage kept in a dict; used with the in-memory backend."""

    def __init__(self, public_base_url: str) -> None:
        self._public_base_url = public_base_url.rstrip("/")
        self._objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> None:
        _check_path(bucket, path)
        key = (bucket, path)
        if key in self._objects and not upsert:
            raise StorageError(f"Object already exists: {bucket}/{path}")
        self._objects[key] = (bytes(data), content_type)

    async def download(self, bucket: str, path: str) -> Tuple[bytes, str]:
        try:
            return self._objects[(bucket, path)]
        except KeyError:
            raise StorageError(f"Object not found: {bucket}/{path}") from None


class LocalFileStorage(_PublicUrlMixin, ObjectStorage):
    """Object storage on the local filesystem under root_dir/<bucket>/<path>."""

    def __init__(self, root_dir: str, public_base_url: str) -> None:
        self._root = os.path.abspath(root_dir)
        self._public_base_url = public_base_url.rstrip("/")
        os.makedirs(self._root, exist_ok=True)

    def _file(self, bucket: str, path: str) -> str:
        _check_path(bucket, path)
        return os.path.join(self._root, bucket, *path.split("/"))

    def _write(self, target: str, data: bytes, upsert: bool) -> None:
        if os.path.exists(target) and not upsert:
            raise StorageError(f"Object already exists: {target}")
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "wb") as f:
            f.write(data)

    def _read(self, target: str) -> bytes:
        try:
            with open(target, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise StorageError(f"Object not found: {target}") from None

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> None:
        await asyncio.to_thread(self._write, self._file(bucket, path), bytes(data), upsert)

    async def download(self, bucket: str, path: str) -> Tuple[bytes, str]:
        data = await asyncio.to_thread(self._read, self._file(bucket, path))
        content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        return data, content_type
