from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from ..backend import Backend, StorageError
from ..backend.storage import PUBLIC_OBJECT_PREFIX
from ..dependencies import get_backend
from ..errors import NotFoundError

router = APIRouter(
    prefix=PUBLIC_OBJECT_PREFIX,
    tags=["storage"],
)


# PUBLIC_INTERFACE
@router.get(
    "/{bucket}/{path:path}",
    summary="Public Object",
    description="Serve a stored object (e.g. an avatar) by the public URL returned on upload.",
    response_class=Response,
    responses={
        200: {"description": "Object bytes"},
        404: {"description": "Object not found"},
    },
)
async def get_public_object(bucket: str, path: str, backend: Backend = Depends(get_backend)) -> Response:
    try:
        data, content_type = await backend.storage.download(bucket, path)
    except StorageError as exc:
        raise NotFoundError("Object not found") from exc
    return Response(content=data, media_type=content_type, headers={"X-Content-Type-Options": "nosniff"})
