"""Object gateway service.

Thin application layer between the HTTP routes and the storage backend.
Each operation returns an explicit result: ``Succeeded`` with the backend's
answer, or ``Rejected`` when the backend refused the request in a way the
client is expected to handle, such as a missing object or a stale upload
session. Any other failure propagates to the caller untouched.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Sequence

from mpu_gateway.infra.storage.client import (
    MultipartUpload,
    StorageClient,
    StorageError,
    StoredObject,
    UploadedPart,
)
from mpu_gateway.services.results import ActionResult, Rejected, Succeeded

logger = logging.getLogger("mpu_gateway.storage")

OBJECT_NOT_FOUND = "Object Not Found"


class ObjectGatewayService:
    """Maps gateway actions onto a storage backend."""

    def __init__(self, storage: StorageClient) -> None:
        self._storage = storage

    @property
    def storage(self) -> StorageClient:
        return self._storage

    def _rejected(self, action: str, key: str, exc: StorageError) -> Rejected:
        logger.warning(
            "storage_rejected action=%s key=%s code=%s error=%s",
            action,
            key,
            exc.code,
            exc,
            extra={
                "extra": {
                    "action": action,
                    "key": key,
                    "code": exc.code,
                    "error": str(exc),
                }
            },
        )
        return Rejected(status_code=400, message=str(exc), error=exc)

    async def create_upload(self, key: str) -> ActionResult[MultipartUpload]:
        upload = await self._storage.create_multipart_upload(key)
        return Succeeded(upload)

    async def complete_upload(
        self, key: str, upload_id: str, parts: Sequence[UploadedPart]
    ) -> ActionResult[StoredObject]:
        upload = self._storage.resume_multipart_upload(key, upload_id)
        try:
            stored = await upload.complete(parts)
        except StorageError as exc:
            return self._rejected("mpu-complete", key, exc)
        return Succeeded(stored)

    async def upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        body: AsyncIterator[bytes],
    ) -> ActionResult[UploadedPart]:
        upload = self._storage.resume_multipart_upload(key, upload_id)
        try:
            part = await upload.upload_part(part_number, body)
        except StorageError as exc:
            return self._rejected("mpu-uploadpart", key, exc)
        return Succeeded(part)

    async def abort_upload(self, key: str, upload_id: str) -> ActionResult[str]:
        upload = self._storage.resume_multipart_upload(key, upload_id)
        try:
            await upload.abort()
        except StorageError as exc:
            return self._rejected("mpu-abort", key, exc)
        return Succeeded(upload_id)

    async def get_object(self, key: str) -> ActionResult[StoredObject]:
        stored = await self._storage.get(key)
        if stored is None:
            return Rejected(status_code=404, message=OBJECT_NOT_FOUND)
        return Succeeded(stored)

    async def delete_object(self, key: str) -> ActionResult[str]:
        await self._storage.delete(key)
        return Succeeded(key)
