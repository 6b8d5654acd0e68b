"""S3-compatible storage client implementation.

This module provides an S3-compatible storage client that works with
AWS S3, MinIO, Cloudflare R2 and other S3-compatible object storage services.
boto3 is synchronous, so every call is pushed to the threadpool and response
bodies are iterated there as well.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import tempfile
from collections.abc import AsyncIterator
from datetime import datetime
from email.utils import format_datetime
from typing import TYPE_CHECKING, Any, Sequence

from starlette.concurrency import iterate_in_threadpool, run_in_threadpool

from mpu_gateway.infra.storage.client import (
    HttpMetadata,
    StorageError,
    StoredObject,
    UploadedPart,
)

if TYPE_CHECKING:
    from mpu_gateway.common.config import Settings

NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})

# get_object response field for each stored-metadata attribute
_METADATA_FIELDS = {
    "content_type": "ContentType",
    "content_language": "ContentLanguage",
    "content_disposition": "ContentDisposition",
    "content_encoding": "ContentEncoding",
    "cache_control": "CacheControl",
    "expires": "Expires",
}


def _error_code(exc: BaseException) -> str | None:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code")
        return str(code) if code is not None else None
    return None


def _strip_etag(etag: str | None) -> str:
    return (etag or "").strip('"')


def _metadata_from_response(response: dict[str, Any]) -> HttpMetadata:
    values: dict[str, str | None] = {}
    for attr, name in _METADATA_FIELDS.items():
        value = response.get(name)
        if isinstance(value, datetime):
            value = format_datetime(value, usegmt=True)
        values[attr] = value or None
    return HttpMetadata(**values)


class S3MultipartUpload:
    """Multipart upload session on an S3 bucket."""

    def __init__(self, client: "S3StorageClient", *, key: str, upload_id: str) -> None:
        self._client = client
        self.key = key
        self.upload_id = upload_id

    async def upload_part(
        self, part_number: int, body: AsyncIterator[bytes]
    ) -> UploadedPart:
        # boto3 needs a seekable body to compute length and checksums
        spool = tempfile.SpooledTemporaryFile(
            max_size=self._client.part_spool_bytes
        )
        try:
            async for chunk in body:
                if chunk:
                    await run_in_threadpool(spool.write, chunk)
            spool.seek(0)
            try:
                response = await run_in_threadpool(
                    self._client.s3.upload_part,
                    Bucket=self._client.bucket,
                    Key=self.key,
                    UploadId=self.upload_id,
                    PartNumber=int(part_number),
                    Body=spool,
                )
            except Exception as exc:
                raise StorageError(
                    f"Failed to upload part: {exc}", code=_error_code(exc)
                ) from exc
        finally:
            spool.close()

        etag = _strip_etag(response.get("ETag"))
        if not etag:
            raise StorageError("S3 response missing ETag")
        return UploadedPart(part_number=int(part_number), etag=etag)

    async def complete(self, parts: Sequence[UploadedPart]) -> StoredObject:
        multipart_payload = {
            "Parts": [
                {"ETag": part.etag, "PartNumber": int(part.part_number)}
                for part in parts
            ]
        }
        try:
            response = await run_in_threadpool(
                self._client.s3.complete_multipart_upload,
                Bucket=self._client.bucket,
                Key=self.key,
                UploadId=self.upload_id,
                MultipartUpload=multipart_payload,
            )
        except Exception as exc:
            raise StorageError(
                f"Failed to complete multipart upload: {exc}", code=_error_code(exc)
            ) from exc

        return StoredObject(key=self.key, etag=_strip_etag(response.get("ETag")))

    async def abort(self) -> None:
        try:
            await run_in_threadpool(
                self._client.s3.abort_multipart_upload,
                Bucket=self._client.bucket,
                Key=self.key,
                UploadId=self.upload_id,
            )
        except Exception as exc:
            raise StorageError(
                f"Failed to abort multipart upload: {exc}", code=_error_code(exc)
            ) from exc


class S3StorageClient:
    """S3-compatible object storage client.

    All keys live in the single bucket named by ``S3_BUCKET``.
    """

    def __init__(self, *, settings: "Settings") -> None:
        """Initialize the S3 client with configuration from settings.

        Args:
            settings: Application settings containing S3 configuration.

        Raises:
            StorageError: If no bucket is configured.
        """
        if not settings.S3_BUCKET:
            raise StorageError("S3_BUCKET is required for the s3 storage backend")
        self.bucket = settings.S3_BUCKET
        self.stream_chunk_bytes = int(settings.STORAGE_STREAM_CHUNK_BYTES)
        self.part_spool_bytes = int(settings.STORAGE_PART_SPOOL_BYTES)
        self.s3 = self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> Any:
        """Create a boto3 S3 client from settings."""
        import boto3
        from botocore.config import Config

        addressing_style = (settings.S3_ADDRESSING_STYLE or "path").strip().lower()
        config = Config(s3={"addressing_style": addressing_style})

        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            use_ssl=bool(settings.S3_USE_SSL),
            config=config,
        )

    async def create_multipart_upload(self, key: str) -> S3MultipartUpload:
        try:
            response = await run_in_threadpool(
                self.s3.create_multipart_upload, Bucket=self.bucket, Key=key
            )
        except Exception as exc:
            raise StorageError(
                f"Failed to create multipart upload: {exc}", code=_error_code(exc)
            ) from exc

        upload_id = response.get("UploadId")
        if not upload_id:
            raise StorageError("S3 response missing UploadId")

        return S3MultipartUpload(self, key=key, upload_id=str(upload_id))

    def resume_multipart_upload(self, key: str, upload_id: str) -> S3MultipartUpload:
        return S3MultipartUpload(self, key=key, upload_id=upload_id)

    async def get(self, key: str) -> StoredObject | None:
        try:
            response = await run_in_threadpool(
                self.s3.get_object, Bucket=self.bucket, Key=key
            )
        except Exception as exc:
            code = _error_code(exc)
            if code in NOT_FOUND_CODES:
                return None
            raise StorageError(f"Failed to get object: {exc}", code=code) from exc

        streaming_body = response["Body"]
        size = response.get("ContentLength")
        return StoredObject(
            key=key,
            etag=_strip_etag(response.get("ETag")),
            size=int(size) if size is not None else None,
            http_metadata=_metadata_from_response(response),
            body=self._stream_body(streaming_body),
            release=streaming_body.close,
        )

    async def _stream_body(self, streaming_body: Any) -> AsyncIterator[bytes]:
        try:
            async for chunk in iterate_in_threadpool(
                streaming_body.iter_chunks(chunk_size=self.stream_chunk_bytes)
            ):
                yield chunk
        finally:
            streaming_body.close()

    async def delete(self, key: str) -> None:
        try:
            await run_in_threadpool(self.s3.delete_object, Bucket=self.bucket, Key=key)
        except Exception as exc:
            raise StorageError(
                f"Failed to delete object: {exc}", code=_error_code(exc)
            ) from exc
