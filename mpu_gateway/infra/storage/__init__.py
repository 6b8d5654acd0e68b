"""Object storage abstraction layer.

This module provides a protocol-based abstraction for object storage backends,
enabling support for S3, MinIO, R2 and other S3-compatible services.
"""

from __future__ import annotations

from mpu_gateway.common.config import Settings

from .client import (
    HttpMetadata,
    MultipartUpload,
    StorageClient,
    StorageError,
    StoredObject,
    UploadedPart,
)


class StorageBackendNotConfiguredError(Exception):
    """Raised when the storage backend is not properly configured."""


def build_storage_client(settings: Settings) -> StorageClient:
    """Build the storage client selected by ``STORAGE_BACKEND``."""
    backend = (settings.STORAGE_BACKEND or "").strip().lower()
    if backend != "s3":
        raise StorageBackendNotConfiguredError(
            f"Unsupported storage backend: {backend}. Only 's3' is supported."
        )
    if not settings.S3_BUCKET:
        raise StorageBackendNotConfiguredError("S3_BUCKET is required")

    from .s3_client import S3StorageClient

    return S3StorageClient(settings=settings)


__all__ = [
    "HttpMetadata",
    "MultipartUpload",
    "StorageBackendNotConfiguredError",
    "StorageClient",
    "StorageError",
    "StoredObject",
    "UploadedPart",
    "build_storage_client",
]
