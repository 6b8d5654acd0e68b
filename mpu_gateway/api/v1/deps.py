from __future__ import annotations

from fastapi import Request

from mpu_gateway.infra.storage import StorageBackendNotConfiguredError, StorageClient
from mpu_gateway.services import ObjectGatewayService


def get_storage(request: Request) -> StorageClient:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        raise StorageBackendNotConfiguredError(
            "No storage backend is attached to the application"
        )
    return storage


def get_object_service(request: Request) -> ObjectGatewayService:
    return ObjectGatewayService(get_storage(request))
