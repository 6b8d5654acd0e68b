from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from mpu_gateway.common.config import Settings, get_settings
from mpu_gateway.infra.storage.client import HttpMetadata
from mpu_gateway.main import create_app
from tests.services.mock_storage import MockStorageClient


@pytest.fixture(autouse=True)
def reset_settings_cache():
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def storage() -> MockStorageClient:
    return MockStorageClient()


@pytest.fixture()
def settings() -> Settings:
    return Settings(ENABLE_METRICS=False)


@pytest.fixture()
def client(settings, storage):
    app = create_app(settings=settings, storage=storage)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture()
def upload_id(storage) -> str:
    """An open upload session on key ``video.bin``."""
    storage.uploads["existing-upload"] = {
        "key": "video.bin",
        "parts": {},
        "http_metadata": HttpMetadata(),
    }
    return "existing-upload"
