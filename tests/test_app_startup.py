from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from mpu_gateway import main
from mpu_gateway.common.config import Settings
from mpu_gateway.infra.storage import StorageBackendNotConfiguredError
from tests.services.mock_storage import MockStorageClient


def test_startup_builds_storage_from_settings(monkeypatch):
    built = MockStorageClient()
    seen = []

    def fake_build(settings):
        seen.append(settings)
        return built

    monkeypatch.setattr(main, "build_storage_client", fake_build)
    settings = Settings(S3_BUCKET="uploads", ENABLE_METRICS=False)
    app = main.create_app(settings=settings)

    assert app.state.storage is None
    with TestClient(app) as client:
        assert app.state.storage is built
        assert client.post("/k?action=mpu-create").status_code == 200

    assert seen == [settings]
    assert built.operations() == ["create"]


def test_startup_keeps_injected_storage(monkeypatch):
    def fail_build(settings):
        raise AssertionError("storage should not be rebuilt")

    monkeypatch.setattr(main, "build_storage_client", fail_build)
    storage = MockStorageClient()
    app = main.create_app(settings=Settings(ENABLE_METRICS=False), storage=storage)

    with TestClient(app):
        assert app.state.storage is storage


def test_startup_fails_without_bucket():
    app = main.create_app(settings=Settings(ENABLE_METRICS=False))

    with pytest.raises(StorageBackendNotConfiguredError, match="S3_BUCKET"):
        with TestClient(app):
            pass
