from __future__ import annotations

import asyncio

import pytest

from mpu_gateway.api.v1.routers.objects import ObjectStreamResponse
from mpu_gateway.infra.storage.client import HttpMetadata, StoredObject


def test_get_streams_stored_content(client, storage):
    data = b"0123456789" * 10
    etag = storage.put_object("notes.txt", data)

    r = client.get("/notes.txt?action=get")

    assert r.status_code == 200
    assert r.content == data
    assert r.headers["etag"] == f'"{etag}"'
    assert r.headers["content-length"] == str(len(data))


def test_get_replays_stored_http_metadata(client, storage):
    storage.put_object(
        "page.html",
        b"<html></html>",
        http_metadata=HttpMetadata(
            content_type="text/html",
            content_language="en",
            cache_control="no-cache",
            content_disposition='attachment; filename="page.html"',
        ),
    )

    r = client.get("/page.html?action=get")

    assert r.status_code == 200
    assert r.headers["content-type"] == "text/html"
    assert r.headers["content-language"] == "en"
    assert r.headers["cache-control"] == "no-cache"
    assert r.headers["content-disposition"] == 'attachment; filename="page.html"'


def test_get_releases_backend_stream(client, storage):
    storage.put_object("notes.txt", b"0123456789")

    r = client.get("/notes.txt?action=get")

    assert r.status_code == 200
    assert storage.calls[-1] == ("release", "notes.txt")


def test_stream_released_when_client_is_gone_before_first_byte():
    released = []
    iterated = []

    async def body():
        iterated.append(True)
        yield b"never sent"

    stored = StoredObject(
        key="k", etag="e", body=body(), release=lambda: released.append("k")
    )
    response = ObjectStreamResponse(stored, {"etag": stored.http_etag})

    async def receive():
        await asyncio.Event().wait()

    async def send(message):
        raise OSError("connection reset")

    scope = {"type": "http", "asgi": {"version": "3.0", "spec_version": "2.4"}}
    with pytest.raises(Exception):
        asyncio.run(response(scope, receive, send))

    assert released == ["k"]
    assert iterated == []


def test_get_missing_object_is_not_found(client):
    r = client.get("/missing.bin?action=get")

    assert r.status_code == 404
    assert r.text == "Object Not Found"


@pytest.mark.parametrize("seed", [True, False])
def test_delete_always_returns_no_content(client, storage, seed):
    if seed:
        storage.put_object("old.log", b"bye")

    r = client.delete("/old.log?action=delete")

    assert r.status_code == 204
    assert r.content == b""
    assert "old.log" not in storage.objects
    assert storage.calls[-1] == ("delete", "old.log")


def test_delete_then_get_is_not_found(client, storage):
    storage.put_object("tmp.bin", b"x")

    client.delete("/tmp.bin?action=delete")
    r = client.get("/tmp.bin?action=get")

    assert r.status_code == 404
