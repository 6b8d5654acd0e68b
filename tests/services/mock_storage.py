"""In-memory storage backend for testing the gateway."""

from __future__ import annotations

import hashlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Sequence

from mpu_gateway.infra.storage.client import (
    HttpMetadata,
    StorageError,
    StoredObject,
    UploadedPart,
)


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


async def _chunks(data: bytes, size: int) -> AsyncIterator[bytes]:
    for offset in range(0, len(data), size):
        yield data[offset : offset + size]


@dataclass
class MockMultipartUpload:
    storage: "MockStorageClient"
    key: str
    upload_id: str

    def _session(self) -> dict[str, Any]:
        session = self.storage.uploads.get(self.upload_id)
        if session is None or session["key"] != self.key:
            raise StorageError(
                "The specified multipart upload does not exist.", code="NoSuchUpload"
            )
        return session

    async def upload_part(
        self, part_number: int, body: AsyncIterator[bytes]
    ) -> UploadedPart:
        self.storage.record("upload_part", self.key, self.upload_id, part_number)
        self.storage.raise_if_failing("upload_part")
        session = self._session()
        data = b"".join([chunk async for chunk in body])
        etag = _md5(data)
        session["parts"][part_number] = (etag, data)
        return UploadedPart(part_number=part_number, etag=etag)

    async def complete(self, parts: Sequence[UploadedPart]) -> StoredObject:
        self.storage.record("complete", self.key, self.upload_id, list(parts))
        self.storage.raise_if_failing("complete")
        session = self._session()
        if not parts:
            raise StorageError(
                "You must specify at least one part.", code="MalformedXML"
            )
        chunks: list[bytes] = []
        digests = b""
        for part in parts:
            stored = session["parts"].get(part.part_number)
            if stored is None or stored[0] != part.etag:
                raise StorageError(
                    f"Part {part.part_number} could not be found.", code="InvalidPart"
                )
            chunks.append(stored[1])
            digests += bytes.fromhex(stored[0])

        etag = f"{_md5(digests)}-{len(parts)}"
        self.storage.objects[self.key] = {
            "data": b"".join(chunks),
            "etag": etag,
            "http_metadata": session["http_metadata"],
        }
        del self.storage.uploads[self.upload_id]
        return StoredObject(key=self.key, etag=etag)

    async def abort(self) -> None:
        self.storage.record("abort", self.key, self.upload_id)
        self.storage.raise_if_failing("abort")
        self._session()
        del self.storage.uploads[self.upload_id]


@dataclass
class MockStorageClient:
    """In-memory mock of StorageClient for testing."""

    uploads: dict[str, dict[str, Any]] = field(default_factory=dict)
    objects: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[Any, ...]] = field(default_factory=list)
    failures: dict[str, Exception] = field(default_factory=dict)
    chunk_size: int = 4
    _upload_counter: int = field(default=0)

    def record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))

    def fail(self, operation: str, exc: Exception) -> None:
        """Test helper: make the next calls to ``operation`` raise ``exc``."""
        self.failures[operation] = exc

    def raise_if_failing(self, operation: str) -> None:
        exc = self.failures.get(operation)
        if exc is not None:
            raise exc

    def operations(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def create_multipart_upload(self, key: str) -> MockMultipartUpload:
        self.record("create", key)
        self.raise_if_failing("create")
        self._upload_counter += 1
        upload_id = f"mock-upload-{self._upload_counter}"
        self.uploads[upload_id] = {
            "key": key,
            "parts": {},
            "http_metadata": HttpMetadata(),
        }
        return MockMultipartUpload(self, key=key, upload_id=upload_id)

    def resume_multipart_upload(self, key: str, upload_id: str) -> MockMultipartUpload:
        self.record("resume", key, upload_id)
        return MockMultipartUpload(self, key=key, upload_id=upload_id)

    async def get(self, key: str) -> StoredObject | None:
        self.record("get", key)
        self.raise_if_failing("get")
        obj = self.objects.get(key)
        if obj is None:
            return None
        return StoredObject(
            key=key,
            etag=obj["etag"],
            size=len(obj["data"]),
            http_metadata=obj["http_metadata"],
            body=_chunks(obj["data"], self.chunk_size),
            release=lambda: self.record("release", key),
        )

    async def delete(self, key: str) -> None:
        self.record("delete", key)
        self.raise_if_failing("delete")
        self.objects.pop(key, None)

    def put_object(
        self,
        key: str,
        data: bytes,
        *,
        http_metadata: HttpMetadata | None = None,
    ) -> str:
        """Test helper to seed an object directly."""
        etag = _md5(data)
        self.objects[key] = {
            "data": data,
            "etag": etag,
            "http_metadata": http_metadata or HttpMetadata(),
        }
        return etag
