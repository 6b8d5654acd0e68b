"""Storage client protocol and data types.

This module defines the asynchronous interface the gateway expects from an
object storage backend: starting, resuming, completing and aborting
multipart uploads, plus streaming reads and deletes of whole objects.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, MutableMapping
from dataclasses import dataclass, fields
from typing import Any, Protocol, Sequence


class StorageError(RuntimeError):
    """Raised when object storage operations fail.

    ``code`` carries the backend's own error code (for example ``NoSuchUpload``)
    when one is available.
    """

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
        }


@dataclass(frozen=True, slots=True)
class UploadedPart:
    """A part accepted by the backend, as referenced when completing an upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class HttpMetadata:
    """HTTP headers stored alongside an object and replayed on reads."""

    content_type: str | None = None
    content_language: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    cache_control: str | None = None
    expires: str | None = None

    HEADER_NAMES = {
        "content_type": "content-type",
        "content_language": "content-language",
        "content_disposition": "content-disposition",
        "content_encoding": "content-encoding",
        "cache_control": "cache-control",
        "expires": "expires",
    }

    def write_headers(self, headers: MutableMapping[str, str]) -> None:
        """Copy every present field onto ``headers``."""
        for attr in fields(self):
            value = getattr(self, attr.name)
            if value:
                headers[self.HEADER_NAMES[attr.name]] = value


@dataclass(frozen=True, slots=True)
class StoredObject:
    """An object held by the backend.

    ``body`` is only populated by reads; completing an upload returns the
    object without a body. ``release`` frees whatever backs ``body`` and may be
    called whether or not the body was consumed.
    """

    key: str
    etag: str
    size: int | None = None
    http_metadata: HttpMetadata = HttpMetadata()
    body: AsyncIterator[bytes] | None = None
    release: Callable[[], None] | None = None

    @property
    def http_etag(self) -> str:
        """The etag quoted the way it travels in HTTP headers."""
        return f'"{self.etag}"'

    def close(self) -> None:
        if self.release is not None:
            self.release()


class MultipartUpload(Protocol):
    """Handle on a multipart upload session owned by the backend."""

    key: str
    upload_id: str

    async def upload_part(
        self, part_number: int, body: AsyncIterator[bytes]
    ) -> UploadedPart:
        """Upload one part.

        Args:
            part_number: Part number as supplied by the caller.
            body: Stream of the part's bytes.

        Returns:
            UploadedPart with the etag assigned by the backend.

        Raises:
            StorageError: If the backend rejects the part.
        """
        ...

    async def complete(self, parts: Sequence[UploadedPart]) -> StoredObject:
        """Assemble the uploaded parts into the final object.

        Raises:
            StorageError: If the session is gone or the parts do not match.
        """
        ...

    async def abort(self) -> None:
        """Abort the session and discard its parts.

        Raises:
            StorageError: If the backend refuses to abort.
        """
        ...


class StorageClient(Protocol):
    """Protocol defining the interface for object storage backends."""

    async def create_multipart_upload(self, key: str) -> MultipartUpload:
        """Start a multipart upload session for ``key``.

        Raises:
            StorageError: If the operation fails.
        """
        ...

    def resume_multipart_upload(self, key: str, upload_id: str) -> MultipartUpload:
        """Return a handle on an existing session without contacting the backend."""
        ...

    async def get(self, key: str) -> StoredObject | None:
        """Open ``key`` for streaming, or return None if it does not exist.

        Raises:
            StorageError: If the read fails for any other reason.
        """
        ...

    async def delete(self, key: str) -> None:
        """Delete ``key``. Deleting a missing key is not an error.

        Raises:
            StorageError: If the operation fails.
        """
        ...
