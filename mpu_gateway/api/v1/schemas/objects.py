"""Pydantic schemas for the object gateway endpoints.

Wire names are camelCase (``uploadId``, ``partNumber``) to stay compatible
with existing multipart clients; Python attributes are snake_case.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MultipartCreateOut(BaseModel):
    """Response body for ``mpu-create``."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    upload_id: str = Field(alias="uploadId")


class UploadedPartPayload(BaseModel):
    """A part reference, as returned by ``mpu-uploadpart`` and sent back to ``mpu-complete``."""

    model_config = ConfigDict(populate_by_name=True)

    part_number: int = Field(alias="partNumber")
    etag: str


class MultipartComplete(BaseModel):
    """Request body for ``mpu-complete``."""

    parts: list[UploadedPartPayload]
