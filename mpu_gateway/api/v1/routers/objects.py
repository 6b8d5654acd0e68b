"""Object gateway router.

Every verb on ``/{key}`` picks its storage operation from the ``action``
query parameter:

- ``POST ?action=mpu-create`` / ``POST ?action=mpu-complete&uploadId=``
- ``GET ?action=get``
- ``PUT ?action=mpu-uploadpart&uploadId=&partNumber=``
- ``DELETE ?action=mpu-abort&uploadId=`` / ``DELETE ?action=delete``
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.types import Receive, Scope, Send

from mpu_gateway.api.v1.deps import get_object_service
from mpu_gateway.api.v1.schemas.objects import (
    MultipartComplete,
    MultipartCreateOut,
    UploadedPartPayload,
)
from mpu_gateway.infra.storage.client import StoredObject, UploadedPart
from mpu_gateway.services import ObjectGatewayService, Rejected

router = APIRouter()

ALLOWED_METHODS = "PUT, POST, GET, DELETE"

ACTIONS_BY_METHOD: dict[str, tuple[str, ...]] = {
    "POST": ("mpu-create", "mpu-complete"),
    "GET": ("get",),
    "PUT": ("mpu-uploadpart",),
    "DELETE": ("mpu-abort", "delete"),
}
KNOWN_ACTIONS = frozenset(
    action for actions in ACTIONS_BY_METHOD.values() for action in actions
)


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def _resolve_action(method: str, action: str | None) -> str:
    if not action:
        raise _bad_request("Missing action query parameter")
    if action not in ACTIONS_BY_METHOD[method]:
        raise _bad_request(f"Unknown action {action} for {method}")
    return action


def _has_body(request: Request) -> bool:
    length = request.headers.get("content-length")
    if length is not None:
        return length.strip() not in ("", "0")
    return "transfer-encoding" in request.headers


def _text_rejection(result: Rejected) -> PlainTextResponse:
    return PlainTextResponse(result.message, status_code=result.status_code)


def _json_rejection(result: Rejected) -> JSONResponse:
    content = (
        result.error.to_dict() if result.error is not None else {"message": result.message}
    )
    return JSONResponse(content, status_code=result.status_code)


class ObjectStreamResponse(StreamingResponse):
    """Streams a stored object and releases its backend stream afterwards.

    The release also runs when the client disconnects before the body is
    read, which a background task would miss.
    """

    def __init__(self, stored: StoredObject, headers: dict[str, str]) -> None:
        super().__init__(stored.body, headers=headers)
        self.stored = stored

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await run_in_threadpool(self.stored.close)


async def _read_complete_body(request: Request) -> MultipartComplete:
    try:
        raw = await request.json()
    except ValueError as exc:
        raise _bad_request("Missing or incomplete body") from exc
    try:
        return MultipartComplete.model_validate(raw)
    except ValidationError as exc:
        raise _bad_request("Missing or incomplete body") from exc


@router.post(
    "/{key}",
    summary="Create or complete a multipart upload",
    description="`action=mpu-create` starts an upload (request headers are not stored on the object); `action=mpu-complete` assembles its parts.",
)
async def post_object(
    key: str,
    request: Request,
    action: str | None = Query(default=None),
    upload_id: str | None = Query(default=None, alias="uploadId"),
    service: ObjectGatewayService = Depends(get_object_service),
) -> Response:
    action = _resolve_action("POST", action)

    if action == "mpu-create":
        result = await service.create_upload(key)
        if isinstance(result, Rejected):
            return _text_rejection(result)
        upload = result.value
        out = MultipartCreateOut(key=upload.key, upload_id=upload.upload_id)
        return JSONResponse(out.model_dump(by_alias=True))

    if not upload_id:
        raise _bad_request("Missing uploadId")
    payload = await _read_complete_body(request)
    parts = [UploadedPart(part_number=p.part_number, etag=p.etag) for p in payload.parts]

    result = await service.complete_upload(key, upload_id, parts)
    if isinstance(result, Rejected):
        return _json_rejection(result)
    return Response(status_code=status.HTTP_200_OK, headers={"etag": result.value.http_etag})


@router.get(
    "/{key}",
    summary="Download an object",
    description="`action=get` streams the object body with its stored HTTP metadata.",
)
async def get_object(
    key: str,
    action: str | None = Query(default=None),
    service: ObjectGatewayService = Depends(get_object_service),
) -> Response:
    _resolve_action("GET", action)

    result = await service.get_object(key)
    if isinstance(result, Rejected):
        return _text_rejection(result)

    stored = result.value
    headers: dict[str, str] = {}
    stored.http_metadata.write_headers(headers)
    headers["etag"] = stored.http_etag
    if stored.size is not None:
        headers["content-length"] = str(stored.size)
    return ObjectStreamResponse(stored, headers)


@router.put(
    "/{key}",
    summary="Upload a part",
    description="`action=mpu-uploadpart` streams the request body into one part of an upload.",
)
async def put_object(
    key: str,
    request: Request,
    action: str | None = Query(default=None),
    upload_id: str | None = Query(default=None, alias="uploadId"),
    part_number: str | None = Query(default=None, alias="partNumber"),
    service: ObjectGatewayService = Depends(get_object_service),
) -> Response:
    _resolve_action("PUT", action)

    if not part_number or not upload_id:
        raise _bad_request("Missing partNumber or uploadId")
    try:
        number = int(part_number, 10)
    except ValueError as exc:
        raise _bad_request("Invalid partNumber") from exc
    if not _has_body(request):
        raise _bad_request("Missing request body")

    result = await service.upload_part(key, upload_id, number, request.stream())
    if isinstance(result, Rejected):
        return _text_rejection(result)
    part = result.value
    out = UploadedPartPayload(part_number=part.part_number, etag=part.etag)
    return JSONResponse(out.model_dump(by_alias=True))


@router.delete(
    "/{key}",
    summary="Abort an upload or delete an object",
    description="`action=mpu-abort` discards an upload; `action=delete` removes the object.",
)
async def delete_object(
    key: str,
    action: str | None = Query(default=None),
    upload_id: str | None = Query(default=None, alias="uploadId"),
    service: ObjectGatewayService = Depends(get_object_service),
) -> Response:
    action = _resolve_action("DELETE", action)

    if action == "mpu-abort":
        if not upload_id:
            raise _bad_request("Missing uploadId")
        result = await service.abort_upload(key, upload_id)
    else:
        result = await service.delete_object(key)

    if isinstance(result, Rejected):
        return _text_rejection(result)
    # 204 must not carry content, so the key or uploadId is not echoed
    return Response(status_code=status.HTTP_204_NO_CONTENT)
