import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mpu_gateway.api.v1.routers.objects import (
    ALLOWED_METHODS,
    KNOWN_ACTIONS,
)
from mpu_gateway.api.v1.routers.objects import router as objects_router
from mpu_gateway.common.config import Settings, get_settings
from mpu_gateway.common.logging import STARTUP_LOGGER, setup_logging
from mpu_gateway.infra.observability.metrics import metrics_endpoint
from mpu_gateway.infra.observability.middleware import MetricsMiddleware
from mpu_gateway.infra.storage import StorageClient, build_storage_client

ERROR_CODE_BY_STATUS = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    411: "length_required",
    413: "payload_too_large",
    415: "unsupported_media_type",
    500: "internal_error",
    502: "bad_gateway",
    503: "service_unavailable",
}


def _resolve_error_code(status_code: int) -> str:
    if status_code == 422:
        return "validation_error"
    return ERROR_CODE_BY_STATUS.get(status_code, "unknown_error")


def _problem(
    request: Request, status_code: int, title: str, detail, headers=None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        media_type="application/problem+json",
        headers=headers,
        content={
            "type": "about:blank",
            "title": title,
            "status": status_code,
            "detail": detail,
            "error_code": _resolve_error_code(status_code),
            "instance": str(request.url),
            "request_id": request.headers.get("X-Request-Id"),
        },
    )


def create_app(
    settings: Settings | None = None, storage: StorageClient | None = None
) -> FastAPI:
    """Build the gateway application.

    ``storage`` is the backend every route talks to. When omitted, one is
    built from ``settings`` during startup.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)
    app = FastAPI(
        title="Multipart Upload Gateway",
        version="v1.0",
        description="REST facade over an object store's multipart-upload API",
    )
    app.state.settings = settings
    app.state.storage = storage

    if settings.CORS_ENABLED:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS or ["*"],
            allow_credentials=True,
            allow_methods=[m.strip() for m in ALLOWED_METHODS.split(",")],
            allow_headers=["*"],
            expose_headers=["etag"],
        )

    if settings.ENABLE_METRICS:
        app.add_middleware(MetricsMiddleware, known_actions=KNOWN_ACTIONS)
        app.add_api_route("/metrics", metrics_endpoint, include_in_schema=False)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # Registered last so /health and /metrics win over single-segment keys
    app.include_router(objects_router, tags=["objects"])

    @app.on_event("startup")
    def on_startup() -> None:
        startup_logger = logging.getLogger(STARTUP_LOGGER)
        if app.state.storage is not None:
            startup_logger.info(
                "Using injected storage backend. [event=storage_injected] (%s)",
                type(app.state.storage).__name__,
            )
            return
        try:
            app.state.storage = build_storage_client(settings)
        except Exception as exc:
            startup_logger.error(
                "Could not build the storage backend, check STORAGE_BACKEND and S3_* settings."
                " [event=storage_init_failed] (backend=%s, bucket=%s, error=%s)",
                settings.STORAGE_BACKEND,
                settings.S3_BUCKET,
                exc,
            )
            raise
        startup_logger.info(
            "Storage backend ready. [event=storage_ready] (backend=%s, bucket=%s, endpoint=%s)",
            settings.STORAGE_BACKEND,
            settings.S3_BUCKET,
            settings.S3_ENDPOINT_URL or "<default>",
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger = logging.getLogger("http")
        logger.log(
            logging.WARNING if exc.status_code < 500 else logging.ERROR,
            "http_exception status=%s detail=%s method=%s path=%s action=%s request_id=%s",
            exc.status_code,
            exc.detail,
            request.method,
            request.url.path,
            request.query_params.get("action"),
            request.headers.get("X-Request-Id"),
            extra={
                "extra": {
                    "status": exc.status_code,
                    "detail": exc.detail,
                    "method": request.method,
                    "route": request.url.path,
                    "action": request.query_params.get("action"),
                    "request_id": request.headers.get("X-Request-Id"),
                }
            },
        )
        if exc.status_code == 405:
            return PlainTextResponse(
                "Method Not Allowed",
                status_code=405,
                headers={"Allow": ALLOWED_METHODS},
            )
        return _problem(
            request,
            exc.status_code,
            "HTTP Error",
            exc.detail,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return _problem(
            request, 422, "Validation Error", jsonable_encoder(exc.errors())
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logging.getLogger("http").error(
            "unhandled_exception method=%s path=%s action=%s error=%r",
            request.method,
            request.url.path,
            request.query_params.get("action"),
            exc,
            exc_info=exc,
        )
        return _problem(request, 500, "Internal Server Error", "Internal Server Error")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("mpu_gateway.main:app", host="0.0.0.0", port=8000)
