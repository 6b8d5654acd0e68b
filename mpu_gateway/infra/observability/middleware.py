import json
import logging
import re
import time
import uuid
from collections.abc import Iterable
from typing import Any

from fastapi import Request
from starlette.concurrency import iterate_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from mpu_gateway.common.config import get_settings
from mpu_gateway.infra.observability.metrics import LATENCY, REQUESTS

TRACE_MAX_CHARS = 2048
# Bodies above this size, or without a declared length, are never buffered for tracing
TRACE_MAX_BODY_BYTES = 64 * 1024
TRACEABLE_MEDIA_TYPES = ("application/json", "application/problem+json", "text/plain")

_MASK_PATTERNS = [
    re.compile(
        r"(?i)(token|secret|api_key|x-api-key|password|authorization)\s*[:=]\s*[^\s]+"
    ),
    re.compile(r"(?i)authorization\s*:\s*bearer\s+[A-Za-z0-9\-_.]+"),
]


def _traceable(headers: Any) -> bool:
    media_type = (headers.get("content-type") or "").split(";", 1)[0].strip().lower()
    if media_type not in TRACEABLE_MEDIA_TYPES:
        return False
    length = headers.get("content-length")
    if length is None or not length.isdigit():
        return False
    return 0 < int(length) <= TRACE_MAX_BODY_BYTES


class MetricsMiddleware(BaseHTTPMiddleware):
    SENSITIVE_KEYS = {
        "password",
        "passwd",
        "pwd",
        "secret",
        "token",
        "access_token",
        "refresh_token",
        "api_key",
        "x-api-key",
        "authorization",
    }

    def __init__(self, app: ASGIApp, known_actions: Iterable[str] = ()) -> None:
        super().__init__(app)
        self.known_actions = frozenset(known_actions)

    def _action_label(self, request: Request) -> str:
        action = request.query_params.get("action")
        if not action:
            return "none"
        return action if action in self.known_actions else "unknown"

    def _mask_mapping(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            masked: dict[str, Any] = {}
            for k, v in obj.items():
                if isinstance(k, str) and k.lower() in self.SENSITIVE_KEYS:
                    masked[k] = "***"
                else:
                    masked[k] = self._mask_mapping(v)
            return masked
        if isinstance(obj, list):
            return [self._mask_mapping(x) for x in obj]
        return obj

    def _mask_text(self, text: str) -> str:
        masked = text
        for pattern in _MASK_PATTERNS:
            masked = pattern.sub(
                lambda m: m.group(0).split(":")[0].split("=")[0] + ": ***",
                masked,
            )
        return masked

    def _render_body(self, raw: bytes) -> str:
        decoded = raw.decode("utf-8", errors="replace")
        try:
            parsed = json.loads(decoded)
        except ValueError:
            rendered = self._mask_text(decoded)
        else:
            rendered = json.dumps(self._mask_mapping(parsed), ensure_ascii=False)
        if len(rendered) > TRACE_MAX_CHARS:
            rendered = rendered[:TRACE_MAX_CHARS] + "...<truncated>"
        return rendered

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        client_ip = request.headers.get("X-Forwarded-For")
        if client_ip:
            client_ip = client_ip.split(",")[0].strip()
        elif request.client:
            client_ip = request.client.host
        else:
            client_ip = None
        action = self._action_label(request)
        logger = logging.getLogger("http")

        trace_http = get_settings().TRACE_HTTP
        request_body: str | None = None
        if trace_http and _traceable(request.headers):
            raw_body = await request.body()
            request_body = self._render_body(raw_body)

            async def receive():
                return {
                    "type": "http.request",
                    "body": raw_body,
                    "more_body": False,
                }

            request._receive = receive

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = time.perf_counter() - start
            logger.exception(
                "request_error method=%s route=%s action=%s status=%s duration_ms=%.3f "
                "request_id=%s client_ip=%s query=%s",
                request.method,
                request.url.path,
                action,
                500,
                round(elapsed * 1000, 3),
                request_id,
                client_ip or "-",
                request.url.query or "-",
                extra={
                    "extra": {
                        "method": request.method,
                        "route": request.url.path,
                        "action": action,
                        "query": request.url.query,
                        "status": 500,
                        "duration_ms": round(elapsed * 1000, 3),
                        "request_id": request_id,
                        "client_ip": client_ip,
                        "exception": repr(exc),
                    }
                },
            )
            raise

        elapsed = time.perf_counter() - start
        status_code = response.status_code

        route_template = request.scope.get("route", None)
        if route_template and hasattr(route_template, "path"):
            route = route_template.path
        else:
            route = request.url.path

        REQUESTS.labels(request.method, route, action, str(status_code)).inc()
        LATENCY.labels(request.method, route).observe(elapsed)

        if "X-Request-Id" not in response.headers:
            response.headers["X-Request-Id"] = request_id

        response_body: str | None = None
        if trace_http and _traceable(response.headers):
            response_body_bytes = b""
            async for chunk in response.body_iterator:
                response_body_bytes += chunk
            response.body_iterator = iterate_in_threadpool(iter([response_body_bytes]))
            response_body = self._render_body(response_body_bytes)

        level = logging.INFO
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING

        duration_ms = round(elapsed * 1000, 3)
        extra_payload = {
            "method": request.method,
            "route": route,
            "action": action,
            "query": request.url.query,
            "status": status_code,
            "duration_ms": duration_ms,
            "request_id": request_id,
            "client_ip": client_ip,
            "user_agent": request.headers.get("User-Agent"),
        }
        if trace_http:
            extra_payload["request_body"] = request_body
            extra_payload["response_body"] = response_body

        logger.log(
            level,
            "request method=%s route=%s action=%s status=%s duration_ms=%.3f "
            "request_id=%s client_ip=%s query=%s user_agent=%s",
            request.method,
            route,
            action,
            status_code,
            duration_ms,
            request_id,
            client_ip or "-",
            request.url.query or "-",
            request.headers.get("User-Agent") or "-",
            extra={"extra": extra_payload},
        )
        return response
