from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

SUPPORTED_STORAGE_BACKENDS: tuple[str, ...] = ("s3",)
SUPPORTED_ADDRESSING_STYLES: tuple[str, ...] = ("path", "virtual", "auto")


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class Settings:
    STORAGE_BACKEND: str = "s3"
    S3_BUCKET: str | None = None
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    STORAGE_STREAM_CHUNK_BYTES: int = 1024 * 1024
    STORAGE_PART_SPOOL_BYTES: int = 8 * 1024 * 1024
    ENABLE_METRICS: bool = True
    CORS_ENABLED: bool = False
    CORS_ORIGINS: list[str] = field(default_factory=list)
    TRACE_HTTP: bool = False
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        backend = (self.STORAGE_BACKEND or "").strip().lower()
        if backend not in SUPPORTED_STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {', '.join(SUPPORTED_STORAGE_BACKENDS)}"
                f" (got {self.STORAGE_BACKEND!r})."
            )
        self.STORAGE_BACKEND = backend

        style = (self.S3_ADDRESSING_STYLE or "path").strip().lower()
        if style not in SUPPORTED_ADDRESSING_STYLES:
            raise ValueError(
                f"S3_ADDRESSING_STYLE must be one of {', '.join(SUPPORTED_ADDRESSING_STYLES)}."
            )
        self.S3_ADDRESSING_STYLE = style

        if self.STORAGE_STREAM_CHUNK_BYTES <= 0:
            raise ValueError("STORAGE_STREAM_CHUNK_BYTES must be positive.")
        if self.STORAGE_PART_SPOOL_BYTES <= 0:
            raise ValueError("STORAGE_PART_SPOOL_BYTES must be positive.")

        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").strip().upper()

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        return cls(
            STORAGE_BACKEND=os.environ.get("STORAGE_BACKEND", cls.STORAGE_BACKEND),
            S3_BUCKET=_as_optional(os.environ.get("S3_BUCKET")),
            S3_ENDPOINT_URL=_as_optional(os.environ.get("S3_ENDPOINT_URL")),
            S3_REGION=os.environ.get("S3_REGION", cls.S3_REGION),
            S3_ACCESS_KEY_ID=_as_optional(os.environ.get("S3_ACCESS_KEY_ID")),
            S3_SECRET_ACCESS_KEY=_as_optional(os.environ.get("S3_SECRET_ACCESS_KEY")),
            S3_USE_SSL=_as_bool(os.environ.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=os.environ.get(
                "S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE
            ),
            STORAGE_STREAM_CHUNK_BYTES=int(
                os.environ.get(
                    "STORAGE_STREAM_CHUNK_BYTES", cls.STORAGE_STREAM_CHUNK_BYTES
                )
            ),
            STORAGE_PART_SPOOL_BYTES=int(
                os.environ.get("STORAGE_PART_SPOOL_BYTES", cls.STORAGE_PART_SPOOL_BYTES)
            ),
            ENABLE_METRICS=_as_bool(
                os.environ.get("ENABLE_METRICS"), cls.ENABLE_METRICS
            ),
            CORS_ENABLED=_as_bool(os.environ.get("CORS_ENABLED"), cls.CORS_ENABLED),
            CORS_ORIGINS=_as_list(os.environ.get("CORS_ORIGINS")),
            TRACE_HTTP=_as_bool(os.environ.get("TRACE_HTTP"), cls.TRACE_HTTP),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
