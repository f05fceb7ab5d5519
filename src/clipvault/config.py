from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from clipvault.utils.ids import Kind


def _to_bool(value: Optional[str], default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _to_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    socket_timeout: float = 10.0

    @classmethod
    def from_env(cls, socket_timeout: float = 10.0) -> "RedisConfig":
        uri = os.getenv("REDIS_URI")
        if uri:
            return cls.from_uri(uri, socket_timeout=socket_timeout)

        host = os.getenv("REDIS_HOST", cls.host)
        port = _to_int("REDIS_PORT", cls.port)
        db = _to_int("REDIS_DB", cls.db)
        password = os.getenv("REDIS_PASSWORD") or None
        return cls(host=host, port=port, db=db, password=password, socket_timeout=socket_timeout)

    @classmethod
    def from_uri(cls, uri: str, socket_timeout: float = 10.0) -> "RedisConfig":
        parsed = urlparse(uri)
        if parsed.scheme not in {"redis", "rediss"}:
            raise ValueError(f"Unsupported Redis URI scheme: {parsed.scheme!r}")

        host = parsed.hostname or cls.host
        port = parsed.port or cls.port
        password = parsed.password or None
        db_fragment = parsed.path.lstrip("/")
        db = int(db_fragment) if db_fragment else cls.db
        return cls(host=host, port=port, db=db, password=password, socket_timeout=socket_timeout)


@dataclass(frozen=True)
class Settings:
    admin_key: str = ""
    screenshot_limit: int = 50
    ocr_limit: int = 100
    upstream_timeout: float = 10.0
    hydration_workers: int = 8
    search_context: int = 50
    export_min_confidence: float = 0.5
    max_image_bytes: int = 10_000_000
    extract_text_default: bool = True
    blob_backend: str = "memory"
    public_url: str = "memory://clipvault"
    vision_api_key: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"
    redis: RedisConfig = field(default_factory=RedisConfig)

    @classmethod
    def from_env(cls, *, env_path: Optional[Path] = None) -> "Settings":
        load_dotenv(dotenv_path=env_path)

        timeout = _to_float("CLIPVAULT_UPSTREAM_TIMEOUT", cls.upstream_timeout)
        if timeout <= 0:
            raise ValueError("CLIPVAULT_UPSTREAM_TIMEOUT must be positive")

        backend = os.getenv("CLIPVAULT_BLOB_BACKEND", cls.blob_backend).strip().lower()
        if backend not in {"memory", "redis"}:
            raise ValueError(f"Unsupported CLIPVAULT_BLOB_BACKEND: {backend!r}")

        return cls(
            admin_key=os.getenv("CLIPVAULT_ADMIN_KEY", cls.admin_key),
            screenshot_limit=_to_int("CLIPVAULT_SCREENSHOT_LIMIT", cls.screenshot_limit, minimum=1),
            ocr_limit=_to_int("CLIPVAULT_OCR_LIMIT", cls.ocr_limit, minimum=1),
            upstream_timeout=timeout,
            hydration_workers=_to_int("CLIPVAULT_HYDRATION_WORKERS", cls.hydration_workers, minimum=1),
            search_context=_to_int("CLIPVAULT_SEARCH_CONTEXT", cls.search_context),
            export_min_confidence=_to_float("CLIPVAULT_EXPORT_MIN_CONFIDENCE", cls.export_min_confidence),
            max_image_bytes=_to_int("CLIPVAULT_MAX_IMAGE_BYTES", cls.max_image_bytes, minimum=1),
            extract_text_default=_to_bool(os.getenv("CLIPVAULT_EXTRACT_TEXT"), default=True),
            blob_backend=backend,
            public_url=os.getenv("CLIPVAULT_PUBLIC_URL", cls.public_url).rstrip("/"),
            vision_api_key=os.getenv("GOOGLE_VISION_API_KEY") or None,
            host=os.getenv("CLIPVAULT_HOST", cls.host),
            port=_to_int("CLIPVAULT_PORT", cls.port),
            log_level=os.getenv("CLIPVAULT_LOG_LEVEL", cls.log_level).upper(),
            redis=RedisConfig.from_env(socket_timeout=timeout),
        )

    def limit_for(self, kind) -> int:
        if Kind(kind) == Kind.OCR:
            return self.ocr_limit
        return self.screenshot_limit
