"""Environment-variable-driven configuration for the text detection service.

All config comes from env vars. Vision backend settings are grouped in a
frozen ``VisionConfig`` that is built once at startup and handed to the
Vision client explicitly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# -- Detection ----------------------------------------------------------------
DETECT_MAX_IMAGE_BYTES: int = int(os.getenv("DETECT_MAX_IMAGE_BYTES", str(10 * 1024 * 1024)))
DETECT_DEFAULT_CONFIDENCE: float = float(os.getenv("DETECT_DEFAULT_CONFIDENCE", "0.95"))

# Base64 inflates by 4/3, so the raw body cap sits above the decoded image cap.
DETECT_MAX_BODY_BYTES: int = int(os.getenv("DETECT_MAX_BODY_BYTES", str(20 * 1024 * 1024)))

# -- Auth ---------------------------------------------------------------------
DETECT_SHARED_TOKEN: str | None = os.getenv("DETECT_SHARED_TOKEN")
DETECT_OIDC_AUDIENCE: str | None = os.getenv("DETECT_OIDC_AUDIENCE")
DETECT_ALLOWED_ISSUERS: set[str] = set(
    _env_csv("DETECT_ALLOWED_ISSUERS", "https://accounts.google.com,accounts.google.com")
)
DETECT_ALLOW_ANONYMOUS: bool = _env_bool("DETECT_ALLOW_ANONYMOUS", True)

# -- Rate limiting ------------------------------------------------------------
DETECT_RATE_LIMIT_DEFAULT: str = os.getenv("DETECT_RATE_LIMIT_DEFAULT", "60/minute")
DETECT_RATE_LIMIT_DETECT: str = os.getenv("DETECT_RATE_LIMIT_DETECT", "10/minute")
DETECT_RATE_LIMIT_CREATE: str = os.getenv("DETECT_RATE_LIMIT_CREATE", "30/minute")

# -- CORS ---------------------------------------------------------------------
DETECT_CORS_ALLOW_ORIGINS: list[str] = _env_csv(
    "DETECT_CORS_ALLOW_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
)
DETECT_CORS_ALLOW_METHODS: list[str] = _env_csv(
    "DETECT_CORS_ALLOW_METHODS",
    "GET,POST,OPTIONS",
)
DETECT_CORS_ALLOW_HEADERS: list[str] = _env_csv(
    "DETECT_CORS_ALLOW_HEADERS",
    "Authorization,Content-Type,X-Request-Id",
)
DETECT_CORS_ALLOW_CREDENTIALS: bool = _env_bool("DETECT_CORS_ALLOW_CREDENTIALS", False)

# -- Logging ------------------------------------------------------------------
DETECT_LOG_LEVEL: str = os.getenv("DETECT_LOG_LEVEL", "INFO")

# -- Server -------------------------------------------------------------------
IS_CLOUD_RUN: bool = bool(os.getenv("K_SERVICE"))


@dataclass(frozen=True)
class VisionConfig:
    api_key: str | None
    endpoint: str
    max_results: int
    timeout_s: float

    @property
    def annotate_url(self) -> str:
        return f"{self.endpoint.rstrip('/')}/v1/images:annotate"

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> VisionConfig:
        api_key = os.getenv("GCP_VISION_API_KEY")
        return cls(
            api_key=api_key.strip() if api_key and api_key.strip() else None,
            endpoint=os.getenv("DETECT_VISION_ENDPOINT", "https://vision.googleapis.com"),
            max_results=int(os.getenv("DETECT_VISION_MAX_RESULTS", "50")),
            timeout_s=float(os.getenv("DETECT_VISION_TIMEOUT_SECONDS", "30")),
        )

    def validate(self) -> None:
        if self.max_results < 1:
            raise ValueError("DETECT_VISION_MAX_RESULTS must be >= 1")
        if self.timeout_s <= 0:
            raise ValueError("DETECT_VISION_TIMEOUT_SECONDS must be > 0")
