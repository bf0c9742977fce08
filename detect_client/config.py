"""Configuration for the detection client."""

from __future__ import annotations

import os

DETECT_SERVICE_URL: str = os.getenv("DETECT_SERVICE_URL", "http://localhost:8000")
DETECT_CLIENT_TOKEN: str | None = os.getenv("DETECT_CLIENT_TOKEN")
DETECT_CLIENT_MIN_INTERVAL_SECONDS: float = float(
    os.getenv("DETECT_CLIENT_MIN_INTERVAL_SECONDS", "2.0")
)
DETECT_CLIENT_TIMEOUT_SECONDS: float = float(os.getenv("DETECT_CLIENT_TIMEOUT_SECONDS", "60"))
DETECT_CLIENT_MAX_IMAGE_BYTES: int = int(
    os.getenv("DETECT_CLIENT_MAX_IMAGE_BYTES", str(10 * 1024 * 1024))
)
