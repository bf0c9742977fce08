"""HTTP client for the text detection service.

Mirrors what the upload page does: validate the image locally, create a job,
call detect-text, then read the detections back. Server errors are surfaced
as the server's ``error`` string, unchanged.
"""

from __future__ import annotations

import base64
import io
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from PIL import Image, UnidentifiedImageError

from detect_client.config import (
    DETECT_CLIENT_MAX_IMAGE_BYTES,
    DETECT_CLIENT_MIN_INTERVAL_SECONDS,
    DETECT_CLIENT_TIMEOUT_SECONDS,
    DETECT_CLIENT_TOKEN,
    DETECT_SERVICE_URL,
)
from detect_service.types import INLINE_IMAGE_REFERENCE

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES: dict[str, tuple[str, ...]] = {
    "image/jpeg": ("jpg", "jpeg"),
    "image/png": ("png",),
    "image/gif": ("gif",),
    "image/webp": ("webp",),
}

_FORMAT_MIME_TYPES = {"JPEG": "image/jpeg", "PNG": "image/png", "GIF": "image/gif", "WEBP": "image/webp"}


class ClientError(Exception):
    """Any failure reported to the user; ``str(exc)`` is the message shown."""


class ThrottledError(ClientError):
    pass


@dataclass(frozen=True)
class LocalImage:
    path: Path
    mime_type: str
    data: bytes

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass
class DetectionReport:
    job_id: str
    message: str
    detections: list[dict[str, Any]] = field(default_factory=list)

    @property
    def full_text(self) -> str:
        # First row holds the whole-image text.
        return self.detections[0]["text_content"] if self.detections else ""

    @property
    def elements(self) -> list[dict[str, Any]]:
        return self.detections[1:]


def image_format(data: bytes) -> str | None:
    """Pillow's format name for ``data`` (e.g. ``"PNG"``), or None if unreadable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.format
    except (UnidentifiedImageError, OSError):
        return None


def sniff_image_type(data: bytes) -> str | None:
    """MIME type of an allowed image format, judged from content."""
    return _FORMAT_MIME_TYPES.get(image_format(data) or "")


def load_image(path: str | Path, *, max_bytes: int = DETECT_CLIENT_MAX_IMAGE_BYTES) -> LocalImage:
    """Read and validate an image file.

    Checks, in order: the file is no larger than ``max_bytes``, Pillow can
    read it as an image, the format is one of the allowed ones, and the
    extension matches the content.
    """
    p = Path(path)
    if not p.is_file():
        raise ClientError(f"Image file not found: {p}")

    if p.stat().st_size > max_bytes:
        raise ClientError(f"File size must be less than {max_bytes // (1024 * 1024)}MB")

    data = p.read_bytes()
    fmt = image_format(data)
    if fmt is None:
        raise ClientError("Please select an image file")
    mime_type = _FORMAT_MIME_TYPES.get(fmt)
    if mime_type is None:
        raise ClientError("Only JPEG, PNG, GIF, and WebP images are allowed")

    ext = p.suffix.lower().lstrip(".")
    if ext not in ALLOWED_IMAGE_TYPES[mime_type]:
        raise ClientError("File extension does not match the file type")

    return LocalImage(path=p, mime_type=mime_type, data=data)


class RequestThrottle:
    """Reject calls arriving sooner than ``min_interval`` after the last accepted one."""

    def __init__(self, min_interval: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._min_interval = min_interval
        self._clock = clock
        self._last: float | None = None

    def check(self) -> None:
        now = self._clock()
        if self._last is not None and now - self._last < self._min_interval:
            raise ThrottledError("Please wait a moment before making another request")
        self._last = now


def _error_message(resp: httpx.Response, fallback: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return fallback


class DetectClient:
    def __init__(
        self,
        *,
        base_url: str = DETECT_SERVICE_URL,
        token: str | None = DETECT_CLIENT_TOKEN,
        min_interval: float = DETECT_CLIENT_MIN_INTERVAL_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._throttle = RequestThrottle(min_interval)
        self._http = http_client or httpx.AsyncClient(timeout=DETECT_CLIENT_TIMEOUT_SECONDS)
        self._owns_http = http_client is None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, *, json: dict[str, Any] | None = None,
                       fallback: str) -> dict[str, Any]:
        try:
            resp = await self._http.request(
                method, f"{self._base_url}{path}", headers=self._headers(), json=json
            )
        except httpx.HTTPError as e:
            raise ClientError(f"{fallback}: {type(e).__name__}") from e
        if not resp.is_success:
            raise ClientError(_error_message(resp, fallback))
        return resp.json()

    async def create_job(self, image_url: str = INLINE_IMAGE_REFERENCE) -> dict[str, Any]:
        return await self._request(
            "POST", "/v1/jobs", json={"imageUrl": image_url},
            fallback="Failed to create detection job",
        )

    async def detect_text(
        self,
        job_id: str,
        *,
        image_base64: str | None = None,
        image_url: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"jobId": job_id}
        if image_base64 is not None:
            payload["imageBase64"] = image_base64
        if image_url is not None:
            payload["imageUrl"] = image_url
        return await self._request(
            "POST", "/v1/detect-text", json=payload, fallback="Failed to detect text"
        )

    async def list_detections(self, job_id: str) -> list[dict[str, Any]]:
        body = await self._request(
            "GET", f"/v1/jobs/{job_id}/detections", fallback="Failed to load detections"
        )
        return list(body.get("detections", []))

    async def run(
        self,
        *,
        image: LocalImage | None = None,
        image_url: str | None = None,
    ) -> DetectionReport:
        """Create a job, run detection, and read the stored results back."""
        if (image is None) == (image_url is None):
            raise ClientError("Provide exactly one of a local image or an image URL")

        self._throttle.check()

        job = await self.create_job(image_url or INLINE_IMAGE_REFERENCE)
        job_id = str(job["id"])
        logger.info("Created job %s", job_id)

        if image is not None:
            result = await self.detect_text(job_id, image_base64=image.to_data_url())
        else:
            result = await self.detect_text(job_id, image_url=image_url)

        detections = await self.list_detections(job_id)
        return DetectionReport(
            job_id=job_id,
            message=str(result.get("message", "")),
            detections=detections,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
