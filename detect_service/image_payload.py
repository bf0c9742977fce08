"""Validation of the image half of a detect-text request."""

from __future__ import annotations

import base64
import binascii
import re

from detect_service.config import DETECT_MAX_IMAGE_BYTES
from detect_service.errors import InvalidInput, PayloadTooLarge
from detect_service.types import ImagePayload

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)


def strip_data_url_prefix(value: str) -> str:
    """Drop a leading ``data:image/<type>;base64,`` if present."""
    return _DATA_URL_PREFIX.sub("", value, count=1)


def parse_image_payload(
    *,
    image_url: str | None,
    image_base64: str | None,
    max_bytes: int = DETECT_MAX_IMAGE_BYTES,
) -> ImagePayload:
    """Build an ImagePayload from the request fields.

    Exactly one of ``image_url`` / ``image_base64`` must be given. Inline
    payloads must be strict base64 and decode to at most ``max_bytes``.

    Raises:
        InvalidInput: neither or both fields given, or malformed base64.
        PayloadTooLarge: decoded inline image exceeds ``max_bytes``.
    """
    has_url = bool(image_url and image_url.strip())
    has_inline = bool(image_base64 and image_base64.strip())

    if has_url and has_inline:
        raise InvalidInput("Provide either imageUrl or imageBase64, not both")
    if not has_url and not has_inline:
        raise InvalidInput("Either imageUrl or imageBase64 must be provided")

    if has_url:
        return ImagePayload(image_uri=image_url.strip())  # type: ignore[union-attr]

    content = strip_data_url_prefix(image_base64.strip())  # type: ignore[union-attr]
    # Cheap upper bound before decoding: 4 chars of base64 carry 3 bytes.
    if (len(content) // 4) * 3 - 2 > max_bytes:
        raise PayloadTooLarge(f"Image exceeds maximum size of {max_bytes} bytes")

    try:
        decoded = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidInput("imageBase64 is not valid base64") from e

    if not decoded:
        raise InvalidInput("imageBase64 decoded to an empty image")
    if len(decoded) > max_bytes:
        raise PayloadTooLarge(f"Image exceeds maximum size of {max_bytes} bytes")

    return ImagePayload(content=content, size_bytes=len(decoded))
