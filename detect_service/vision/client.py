from __future__ import annotations

import logging
from typing import Any

import httpx

from detect_service.config import VisionConfig
from detect_service.errors import UpstreamError
from detect_service.types import ImagePayload, TextAnnotation

logger = logging.getLogger(__name__)

_FEATURE_TEXT_DETECTION = "TEXT_DETECTION"


def _decode_vertices(raw: Any) -> list[dict[str, int]] | None:
    # Vision omits x or y when the coordinate is 0.
    if not isinstance(raw, list) or not raw:
        return None
    points: list[dict[str, int]] = []
    for v in raw:
        if not isinstance(v, dict):
            return None
        try:
            points.append({"x": int(v.get("x", 0) or 0), "y": int(v.get("y", 0) or 0)})
        except (TypeError, ValueError) as e:
            raise UpstreamError("GCP Vision API returned a malformed bounding polygon") from e
    return points


def decode_annotation(raw: Any) -> TextAnnotation:
    """Decode one provider ``EntityAnnotation`` into a TextAnnotation.

    Only ``description`` is expected; confidence, bounding polygon and
    locale are optional and fall back to None.
    """
    if not isinstance(raw, dict):
        raise UpstreamError("GCP Vision API returned a malformed text annotation")

    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = None

    poly = raw.get("boundingPoly")
    vertices = poly.get("vertices") if isinstance(poly, dict) else None

    locale = raw.get("locale")
    return TextAnnotation(
        text=str(raw.get("description") or ""),
        confidence=float(confidence) if confidence is not None else None,
        bounding_box=_decode_vertices(vertices),
        language=locale if isinstance(locale, str) and locale else None,
    )


def parse_annotate_response(body: Any) -> list[TextAnnotation]:
    """Extract the first image's text annotations in provider order."""
    if not isinstance(body, dict):
        raise UpstreamError("GCP Vision API returned a malformed response")

    responses = body.get("responses")
    if not isinstance(responses, list):
        raise UpstreamError("GCP Vision API response is missing 'responses'")
    if not responses:
        return []

    first = responses[0]
    if not isinstance(first, dict):
        raise UpstreamError("GCP Vision API returned a malformed response")

    err = first.get("error")
    if err:
        message = err.get("message") if isinstance(err, dict) else str(err)
        raise UpstreamError(f"GCP Vision API error: {message or err}")

    annotations = first.get("textAnnotations") or []
    if not isinstance(annotations, list):
        raise UpstreamError("GCP Vision API returned malformed textAnnotations")
    return [decode_annotation(a) for a in annotations]


class VisionClient:
    """
    Async wrapper over the Vision REST ``images:annotate`` endpoint:
    - one request per image, TEXT_DETECTION only
    - no retries; every failure surfaces as UpstreamError
    """

    def __init__(self, *, cfg: VisionConfig, http_client: httpx.AsyncClient | None = None) -> None:
        self._cfg = cfg
        self._http = http_client or httpx.AsyncClient(timeout=cfg.timeout_s)
        self._owns_http = http_client is None

    @property
    def has_credentials(self) -> bool:
        return self._cfg.has_credentials

    def build_request(self, payload: ImagePayload) -> dict[str, Any]:
        if payload.is_inline:
            image: dict[str, Any] = {"content": payload.content}
        elif payload.image_uri:
            image = {"source": {"imageUri": payload.image_uri}}
        else:
            raise ValueError("ImagePayload has neither content nor image_uri")

        return {
            "requests": [
                {
                    "image": image,
                    "features": [
                        {"type": _FEATURE_TEXT_DETECTION, "maxResults": self._cfg.max_results},
                    ],
                }
            ]
        }

    async def annotate(self, payload: ImagePayload) -> list[TextAnnotation]:
        if not self._cfg.api_key:
            raise UpstreamError("GCP Vision API key not configured")

        try:
            resp = await self._http.post(
                self._cfg.annotate_url,
                params={"key": self._cfg.api_key},
                json=self.build_request(payload),
                timeout=self._cfg.timeout_s,
            )
        except httpx.HTTPError as e:
            detail = str(e).replace(self._cfg.api_key, "***")
            logger.warning("Vision request failed: %s: %s", type(e).__name__, detail)
            raise UpstreamError(f"GCP Vision API request failed: {type(e).__name__}: {detail}") from e

        if not resp.is_success:
            raise UpstreamError(f"GCP Vision API error: {resp.text}")

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamError("GCP Vision API returned a non-JSON response") from e

        annotations = parse_annotate_response(body)
        logger.debug("Vision returned %d text annotations", len(annotations))
        return annotations

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
