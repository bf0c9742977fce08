from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

# Placeholder stored as image_url when the image travels inline.
INLINE_IMAGE_REFERENCE = "base64_image"


@dataclass(frozen=True)
class ImagePayload:
    """Exactly one of ``content`` (base64 text, prefix stripped) or ``image_uri``."""

    content: str | None = None
    image_uri: str | None = None
    size_bytes: int | None = None  # decoded size, inline payloads only

    @property
    def is_inline(self) -> bool:
        return self.content is not None


@dataclass(frozen=True)
class TextAnnotation:
    text: str
    confidence: float | None = None
    bounding_box: list[dict[str, int]] | None = None
    language: str | None = None


@dataclass(frozen=True)
class ProcessOutcome:
    job_id: str
    message: str
    detections: list[dict[str, Any]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.detections)
