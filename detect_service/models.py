"""Pydantic request/response schemas for the text detection API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from detect_service.types import INLINE_IMAGE_REFERENCE

# -- Jobs ---------------------------------------------------------------------


class CreateJobRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(
        INLINE_IMAGE_REFERENCE,
        alias="imageUrl",
        min_length=1,
        max_length=2048,
        description="Image URL, or a placeholder when the image is sent inline",
    )


class JobResponse(BaseModel):
    id: str
    user_id: str | None = None
    image_url: str
    status: str  # pending | processing | completed | failed
    created_at: datetime | None = None
    updated_at: datetime | None = None
    error_message: str | None = None


# -- Detections ---------------------------------------------------------------


class Vertex(BaseModel):
    x: int
    y: int


class DetectionResult(BaseModel):
    id: str
    job_id: str
    seq: int
    text_content: str
    confidence: float
    bounding_box: list[Vertex] | None = None
    language: str | None = None
    created_at: datetime | None = None


class DetectionListResponse(BaseModel):
    job_id: str
    detections: list[DetectionResult]
    total: int


# -- Detect text --------------------------------------------------------------


class DetectTextRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str | None = Field(None, alias="jobId", max_length=100)
    image_url: str | None = Field(None, alias="imageUrl", max_length=2048)
    image_base64: str | None = Field(None, alias="imageBase64")


class DetectTextResponse(BaseModel):
    success: bool = True
    message: str
    detections: list[DetectionResult]


# -- Errors / health ----------------------------------------------------------


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    error: str | None = None
