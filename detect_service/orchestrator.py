"""Drives one detection job through pending -> processing -> completed|failed.

The caller's RLS connection is used only to look the job up, so callers
cannot process jobs they cannot see. Every write goes through the service
connection. Once a job is claimed (processing), any failure is written back
as ``failed`` before the error propagates.
"""

from __future__ import annotations

import asyncio
import logging

import asyncpg

from detect_service.config import DETECT_MAX_IMAGE_BYTES
from detect_service.db import ROLE_ANON, rls_connection, service_connection
from detect_service.errors import (
    Conflict,
    DetectionError,
    InvalidInput,
    NotFound,
    PersistenceError,
    ServiceUnavailable,
)
from detect_service.image_payload import parse_image_payload
from detect_service.stores.detected_text_store import DetectedTextStore
from detect_service.stores.detection_job_store import DetectionJobStore
from detect_service.types import JOB_PENDING, ImagePayload, ProcessOutcome
from detect_service.vision.client import VisionClient

logger = logging.getLogger(__name__)

VISION_KEY_MISSING = "GCP Vision API key not configured"
NO_TEXT_MESSAGE = "No text detected in image"


class DetectionOrchestrator:
    def __init__(
        self,
        *,
        vision: VisionClient,
        job_store: DetectionJobStore | None = None,
        text_store: DetectedTextStore | None = None,
        max_image_bytes: int = DETECT_MAX_IMAGE_BYTES,
    ) -> None:
        self._vision = vision
        self._jobs = job_store or DetectionJobStore()
        self._texts = text_store or DetectedTextStore()
        self._max_image_bytes = max_image_bytes

    async def process(
        self,
        job_id: str,
        *,
        image_url: str | None = None,
        image_base64: str | None = None,
        user_id: str | None = None,
        role: str = ROLE_ANON,
    ) -> ProcessOutcome:
        """Run text detection for one pending job.

        Raises:
            InvalidInput, PayloadTooLarge: bad request; job untouched.
            NotFound: job unknown or not visible to the caller; job untouched.
            Conflict: job is not pending; job untouched.
            ServiceUnavailable, UpstreamError, PersistenceError: job marked failed.
        """
        if not job_id or not job_id.strip():
            raise InvalidInput("Job ID is required")
        job_id = job_id.strip()

        payload = parse_image_payload(
            image_url=image_url,
            image_base64=image_base64,
            max_bytes=self._max_image_bytes,
        )

        async with rls_connection(user_id, role) as conn:
            job = await self._jobs.get_job(conn, job_id)
        if job is None:
            raise NotFound("Job not found")
        if job["status"] != JOB_PENDING:
            raise Conflict(f"Job is not pending (current status: {job['status']})")

        async with service_connection() as conn:
            claimed = await self._jobs.claim_pending(conn, job_id)
        if claimed is None:
            raise Conflict("Job is not pending (claimed by another request)")
        logger.info("Job %s: pending -> processing", job_id)

        try:
            return await self._run_claimed(job_id, payload)
        except DetectionError as e:
            await self._record_failure(job_id, e.message)
            raise
        except asyncio.CancelledError:
            await asyncio.shield(self._record_failure(job_id, "Request cancelled during processing"))
            raise
        except Exception as e:
            logger.exception("Job %s: unexpected error during processing", job_id)
            await self._record_failure(job_id, f"{type(e).__name__}: {e}")
            raise

    async def _run_claimed(self, job_id: str, payload: ImagePayload) -> ProcessOutcome:
        if not self._vision.has_credentials:
            raise ServiceUnavailable(VISION_KEY_MISSING)

        annotations = await self._vision.annotate(payload)

        if not annotations:
            try:
                async with service_connection() as conn:
                    await self._complete(conn, job_id)
            except Exception as e:
                raise PersistenceError(f"Failed to complete job: {e}") from e
            logger.info("Job %s: processing -> completed (no text)", job_id)
            return ProcessOutcome(job_id=job_id, message=NO_TEXT_MESSAGE, detections=[])

        # Rows and the completed transition commit together or not at all.
        try:
            async with service_connection() as conn:
                rows = await self._texts.insert_detections(conn, job_id, annotations)
                await self._complete(conn, job_id)
        except Exception as e:
            raise PersistenceError(f"Failed to store detections: {e}") from e

        logger.info("Job %s: processing -> completed (%d detections)", job_id, len(rows))
        return ProcessOutcome(
            job_id=job_id,
            message=f"Detected {len(rows)} text elements",
            detections=rows,
        )

    async def _complete(self, conn: asyncpg.Connection, job_id: str) -> None:
        if not await self._jobs.mark_completed(conn, job_id):
            raise RuntimeError("job is no longer processing")

    async def _record_failure(self, job_id: str, error: str) -> None:
        logger.warning("Job %s: processing -> failed: %s", job_id, error)
        try:
            async with service_connection() as conn:
                updated = await self._jobs.mark_failed(conn, job_id, error)
        except Exception:
            logger.exception("Job %s: could not record failure", job_id)
            return
        if not updated:
            logger.error("Job %s: failure not recorded, job was not processing", job_id)
