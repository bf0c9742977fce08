"""Unit test conftest — no database or network required.

Provides in-memory stand-ins for the job and detected-text stores plus a
patched pair of connection factories, so the orchestrator can be driven
end to end without PostgreSQL.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from detect_service.types import JOB_COMPLETED, JOB_FAILED, JOB_PENDING, JOB_PROCESSING


class FakeJobStore:
    """Dict-backed DetectionJobStore with the same conditional transitions."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.hidden: set[str] = set()

    def add(self, status: str = JOB_PENDING, *, user_id: str | None = None) -> str:
        job_id = str(uuid.uuid4())
        now = datetime.now(UTC)
        self.jobs[job_id] = {
            "id": job_id,
            "user_id": user_id,
            "image_url": "base64_image",
            "status": status,
            "created_at": now,
            "updated_at": now,
            "error_message": None,
        }
        return job_id

    async def get_job(self, conn: Any, job_id: str) -> dict[str, Any] | None:
        if job_id in self.hidden:
            return None
        job = self.jobs.get(job_id)
        return dict(job) if job else None

    async def claim_pending(self, conn: Any, job_id: str) -> dict[str, Any] | None:
        job = self.jobs.get(job_id)
        if job is None or job["status"] != JOB_PENDING:
            return None
        job["status"] = JOB_PROCESSING
        return dict(job)

    async def mark_completed(self, conn: Any, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        if job is None or job["status"] != JOB_PROCESSING:
            return False
        job["status"] = JOB_COMPLETED
        job["error_message"] = None
        return True

    async def mark_failed(self, conn: Any, job_id: str, error: str) -> bool:
        job = self.jobs.get(job_id)
        if job is None or job["status"] != JOB_PROCESSING:
            return False
        job["status"] = JOB_FAILED
        job["error_message"] = error
        return True


class FakeTextStore:
    """List-backed DetectedTextStore; ``fail_with`` makes inserts raise."""

    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self.fail_with: Exception | None = None

    async def insert_detections(self, conn: Any, job_id: str, annotations: Any) -> list[dict[str, Any]]:
        if self.fail_with is not None:
            raise self.fail_with
        inserted = []
        for seq, ann in enumerate(annotations):
            inserted.append({
                "id": str(uuid.uuid4()),
                "job_id": job_id,
                "seq": seq,
                "text_content": ann.text,
                "confidence": ann.confidence if ann.confidence is not None else 0.95,
                "bounding_box": ann.bounding_box,
                "language": ann.language,
                "created_at": datetime.now(UTC),
            })
        self.rows.extend(inserted)
        return inserted

    async def list_for_job(self, conn: Any, job_id: str) -> list[dict[str, Any]]:
        return [r for r in self.rows if r["job_id"] == job_id]


@asynccontextmanager
async def _fake_connection(*args: Any, **kwargs: Any):
    yield MagicMock()


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def text_store() -> FakeTextStore:
    return FakeTextStore()


@pytest.fixture
def vision() -> MagicMock:
    """VisionClient stand-in with credentials and no annotations."""
    client = MagicMock()
    client.has_credentials = True
    client.annotate = AsyncMock(return_value=[])
    return client


@pytest.fixture
def fake_db():
    """Route the orchestrator's connection factories to throwaway mocks."""
    with (
        patch("detect_service.orchestrator.rls_connection", side_effect=_fake_connection) as rls,
        patch("detect_service.orchestrator.service_connection", side_effect=_fake_connection) as svc,
    ):
        yield rls, svc
