"""CRUD and state transitions for detection_jobs.

Reads run on a caller-scoped RLS connection (db.rls_connection); transitions
run on the service connection. Every transition is a conditional UPDATE on
the current status, so the database is the only serialization point between
concurrent requests for the same job.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import asyncpg

from detect_service.types import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
)

logger = logging.getLogger(__name__)

_JOB_COLUMNS = "id, user_id, image_url, status, created_at, updated_at, error_message"

# error_message is TEXT, but keep rows readable in dashboards.
_MAX_ERROR_CHARS = 4000


def _parse_job_id(job_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(job_id))
    except ValueError:
        return None


def _row_to_job(row: asyncpg.Record | dict[str, Any]) -> dict[str, Any]:
    job = dict(row)
    job["id"] = str(job["id"])
    return job


class DetectionJobStore:
    """Stateless data-access object for detection_jobs."""

    async def create_job(
        self,
        conn: asyncpg.Connection,
        *,
        image_url: str,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Insert a new pending job and return it."""
        row = await conn.fetchrow(
            f"""
            INSERT INTO detection_jobs (id, user_id, image_url, status)
            VALUES ($1, $2, $3, $4)
            RETURNING {_JOB_COLUMNS}
            """,
            uuid.uuid4(),
            user_id,
            image_url,
            JOB_PENDING,
        )
        return _row_to_job(row)  # type: ignore[arg-type]

    async def get_job(self, conn: asyncpg.Connection, job_id: str) -> dict[str, Any] | None:
        """Get a single job by ID (RLS enforces visibility).

        Malformed IDs are treated as unknown rather than raising.
        """
        parsed = _parse_job_id(job_id)
        if parsed is None:
            return None
        row = await conn.fetchrow(
            f"SELECT {_JOB_COLUMNS} FROM detection_jobs WHERE id = $1",
            parsed,
        )
        return _row_to_job(row) if row else None

    async def claim_pending(self, conn: asyncpg.Connection, job_id: str) -> dict[str, Any] | None:
        """Move a job from pending to processing.

        Returns the updated job, or None when the job was not pending at the
        time of the write (another request claimed it first).
        """
        parsed = _parse_job_id(job_id)
        if parsed is None:
            return None
        row = await conn.fetchrow(
            f"""
            UPDATE detection_jobs
            SET status = $2, updated_at = NOW()
            WHERE id = $1 AND status = $3
            RETURNING {_JOB_COLUMNS}
            """,
            parsed,
            JOB_PROCESSING,
            JOB_PENDING,
        )
        return _row_to_job(row) if row else None

    async def mark_completed(self, conn: asyncpg.Connection, job_id: str) -> bool:
        """processing -> completed. Returns False if the job was not processing."""
        tag = await conn.execute(
            """
            UPDATE detection_jobs
            SET status = $2, error_message = NULL, updated_at = NOW()
            WHERE id = $1 AND status = $3
            """,
            uuid.UUID(job_id),
            JOB_COMPLETED,
            JOB_PROCESSING,
        )
        return tag == "UPDATE 1"

    async def mark_failed(self, conn: asyncpg.Connection, job_id: str, error: str) -> bool:
        """processing -> failed with an error message.

        Returns False if the job was not processing.
        """
        tag = await conn.execute(
            """
            UPDATE detection_jobs
            SET status = $2, error_message = $3, updated_at = NOW()
            WHERE id = $1 AND status = $4
            """,
            uuid.UUID(job_id),
            JOB_FAILED,
            (error or "Unknown error occurred")[:_MAX_ERROR_CHARS],
            JOB_PROCESSING,
        )
        return tag == "UPDATE 1"
