"""Insert and read detected_text rows.

Row order is carried by an explicit ``seq`` column: seq 0 is the whole-image
aggregate text, seq 1..N-1 are the individual elements in provider order.
Reads always ORDER BY seq.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

import asyncpg

from detect_service.config import DETECT_DEFAULT_CONFIDENCE
from detect_service.types import TextAnnotation

logger = logging.getLogger(__name__)

_DETECTION_COLUMNS = (
    "id, job_id, seq, text_content, confidence, bounding_box, language, created_at"
)


def _row_to_detection(row: asyncpg.Record | dict[str, Any]) -> dict[str, Any]:
    det = dict(row)
    det["id"] = str(det["id"])
    det["job_id"] = str(det["job_id"])
    # NUMERIC comes back as Decimal
    if det.get("confidence") is not None:
        det["confidence"] = float(det["confidence"])
    return det


def build_detection_rows(
    job_id: uuid.UUID,
    annotations: Sequence[TextAnnotation],
    *,
    default_confidence: float = DETECT_DEFAULT_CONFIDENCE,
) -> list[tuple[Any, ...]]:
    """Turn provider annotations into insert tuples, preserving order."""
    rows = []
    for seq, ann in enumerate(annotations):
        confidence = ann.confidence if ann.confidence is not None else default_confidence
        rows.append(
            (
                uuid.uuid4(),
                job_id,
                seq,
                ann.text,
                Decimal(str(confidence)),
                ann.bounding_box,
                ann.language,
            )
        )
    return rows


class DetectedTextStore:
    """Stateless data-access object for detected_text."""

    async def insert_detections(
        self,
        conn: asyncpg.Connection,
        job_id: str,
        annotations: Sequence[TextAnnotation],
    ) -> list[dict[str, Any]]:
        """Insert one row per annotation and return the stored rows in order.

        Callers run this inside a transaction so a failure on any row leaves
        no rows behind.
        """
        if not annotations:
            return []

        job_uuid = uuid.UUID(job_id)
        await conn.executemany(
            """
            INSERT INTO detected_text
                (id, job_id, seq, text_content, confidence, bounding_box, language)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            build_detection_rows(job_uuid, annotations),
        )
        return await self.list_for_job(conn, job_id)

    async def list_for_job(self, conn: asyncpg.Connection, job_id: str) -> list[dict[str, Any]]:
        """List detections for a job in stored order (RLS enforces visibility)."""
        rows = await conn.fetch(
            f"""
            SELECT {_DETECTION_COLUMNS}
            FROM detected_text
            WHERE job_id = $1
            ORDER BY seq
            """,
            uuid.UUID(job_id),
        )
        return [_row_to_detection(r) for r in rows]
