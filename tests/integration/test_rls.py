"""Integration tests for Row-Level Security on detection tables.

Verifies:
- FORCE RLS hides rows when no session variables are set
- Unowned jobs are visible to every caller, owned jobs only to the owner
- Only the service role may update arbitrary jobs or insert detections
"""

from __future__ import annotations

import uuid

import asyncpg
import pytest

from detect_service.db import ROLE_ANON, ROLE_AUTHENTICATED, ROLE_SERVICE, rls_connection
from detect_service.stores.detected_text_store import DetectedTextStore
from detect_service.stores.detection_job_store import DetectionJobStore
from detect_service.types import TextAnnotation

pytestmark = pytest.mark.usefixtures("clean_tables")

_jobs = DetectionJobStore()
_texts = DetectedTextStore()


async def _create(user_id: str | None, role: str) -> dict:
    async with rls_connection(user_id, role) as conn:
        return await _jobs.create_job(conn, image_url="base64_image", user_id=user_id)


async def _visible(job_id: str, user_id: str | None, role: str) -> bool:
    async with rls_connection(user_id, role) as conn:
        return await _jobs.get_job(conn, job_id) is not None


class TestJobVisibility:
    async def test_force_rls_blocks_without_session_vars(self, service_pool, test_user_id):
        await _create(test_user_id, ROLE_AUTHENTICATED)
        async with service_pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM detection_jobs")
            assert len(rows) == 0

    async def test_unowned_job_visible_to_everyone(self, service_pool, test_user_id):
        job = await _create(None, ROLE_ANON)
        assert job["user_id"] is None
        assert await _visible(job["id"], None, ROLE_ANON)
        assert await _visible(job["id"], test_user_id, ROLE_AUTHENTICATED)

    async def test_owned_job_visible_only_to_owner(self, service_pool, test_user_id, other_user_id):
        job = await _create(test_user_id, ROLE_AUTHENTICATED)
        assert await _visible(job["id"], test_user_id, ROLE_AUTHENTICATED)
        assert not await _visible(job["id"], other_user_id, ROLE_AUTHENTICATED)
        assert not await _visible(job["id"], None, ROLE_ANON)
        assert await _visible(job["id"], None, ROLE_SERVICE)

    async def test_anon_cannot_create_job_for_someone_else(self, service_pool, test_user_id):
        with pytest.raises(asyncpg.InsufficientPrivilegeError):
            async with rls_connection(None, ROLE_ANON) as conn:
                await _jobs.create_job(conn, image_url="base64_image", user_id=test_user_id)


class TestJobUpdates:
    async def test_anon_cannot_transition_jobs(self, service_pool):
        job = await _create(None, ROLE_ANON)
        async with rls_connection(None, ROLE_ANON) as conn:
            assert await _jobs.claim_pending(conn, job["id"]) is None

    async def test_other_user_cannot_transition_owned_job(self, service_pool, test_user_id, other_user_id):
        job = await _create(test_user_id, ROLE_AUTHENTICATED)
        async with rls_connection(other_user_id, ROLE_AUTHENTICATED) as conn:
            assert await _jobs.claim_pending(conn, job["id"]) is None

    async def test_service_can_transition_any_job(self, service_pool, test_user_id):
        job = await _create(test_user_id, ROLE_AUTHENTICATED)
        async with rls_connection(None, ROLE_SERVICE) as conn:
            claimed = await _jobs.claim_pending(conn, job["id"])
        assert claimed is not None
        assert claimed["status"] == "processing"


class TestDetectedTextPolicies:
    async def test_only_service_inserts_detections(self, service_pool, test_user_id):
        job = await _create(test_user_id, ROLE_AUTHENTICATED)
        with pytest.raises(asyncpg.InsufficientPrivilegeError):
            async with rls_connection(test_user_id, ROLE_AUTHENTICATED) as conn:
                await _texts.insert_detections(conn, job["id"], [TextAnnotation(text="forged")])

    async def test_detections_follow_job_visibility(self, service_pool, test_user_id, other_user_id):
        job = await _create(test_user_id, ROLE_AUTHENTICATED)
        async with rls_connection(None, ROLE_SERVICE) as conn:
            await _texts.insert_detections(conn, job["id"], [TextAnnotation(text="mine")])

        async with rls_connection(test_user_id, ROLE_AUTHENTICATED) as conn:
            assert len(await _texts.list_for_job(conn, job["id"])) == 1
        async with rls_connection(other_user_id, ROLE_AUTHENTICATED) as conn:
            assert await _texts.list_for_job(conn, job["id"]) == []

    async def test_unknown_job_id_rejected(self, service_pool):
        with pytest.raises(asyncpg.ForeignKeyViolationError):
            async with rls_connection(None, ROLE_SERVICE) as conn:
                await _texts.insert_detections(conn, str(uuid.uuid4()), [TextAnnotation(text="orphan")])
