"""Async database connection pool with RLS context managers.

- `rls_connection()` sets SET LOCAL app.user_id / app.role per transaction so
  PostgreSQL RLS policies on detection_jobs and detected_text can filter rows.
- `service_connection()` is the privileged variant used by the orchestrator
  for state transitions and detection inserts.
- JSONB columns are decoded to Python objects by a per-connection codec.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import asyncpg

logger = logging.getLogger(__name__)

ROLE_ANON = "anon"
ROLE_AUTHENTICATED = "authenticated"
ROLE_SERVICE = "service"

_ROLES = {ROLE_ANON, ROLE_AUTHENTICATED, ROLE_SERVICE}

_pool: asyncpg.Pool | None = None


async def init_connection(conn: asyncpg.Connection) -> None:
    """Per-connection init: map jsonb to Python objects."""
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


class DatabaseConfig:
    """Builds connection strings based on detected environment."""

    @staticmethod
    def get_connection_string() -> str:
        # Priority 1: Explicit override
        if url := os.environ.get("DATABASE_URL"):
            return url

        # Priority 2: Cloud Run -> managed AlloyDB
        if os.environ.get("K_SERVICE"):
            host = os.environ.get("ALLOYDB_HOST")
            db = os.environ.get("ALLOYDB_DB", "detect")
            user = os.environ.get("ALLOYDB_USER", "detect")
            password = os.environ.get("ALLOYDB_PASSWORD", "")
            return f"postgresql://{user}:{password}@{host}/{db}"

        # Priority 3: Local dev
        sslmode = os.environ.get("DB_SSLMODE", "disable")
        return (
            f"postgresql://{os.environ.get('DB_USER', 'detect')}:"
            f"{os.environ.get('DB_PASSWORD', 'detect')}@"
            f"{os.environ.get('DB_HOST', 'localhost')}:"
            f"{os.environ.get('DB_PORT', '5432')}/"
            f"{os.environ.get('DB_NAME', 'detect')}?sslmode={sslmode}"
        )

    @classmethod
    def get_migration_url(cls) -> str:
        """Same DSN, rewritten for SQLAlchemy's psycopg2 dialect (Alembic)."""
        dsn = cls.get_connection_string()
        for prefix in ("postgresql://", "postgres://"):
            if dsn.startswith(prefix):
                return "postgresql+psycopg2://" + dsn[len(prefix):]
        return dsn


async def get_pool() -> asyncpg.Pool:
    """Return the singleton connection pool, creating it if necessary."""
    global _pool  # noqa: PLW0603
    if _pool is None:
        dsn = DatabaseConfig.get_connection_string()
        logger.info("Creating database pool (host hidden for security)")
        _pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=1,
            max_size=int(os.environ.get("DB_POOL_MAX", "5")),
            command_timeout=30,
            init=init_connection,
        )
    return _pool


async def close_pool() -> None:
    """Gracefully close the connection pool."""
    global _pool  # noqa: PLW0603
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


async def check_db_connection() -> bool:
    """Health check: returns True if the database is reachable."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except Exception:
        logger.exception("Database health check failed")
        return False


@asynccontextmanager
async def rls_connection(user_id: str | None, role: str) -> AsyncIterator[asyncpg.Connection]:
    """Acquire a connection with RLS session variables set.

    Sets `app.user_id` (empty string for anonymous callers) and `app.role`
    via set_config(..., true), which is transaction-scoped. The connection is
    wrapped in a transaction; the values are discarded when it ends.

    Raises ValueError for an unknown role, or an authenticated role without
    a user id (fail-closed).
    """
    if role not in _ROLES:
        raise ValueError(f"Unknown RLS role: {role!r}")
    if role == ROLE_AUTHENTICATED and not user_id:
        raise ValueError("user_id is required for authenticated connections (fail-closed)")

    pool = await get_pool()
    async with pool.acquire() as conn, conn.transaction():
        await conn.execute("SELECT set_config('app.user_id', $1, true)", user_id or "")
        await conn.execute("SELECT set_config('app.role', $1, true)", role)
        yield conn


def service_connection() -> AbstractAsyncContextManager[asyncpg.Connection]:
    """RLS connection for the privileged service role."""
    return rls_connection(None, ROLE_SERVICE)
