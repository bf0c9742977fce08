"""Create detection_jobs and detected_text with RLS and indexes.

Revision ID: 001
Create Date: 2025-10-09

Session variables set by the service per transaction:
- app.user_id: caller identity, '' for anonymous callers
- app.role:    'anon' | 'authenticated' | 'service'

Only the 'service' role may update arbitrary jobs or insert detections.
"""

from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # -- detection_jobs -------------------------------------------------------
    op.execute(
        """
        CREATE TABLE detection_jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id TEXT,
            image_url TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            error_message TEXT,

            -- error text only on failed jobs
            CHECK (status = 'failed' OR error_message IS NULL)
        )
    """
    )

    op.execute("CREATE INDEX ix_detection_jobs_user_id ON detection_jobs (user_id)")
    op.execute("CREATE INDEX ix_detection_jobs_status ON detection_jobs (status)")

    # -- detected_text --------------------------------------------------------
    op.execute(
        """
        CREATE TABLE detected_text (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            job_id UUID NOT NULL
                REFERENCES detection_jobs(id) ON DELETE CASCADE,
            seq INT NOT NULL CHECK (seq >= 0),
            text_content TEXT NOT NULL,
            confidence NUMERIC NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
            bounding_box JSONB,
            language TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

            UNIQUE (job_id, seq)
        )
    """
    )

    # -- Row-Level Security: detection_jobs -----------------------------------

    op.execute("ALTER TABLE detection_jobs ENABLE ROW LEVEL SECURITY")
    op.execute("ALTER TABLE detection_jobs FORCE ROW LEVEL SECURITY")

    # SELECT: unowned jobs visible to everyone, owned jobs to the owner
    op.execute(
        """
        CREATE POLICY detection_jobs_select ON detection_jobs
        FOR SELECT
        USING (
            current_setting('app.role', true) = 'service'
            OR user_id IS NULL
            OR user_id = NULLIF(current_setting('app.user_id', true), '')
        )
    """
    )

    # INSERT: anyone, but only unowned or self-owned pending jobs
    op.execute(
        """
        CREATE POLICY detection_jobs_insert ON detection_jobs
        FOR INSERT
        WITH CHECK (
            current_setting('app.role', true) IN ('anon', 'authenticated', 'service')
            AND status = 'pending'
            AND (
                user_id IS NULL
                OR user_id = NULLIF(current_setting('app.user_id', true), '')
            )
        )
    """
    )

    # UPDATE: authenticated owners update their own jobs
    op.execute(
        """
        CREATE POLICY detection_jobs_update_owner ON detection_jobs
        FOR UPDATE
        USING (
            current_setting('app.role', true) = 'authenticated'
            AND user_id = NULLIF(current_setting('app.user_id', true), '')
        )
        WITH CHECK (
            current_setting('app.role', true) = 'authenticated'
            AND user_id = NULLIF(current_setting('app.user_id', true), '')
        )
    """
    )

    # UPDATE: service role updates any job
    op.execute(
        """
        CREATE POLICY detection_jobs_update_service ON detection_jobs
        FOR UPDATE
        USING (current_setting('app.role', true) = 'service')
        WITH CHECK (current_setting('app.role', true) = 'service')
    """
    )

    # -- Row-Level Security: detected_text ------------------------------------

    op.execute("ALTER TABLE detected_text ENABLE ROW LEVEL SECURITY")
    op.execute("ALTER TABLE detected_text FORCE ROW LEVEL SECURITY")

    op.execute(
        """
        CREATE POLICY detected_text_select ON detected_text
        FOR SELECT
        USING (
            current_setting('app.role', true) = 'service'
            OR EXISTS (
                SELECT 1
                FROM detection_jobs j
                WHERE j.id = detected_text.job_id
                  AND (
                      j.user_id IS NULL
                      OR j.user_id = NULLIF(current_setting('app.user_id', true), '')
                  )
            )
        )
    """
    )

    op.execute(
        """
        CREATE POLICY detected_text_insert ON detected_text
        FOR INSERT
        WITH CHECK (current_setting('app.role', true) = 'service')
    """
    )


def downgrade() -> None:
    op.execute("DROP POLICY IF EXISTS detected_text_insert ON detected_text")
    op.execute("DROP POLICY IF EXISTS detected_text_select ON detected_text")
    op.execute("ALTER TABLE detected_text DISABLE ROW LEVEL SECURITY")

    op.execute("DROP POLICY IF EXISTS detection_jobs_update_service ON detection_jobs")
    op.execute("DROP POLICY IF EXISTS detection_jobs_update_owner ON detection_jobs")
    op.execute("DROP POLICY IF EXISTS detection_jobs_insert ON detection_jobs")
    op.execute("DROP POLICY IF EXISTS detection_jobs_select ON detection_jobs")
    op.execute("ALTER TABLE detection_jobs DISABLE ROW LEVEL SECURITY")

    op.execute("DROP TABLE IF EXISTS detected_text CASCADE")
    op.execute("DROP TABLE IF EXISTS detection_jobs CASCADE")
