"""Chat sessions for the Dialogflow gateway

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates: chat_sessions
Unique: at most one active session per user_id (partial index)
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ── 1. Create chat_sessions table ─────────────────────────────────────
    op.execute("""
        CREATE TABLE chat_sessions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id VARCHAR(100) NOT NULL,
            session_id VARCHAR(36) NOT NULL UNIQUE,
            context_data JSONB NOT NULL DEFAULT '{}'::jsonb,
            last_activity TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ NOT NULL,
            message_count INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            user_agent VARCHAR(512) NOT NULL DEFAULT '',
            ip_address VARCHAR(64) NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_chat_sessions_expiry CHECK (expires_at >= last_activity),
            CONSTRAINT ck_chat_sessions_message_count CHECK (message_count >= 0)
        );
    """)

    # ── 2. Indexes ────────────────────────────────────────────────────────
    op.execute(
        "CREATE UNIQUE INDEX uq_chat_sessions_user_active ON chat_sessions (user_id) WHERE is_active;"
    )
    op.execute(
        "CREATE INDEX ix_chat_sessions_user_id ON chat_sessions (user_id);"
    )
    op.execute(
        "CREATE INDEX ix_chat_sessions_expires_at_is_active ON chat_sessions (expires_at, is_active);"
    )
    op.execute(
        "CREATE INDEX ix_chat_sessions_last_activity ON chat_sessions (last_activity);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS chat_sessions CASCADE;")
