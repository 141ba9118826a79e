"""Achievement catalog and per-child unlocks.

Revision ID: 002_achievements
Revises: 001_ledger_schema
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_achievements"
down_revision: str | None = "001_ledger_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Catalog (rows seeded by the API on startup) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            slug VARCHAR(64) PRIMARY KEY,
            name VARCHAR(100) NOT NULL,
            description VARCHAR(256) NOT NULL,
            category VARCHAR(32) NOT NULL,
            tier VARCHAR(16) NOT NULL,
            criteria_type VARCHAR(32) NOT NULL,
            criteria_value INTEGER NOT NULL,
            points_reward INTEGER NOT NULL DEFAULT 0,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)

    # --- Unlocks: at most one per child and achievement ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS child_achievements (
            id UUID PRIMARY KEY,
            child_id UUID NOT NULL REFERENCES child_progress(child_id),
            achievement_slug VARCHAR(64) NOT NULL REFERENCES achievements(slug),
            unlocked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            ledger_entry_id UUID REFERENCES ledger_entries(id),
            CONSTRAINT child_achievements_child_slug_key UNIQUE (child_id, achievement_slug)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS child_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
