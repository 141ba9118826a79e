"""Progression and redemption ledger schema.

Creates family_settings, child_progress, ledger_entries, rewards,
redemptions, tasks, task_assignments and notifications.

Revision ID: 001_ledger_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_ledger_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Family settings ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS family_settings (
            family_id UUID PRIMARY KEY,
            streak_grace_period_hours INTEGER NOT NULL DEFAULT 4,
            max_active_primary INTEGER NOT NULL DEFAULT 1,
            max_active_secondary INTEGER NOT NULL DEFAULT 2,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT family_settings_grace_period_range
                CHECK (streak_grace_period_hours BETWEEN 0 AND 12)
        )
    """)

    # --- Child progress (denormalized, written only by the ledger) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS child_progress (
            child_id UUID PRIMARY KEY,
            family_id UUID NOT NULL,
            first_name VARCHAR(64) NOT NULL,
            points_balance INTEGER NOT NULL DEFAULT 0,
            total_points_earned INTEGER NOT NULL DEFAULT 0,
            total_xp_earned INTEGER NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            current_streak_days INTEGER NOT NULL DEFAULT 0,
            longest_streak_days INTEGER NOT NULL DEFAULT 0,
            last_activity_at TIMESTAMPTZ,
            ledger_version INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT child_progress_balance_non_negative CHECK (points_balance >= 0),
            CONSTRAINT child_progress_level_positive CHECK (level >= 1)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_child_progress_family_id
        ON child_progress(family_id)
    """)

    # --- Ledger entries (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS ledger_entries (
            id UUID PRIMARY KEY,
            child_id UUID NOT NULL REFERENCES child_progress(child_id) ON DELETE RESTRICT,
            sequence INTEGER NOT NULL,
            transaction_type VARCHAR(32) NOT NULL,
            points_amount INTEGER NOT NULL,
            xp_amount INTEGER NOT NULL DEFAULT 0,
            balance_after INTEGER NOT NULL,
            total_xp_after INTEGER NOT NULL,
            reference_type VARCHAR(32),
            reference_id VARCHAR(64),
            details JSONB NOT NULL DEFAULT '{}',
            description VARCHAR(256),
            idempotency_key VARCHAR(256) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ledger_entries_child_sequence_key UNIQUE (child_id, sequence)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_ledger_entries_child_created
        ON ledger_entries(child_id, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_ledger_entries_reference
        ON ledger_entries(reference_type, reference_id)
    """)

    # --- Rewards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS rewards (
            id UUID PRIMARY KEY,
            family_id UUID NOT NULL,
            name VARCHAR(100) NOT NULL,
            points_cost INTEGER NOT NULL,
            max_redemptions_per_child INTEGER,
            max_redemptions_total INTEGER,
            expires_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT rewards_points_cost_positive CHECK (points_cost > 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_rewards_family_id
        ON rewards(family_id)
    """)

    # --- Redemptions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS redemptions (
            id UUID PRIMARY KEY,
            reward_id UUID NOT NULL REFERENCES rewards(id),
            child_id UUID NOT NULL REFERENCES child_progress(child_id),
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            points_spent INTEGER NOT NULL,
            debit_entry_id UUID REFERENCES ledger_entries(id),
            refund_entry_id UUID REFERENCES ledger_entries(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            approved_at TIMESTAMPTZ,
            fulfilled_at TIMESTAMPTZ,
            cancelled_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_redemptions_reward_status
        ON redemptions(reward_id, status)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_redemptions_child_reward
        ON redemptions(child_id, reward_id)
    """)

    # --- Tasks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id UUID PRIMARY KEY,
            family_id UUID NOT NULL,
            title VARCHAR(200) NOT NULL,
            task_tag VARCHAR(16) NOT NULL DEFAULT 'primary',
            difficulty VARCHAR(16) NOT NULL DEFAULT 'medium',
            points_value INTEGER NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_tasks_family_id
        ON tasks(family_id)
    """)

    # --- Task assignments ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS task_assignments (
            id UUID PRIMARY KEY,
            task_id UUID NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            child_id UUID NOT NULL REFERENCES child_progress(child_id),
            instance_date DATE NOT NULL,
            start_time TIMESTAMPTZ,
            estimated_minutes INTEGER,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_task_assignments_child_date
        ON task_assignments(child_id, instance_date)
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id UUID PRIMARY KEY,
            child_id UUID NOT NULL,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(128) NOT NULL,
            description VARCHAR(256),
            payload JSONB NOT NULL DEFAULT '{}',
            is_read BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_child_created
        ON notifications(child_id, created_at)
    """)


def downgrade() -> None:
    for table in (
        "notifications",
        "task_assignments",
        "tasks",
        "redemptions",
        "rewards",
        "ledger_entries",
        "child_progress",
        "family_settings",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")  # noqa: S608
