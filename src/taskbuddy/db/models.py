"""ORM models for the progression and redemption ledger.

``child_progress`` is the only mutable per-child summary and is written
exclusively by :mod:`taskbuddy.ledger.store`; ``ledger_entries`` is
append-only.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskbuddy.db.base import Base
from taskbuddy.db.types import JSONType, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedemptionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class TaskTag(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class TaskDifficulty(StrEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class AssignmentStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"


ACTIVE_ASSIGNMENT_STATUSES = (AssignmentStatus.PENDING.value, AssignmentStatus.IN_PROGRESS.value)


# ---------------------------------------------------------------------------
# Family settings
# ---------------------------------------------------------------------------


class FamilySettings(Base):
    """Per-family knobs consumed by the streak tracker and task scheduler."""

    __tablename__ = "family_settings"
    __table_args__ = (
        CheckConstraint(
            "streak_grace_period_hours BETWEEN 0 AND 12",
            name="family_settings_grace_period_range",
        ),
    )

    family_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    streak_grace_period_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    max_active_primary: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_active_secondary: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Progress + ledger
# ---------------------------------------------------------------------------


class ChildProgress(Base):
    """Denormalized progress summary: one row per child, O(1) balance reads."""

    __tablename__ = "child_progress"
    __table_args__ = (
        CheckConstraint("points_balance >= 0", name="child_progress_balance_non_negative"),
        CheckConstraint("level >= 1", name="child_progress_level_positive"),
    )

    child_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    family_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(64), nullable=False)
    points_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ledger_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class LedgerEntry(Base):
    """Immutable point/XP transaction with per-child sequence and idempotency key."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("child_id", "sequence", name="ledger_entries_child_sequence_key"),
        Index("idx_ledger_entries_child_created", "child_id", "created_at"),
        Index("idx_ledger_entries_reference", "reference_type", "reference_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("child_progress.child_id", ondelete="RESTRICT"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    points_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    xp_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    total_xp_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


class Reward(Base):
    """A family reward with optional household cap, per-child cap and expiry."""

    __tablename__ = "rewards"
    __table_args__ = (
        CheckConstraint("points_cost > 0", name="rewards_points_cost_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    family_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    points_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    max_redemptions_per_child: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_redemptions_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class Redemption(Base):
    """A child's claim against a reward; always paired with its ledger debit."""

    __tablename__ = "redemptions"
    __table_args__ = (
        Index("idx_redemptions_reward_status", "reward_id", "status"),
        Index("idx_redemptions_child_reward", "child_id", "reward_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reward_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("rewards.id"), nullable=False)
    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("child_progress.child_id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RedemptionStatus.PENDING.value)
    points_spent: Mapped[int] = mapped_column(Integer, nullable=False)
    debit_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ledger_entries.id"), nullable=True
    )
    refund_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ledger_entries.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    reward: Mapped[Reward] = relationship("Reward", lazy="selectin")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class Task(Base):
    """A chore definition; children receive it through TaskAssignment rows."""

    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    family_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    task_tag: Mapped[str] = mapped_column(String(16), nullable=False, default=TaskTag.PRIMARY.value)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, default=TaskDifficulty.MEDIUM.value)
    points_value: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    assignments: Mapped[list[TaskAssignment]] = relationship(
        "TaskAssignment", back_populates="task", lazy="selectin"
    )


class TaskAssignment(Base):
    """One child's instance of a task on a given date."""

    __tablename__ = "task_assignments"
    __table_args__ = (
        Index("idx_task_assignments_child_date", "child_id", "instance_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    task_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("child_progress.child_id"), nullable=False
    )
    instance_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    estimated_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=AssignmentStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    task: Mapped[Task] = relationship("Task", back_populates="assignments", lazy="selectin")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted copy of a published domain event for the in-app bell."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_child_created", "child_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    child_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Achievement catalog entry, seeded on startup."""

    __tablename__ = "achievements"

    slug: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(256), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    criteria_type: Mapped[str] = mapped_column(String(32), nullable=False)
    criteria_value: Mapped[int] = mapped_column(Integer, nullable=False)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ChildAchievement(Base):
    """Achievements unlocked by a child. UNIQUE(child_id, achievement_slug) keeps each unlock single."""

    __tablename__ = "child_achievements"
    __table_args__ = (
        UniqueConstraint("child_id", "achievement_slug", name="child_achievements_child_slug_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("child_progress.child_id"), nullable=False
    )
    achievement_slug: Mapped[str] = mapped_column(String(64), ForeignKey("achievements.slug"), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    ledger_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ledger_entries.id"), nullable=True
    )

    achievement: Mapped[Achievement] = relationship("Achievement", lazy="selectin")
