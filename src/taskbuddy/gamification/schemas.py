"""Pydantic models for approval, level and progress endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import AwareDatetime, BaseModel, Field


# --- Approval ---


class ApprovalRequest(BaseModel):
    child_id: uuid.UUID
    task_assignment_id: uuid.UUID
    points_amount: int | None = Field(default=None, ge=0)
    xp_amount: int | None = Field(default=None, ge=0)
    completed_at: AwareDatetime | None = None


class LevelUpResponse(BaseModel):
    old_level: int
    new_level: int
    bonus_points_awarded: int


class StreakUpdateResponse(BaseModel):
    current_streak: int
    is_new_record: bool
    milestone: int | None = None
    bonus_points_awarded: int = 0


class ApprovalResponse(BaseModel):
    points_awarded: int
    xp_awarded: int
    new_balance: int
    level_up: LevelUpResponse | None = None
    streak_updated: StreakUpdateResponse | None = None
    duplicate: bool = False
    achievements_unlocked: list[str] = []


# --- Levels ---


class LevelEntry(BaseModel):
    level: int
    xp_required: int
    cumulative: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]
    max_level: int


# --- Progress ---


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_activity_at: datetime | None = None
    at_risk: bool
    next_milestone: int | None = None
    grace_period_hours: int


class ProgressResponse(BaseModel):
    child_id: uuid.UUID
    level: int
    total_xp: int
    xp_into_level: int
    xp_for_level: int
    xp_to_next_level: int
    progress: float
    is_max_level: bool
    points_balance: int
    total_points_earned: int
    streak: StreakResponse


# --- Achievements ---


class AchievementResponse(BaseModel):
    slug: str
    name: str
    description: str
    category: str
    tier: str
    criteria_type: str
    criteria_value: int
    current_value: int
    points_reward: int
    xp_reward: int
    unlocked: bool
    unlocked_at: datetime | None = None


class AchievementSummary(BaseModel):
    total: int
    unlocked: int
    total_points_earned: int
    total_xp_earned: int


class ChildAchievementsResponse(BaseModel):
    child_id: uuid.UUID
    achievements: list[AchievementResponse]
    stats: AchievementSummary
