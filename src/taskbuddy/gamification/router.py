"""Gamification API endpoints: task approval, level curve, achievements."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.database import get_session
from taskbuddy.dependencies import get_approval_service
from taskbuddy.gamification.achievement_service import list_child_achievements
from taskbuddy.gamification.approval_service import ApprovalService
from taskbuddy.gamification.level_thresholds import LEVEL_THRESHOLDS, MAX_LEVEL
from taskbuddy.gamification.schemas import (
    AchievementResponse,
    AchievementSummary,
    AllLevelsResponse,
    ApprovalRequest,
    ApprovalResponse,
    ChildAchievementsResponse,
    LevelEntry,
    LevelUpResponse,
    StreakUpdateResponse,
)
from taskbuddy.ledger.retry import retry_on_conflict

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


@router.post("/approvals", response_model=ApprovalResponse)
async def approve_task(
    body: ApprovalRequest,
    service: ApprovalService = Depends(get_approval_service),
) -> ApprovalResponse:
    """Credit an approved task assignment.

    Points and XP default to the task's points value and difficulty XP.
    Approving the same assignment twice credits it once.
    """
    outcome = await retry_on_conflict(lambda: service.approve_assignment(
        body.child_id,
        body.task_assignment_id,
        points_amount=body.points_amount,
        xp_amount=body.xp_amount,
        completed_at=body.completed_at,
    ))

    level_up = None
    if outcome.level_up:
        level_up = LevelUpResponse(
            old_level=outcome.level_up.old_level,
            new_level=outcome.level_up.new_level,
            bonus_points_awarded=outcome.level_up.bonus_points_awarded,
        )
    streak = None
    if outcome.streak_updated:
        streak = StreakUpdateResponse(
            current_streak=outcome.streak_updated.current_streak,
            is_new_record=outcome.streak_updated.is_new_record,
            milestone=outcome.streak_updated.milestone,
            bonus_points_awarded=outcome.streak_updated.bonus_points_awarded,
        )
    return ApprovalResponse(
        points_awarded=outcome.points_awarded,
        xp_awarded=outcome.xp_awarded,
        new_balance=outcome.new_balance,
        level_up=level_up,
        streak_updated=streak,
        duplicate=outcome.duplicate,
        achievements_unlocked=list(outcome.achievements),
    )


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels() -> AllLevelsResponse:
    """The full level curve."""
    return AllLevelsResponse(
        levels=[LevelEntry(**t) for t in LEVEL_THRESHOLDS],
        max_level=MAX_LEVEL,
    )


@router.get("/children/{child_id}/achievements", response_model=ChildAchievementsResponse)
async def child_achievements(
    child_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
) -> ChildAchievementsResponse:
    """The achievement catalog with this child's unlocks and progress toward each."""
    statuses = await list_child_achievements(db, child_id)
    unlocked = [s.achievement for s in statuses if s.unlocked]
    return ChildAchievementsResponse(
        child_id=child_id,
        achievements=[
            AchievementResponse(
                slug=s.achievement.slug,
                name=s.achievement.name,
                description=s.achievement.description,
                category=s.achievement.category,
                tier=s.achievement.tier,
                criteria_type=s.achievement.criteria_type,
                criteria_value=s.achievement.criteria_value,
                current_value=s.current_value,
                points_reward=s.achievement.points_reward,
                xp_reward=s.achievement.xp_reward,
                unlocked=s.unlocked,
                unlocked_at=s.unlocked_at,
            )
            for s in statuses
        ],
        stats=AchievementSummary(
            total=len(statuses),
            unlocked=len(unlocked),
            total_points_earned=sum(a.points_reward for a in unlocked),
            total_xp_earned=sum(a.xp_reward for a in unlocked),
        ),
    )
