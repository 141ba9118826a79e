"""Achievement engine: unlock catalog entries from a child's running totals.

Called inside the approval and redemption units of work, after their own
entries are written. Each unlock records a ``child_achievements`` row,
posts the achievement's points/XP as a ``bonus`` entry and queues one
``achievement:unlocked`` event.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.db.models import (
    Achievement,
    ChildAchievement,
    ChildProgress,
    LedgerEntry,
    Redemption,
    RedemptionStatus,
)
from taskbuddy.errors import ChildNotFound
from taskbuddy.events.emitter import DomainEvent
from taskbuddy.ledger.store import ChildUnitOfWork
from taskbuddy.ledger.transactions import AchievementDetail, LedgerReference, TransactionType

logger = logging.getLogger(__name__)


class CriteriaType(StrEnum):
    TASKS_COMPLETED = "tasks_completed"
    STREAK_DAYS = "streak_days"
    POINTS_EARNED = "points_earned"
    LEVEL_REACHED = "level_reached"
    REWARDS_REDEEMED = "rewards_redeemed"


@dataclass(frozen=True)
class ChildStats:
    tasks_completed: int
    current_streak_days: int
    longest_streak_days: int
    total_points_earned: int
    level: int
    rewards_redeemed: int

    def value_for(self, criteria_type: str) -> int | None:
        """The running total a criteria type is measured against."""
        if criteria_type == CriteriaType.TASKS_COMPLETED:
            return self.tasks_completed
        if criteria_type == CriteriaType.STREAK_DAYS:
            return max(self.current_streak_days, self.longest_streak_days)
        if criteria_type == CriteriaType.POINTS_EARNED:
            return self.total_points_earned
        if criteria_type == CriteriaType.LEVEL_REACHED:
            return self.level
        if criteria_type == CriteriaType.REWARDS_REDEEMED:
            return self.rewards_redeemed
        return None


def criteria_met(criteria_type: str, criteria_value: int, stats: ChildStats) -> bool:
    """Unknown criteria types never unlock."""
    value = stats.value_for(criteria_type)
    return value is not None and value >= criteria_value


@dataclass(frozen=True)
class UnlockedAchievement:
    slug: str
    name: str
    points_reward: int
    xp_reward: int


async def load_child_stats(db: AsyncSession, progress: ChildProgress) -> ChildStats:
    tasks = await db.execute(
        select(func.count())
        .select_from(LedgerEntry)
        .where(
            LedgerEntry.child_id == progress.child_id,
            LedgerEntry.transaction_type == TransactionType.EARNED.value,
        )
    )
    redeemed = await db.execute(
        select(func.count())
        .select_from(Redemption)
        .where(
            Redemption.child_id == progress.child_id,
            Redemption.status != RedemptionStatus.CANCELLED.value,
        )
    )
    return ChildStats(
        tasks_completed=tasks.scalar_one(),
        current_streak_days=progress.current_streak_days,
        longest_streak_days=progress.longest_streak_days,
        total_points_earned=progress.total_points_earned,
        level=progress.level,
        rewards_redeemed=redeemed.scalar_one(),
    )


async def _catalog(db: AsyncSession) -> list[Achievement]:
    result = await db.execute(
        select(Achievement).where(Achievement.is_active.is_(True)).order_by(Achievement.sort_order)
    )
    return list(result.scalars().all())


async def _unlocked_slugs(db: AsyncSession, child_id: uuid.UUID) -> dict[str, ChildAchievement]:
    result = await db.execute(select(ChildAchievement).where(ChildAchievement.child_id == child_id))
    return {row.achievement_slug: row for row in result.scalars().all()}


async def unlock_achievements(uow: ChildUnitOfWork) -> list[UnlockedAchievement]:
    """Unlock every achievement the child now qualifies for.

    Rewards can raise the level or the points total enough to satisfy
    another entry, so the check repeats until a pass unlocks nothing.
    """
    catalog = await _catalog(uow.session)
    if not catalog:
        return []
    held = set(await _unlocked_slugs(uow.session, uow.child_id))

    unlocked: list[UnlockedAchievement] = []
    while True:
        stats = await load_child_stats(uow.session, uow.progress)
        due = [
            a for a in catalog
            if a.slug not in held and criteria_met(a.criteria_type, a.criteria_value, stats)
        ]
        if not due:
            return unlocked
        for achievement in due:
            unlocked.append(await _unlock(uow, achievement))
            held.add(achievement.slug)


async def _unlock(uow: ChildUnitOfWork, achievement: Achievement) -> UnlockedAchievement:
    entry = None
    if achievement.points_reward or achievement.xp_reward:
        entry = await uow.append(
            TransactionType.BONUS,
            achievement.points_reward,
            achievement.xp_reward,
            LedgerReference.achievement(achievement.slug),
            details=AchievementDetail(achievement_slug=achievement.slug, achievement_name=achievement.name),
            description=f"Achievement bonus: {achievement.name}",
            idempotency_key=f"achievement:{achievement.slug}:{uow.child_id}",
        )
    uow.session.add(ChildAchievement(
        id=uuid.uuid4(),
        child_id=uow.child_id,
        achievement_slug=achievement.slug,
        unlocked_at=datetime.now(timezone.utc),
        ledger_entry_id=entry.id if entry else None,
    ))
    await uow.session.flush()
    uow.emit(DomainEvent.achievement_unlocked(uow.child_id, achievement.name))
    logger.info("Child %s unlocked achievement %s", uow.child_id, achievement.slug)
    return UnlockedAchievement(achievement.slug, achievement.name, achievement.points_reward, achievement.xp_reward)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AchievementStatus:
    achievement: Achievement
    unlocked_at: datetime | None
    current_value: int

    @property
    def unlocked(self) -> bool:
        return self.unlocked_at is not None


async def list_child_achievements(db: AsyncSession, child_id: uuid.UUID) -> list[AchievementStatus]:
    """The active catalog with this child's unlock state and running totals."""
    progress = await db.get(ChildProgress, child_id)
    if progress is None:
        raise ChildNotFound(child_id)
    stats = await load_child_stats(db, progress)
    held = await _unlocked_slugs(db, child_id)
    return [
        AchievementStatus(
            achievement=a,
            unlocked_at=held[a.slug].unlocked_at if a.slug in held else None,
            current_value=stats.value_for(a.criteria_type) or 0,
        )
        for a in await _catalog(db)
    ]
