"""Task approval: points + XP, streak, achievements and level-up bonus in one commit.

Approving a task assignment:
1. Append an ``earned`` entry (idempotency key ``task:{assignment_id}``)
2. Evaluate the daily streak with the family's grace period; on a
   milestone day append a streak ``milestone_bonus``
3. Unlock any achievements the new totals qualify for
4. If the level rose, append one ``milestone_bonus`` covering every level
   gained
5. Commit, then emit points/level/streak/achievement events
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from taskbuddy.children.service import get_family_settings
from taskbuddy.db.models import AssignmentStatus, TaskAssignment
from taskbuddy.errors import InvalidTransaction
from taskbuddy.events.emitter import DomainEvent
from taskbuddy.gamification.achievement_service import unlock_achievements
from taskbuddy.gamification.level_thresholds import task_xp_for_difficulty
from taskbuddy.gamification.streak_service import evaluate_streak
from taskbuddy.ledger.store import LedgerStore
from taskbuddy.ledger.transactions import (
    LedgerReference,
    StreakMilestoneDetail,
    TransactionType,
)

logger = logging.getLogger(__name__)

APPROVABLE_STATUSES = frozenset({
    AssignmentStatus.PENDING.value,
    AssignmentStatus.IN_PROGRESS.value,
    AssignmentStatus.COMPLETED.value,
})


@dataclass(frozen=True)
class ApprovalEvent:
    child_id: uuid.UUID
    task_assignment_id: uuid.UUID
    points_amount: int
    xp_amount: int
    completed_at: datetime | None = None
    description: str | None = None


@dataclass(frozen=True)
class LevelUpResult:
    old_level: int
    new_level: int
    bonus_points_awarded: int


@dataclass(frozen=True)
class StreakResult:
    current_streak: int
    is_new_record: bool
    milestone: int | None = None
    bonus_points_awarded: int = 0


@dataclass(frozen=True)
class ApprovalOutcome:
    points_awarded: int
    xp_awarded: int
    new_balance: int
    level_up: LevelUpResult | None = None
    streak_updated: StreakResult | None = None
    duplicate: bool = False
    achievements: tuple[str, ...] = ()


def idempotency_key_for(task_assignment_id: uuid.UUID) -> str:
    return f"task:{task_assignment_id}"


class ApprovalService:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    async def approve_assignment(
        self,
        child_id: uuid.UUID,
        task_assignment_id: uuid.UUID,
        points_amount: int | None = None,
        xp_amount: int | None = None,
        completed_at: datetime | None = None,
    ) -> ApprovalOutcome:
        """Approve using the task's points value and difficulty XP unless overridden."""
        title = None
        if points_amount is None or xp_amount is None:
            async with self.store.session_factory() as session:
                assignment = await session.get(TaskAssignment, task_assignment_id)
                if assignment is None:
                    raise InvalidTransaction(
                        "Points and XP are required when approving an unknown task assignment."
                    )
                task = assignment.task
                title = task.title
                if points_amount is None:
                    points_amount = task.points_value
                if xp_amount is None:
                    xp_amount = task_xp_for_difficulty(task.difficulty)

        return await self.apply_approval(ApprovalEvent(
            child_id=child_id,
            task_assignment_id=task_assignment_id,
            points_amount=points_amount,
            xp_amount=xp_amount,
            completed_at=completed_at,
            description=f"Completed: {title}" if title else None,
        ))

    async def apply_approval(self, event: ApprovalEvent) -> ApprovalOutcome:
        """Credit an approved task. Re-approving the same assignment is a no-op."""
        child_id = event.child_id
        completed_at = event.completed_at or datetime.now(timezone.utc)
        key = idempotency_key_for(event.task_assignment_id)

        async with self.store.unit_of_work(child_id) as uow:
            assignment = await uow.session.get(TaskAssignment, event.task_assignment_id)
            if assignment is not None and assignment.child_id != child_id:
                raise InvalidTransaction("This task assignment belongs to another child.")

            existing = await uow.find_by_idempotency_key(key)
            if existing is not None:
                logger.info("Assignment %s already credited, skipping", event.task_assignment_id)
                return ApprovalOutcome(
                    points_awarded=existing.points_amount,
                    xp_awarded=existing.xp_amount,
                    new_balance=uow.progress.points_balance,
                    duplicate=True,
                )
            if assignment is not None and assignment.status not in APPROVABLE_STATUSES:
                raise InvalidTransaction(f"Cannot approve a task assignment that is {assignment.status}.")

            progress = uow.progress
            old_level = progress.level
            starting_balance = progress.points_balance

            await uow.append(
                TransactionType.EARNED,
                event.points_amount,
                event.xp_amount,
                LedgerReference.task_assignment(event.task_assignment_id),
                description=event.description,
                idempotency_key=key,
            )

            family = await get_family_settings(uow.session, progress.family_id)
            update = evaluate_streak(uow.streak_state, completed_at, family.streak_grace_period_hours)
            uow.record_activity(update)

            streak = None
            if update.changed:
                streak = StreakResult(
                    current_streak=update.current_streak_days,
                    is_new_record=update.is_new_record,
                    milestone=update.milestone,
                    bonus_points_awarded=update.milestone_bonus_points,
                )
            if update.milestone:
                await uow.append(
                    TransactionType.MILESTONE_BONUS,
                    update.milestone_bonus_points,
                    0,
                    LedgerReference.streak_milestone(child_id),
                    details=StreakMilestoneDetail(streak_days=update.milestone),
                    description=f"{update.milestone}-day streak",
                )
                uow.emit(DomainEvent.streak_milestone(child_id, update.milestone, update.milestone_bonus_points))

            unlocked = await unlock_achievements(uow)

            # Settled last so the bonus also covers levels gained from achievement XP.
            level_up = None
            bonus = await uow.settle_level_up(old_level)
            if bonus:
                level_up = LevelUpResult(old_level, progress.level, bonus)

            if assignment is not None:
                assignment.status = AssignmentStatus.APPROVED.value

            new_balance = progress.points_balance
            delta = new_balance - starting_balance
            if delta:
                uow.emit(DomainEvent.points_updated(child_id, new_balance, delta, "task_approved"))

        logger.info(
            "Approved assignment %s for child %s: +%d points, +%d XP, balance %d",
            event.task_assignment_id, child_id, event.points_amount, event.xp_amount, new_balance,
        )
        return ApprovalOutcome(
            points_awarded=event.points_amount,
            xp_awarded=event.xp_amount,
            new_balance=new_balance,
            level_up=level_up,
            streak_updated=streak,
            achievements=tuple(a.name for a in unlocked),
        )
