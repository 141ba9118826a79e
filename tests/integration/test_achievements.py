"""Achievement catalog: seeding, unlocks inside approvals and redemptions."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from taskbuddy.db.models import Achievement, ChildAchievement, LedgerEntry
from taskbuddy.errors import ChildNotFound
from taskbuddy.events.emitter import EventName
from taskbuddy.gamification.achievement_service import list_child_achievements
from taskbuddy.gamification.approval_service import ApprovalEvent, ApprovalService
from taskbuddy.gamification.seed import ACHIEVEMENT_SEED_DATA, seed_achievements

DAY_ONE = datetime(2026, 5, 4, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def approvals(store) -> ApprovalService:
    return ApprovalService(store)


def _approval(child_id: uuid.UUID, points: int, xp: int) -> ApprovalEvent:
    return ApprovalEvent(
        child_id=child_id,
        task_assignment_id=uuid.uuid4(),
        points_amount=points,
        xp_amount=xp,
        completed_at=DAY_ONE,
    )


async def _achievement_entries(session_factory, child_id: uuid.UUID) -> list[LedgerEntry]:
    async with session_factory() as db:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.child_id == child_id, LedgerEntry.reference_type == "achievement")
            .order_by(LedgerEntry.sequence)
        )
        return list(result.scalars().all())


async def _unlock_count(session_factory, child_id: uuid.UUID) -> int:
    async with session_factory() as db:
        result = await db.execute(
            select(func.count()).select_from(ChildAchievement).where(ChildAchievement.child_id == child_id)
        )
        return result.scalar_one()


class TestSeed:
    @pytest.mark.asyncio
    async def test_seeding_twice_keeps_one_row_per_slug(self, db_session):
        await seed_achievements(db_session)
        await seed_achievements(db_session)

        count = (await db_session.execute(select(func.count()).select_from(Achievement))).scalar_one()
        assert count == len(ACHIEVEMENT_SEED_DATA) == 16

    @pytest.mark.asyncio
    async def test_reseeding_refreshes_changed_rows(self, db_session, catalog):
        row = await db_session.get(Achievement, "first_step")
        row.points_reward = 999
        await db_session.commit()

        await seed_achievements(db_session)
        await db_session.refresh(row)
        assert row.points_reward == 10


class TestUnlockOnApproval:
    @pytest.mark.asyncio
    async def test_first_task_unlocks_first_step(self, approvals, store, make_child, emitter, session_factory, catalog):
        child_id = await make_child()

        outcome = await approvals.apply_approval(_approval(child_id, points=20, xp=15))

        assert outcome.achievements == ("First Step",)
        assert outcome.new_balance == 20 + 10
        balance = await store.get_balance(child_id)
        assert balance.points_balance == 30
        assert balance.total_xp_earned == 15 + 25

        [entry] = await _achievement_entries(session_factory, child_id)
        assert entry.transaction_type == "bonus"
        assert entry.reference_id == "first_step"
        assert entry.details == {
            "kind": "achievement",
            "achievement_slug": "first_step",
            "achievement_name": "First Step",
        }
        assert entry.description == "Achievement bonus: First Step"

        unlocked = emitter.named(EventName.ACHIEVEMENT_UNLOCKED)
        assert [e.data["achievementName"] for e in unlocked] == ["First Step"]
        assert emitter.named(EventName.POINTS_UPDATED)[-1].data["delta"] == 30

    @pytest.mark.asyncio
    async def test_achievement_unlocks_once(self, approvals, make_child, emitter, session_factory, catalog):
        child_id = await make_child()

        await approvals.apply_approval(_approval(child_id, points=20, xp=15))
        second = await approvals.apply_approval(_approval(child_id, points=20, xp=15))

        assert second.achievements == ()
        assert second.new_balance == 20 + 10 + 20
        assert len(emitter.named(EventName.ACHIEVEMENT_UNLOCKED)) == 1
        assert await _unlock_count(session_factory, child_id) == 1
        assert len(await _achievement_entries(session_factory, child_id)) == 1

    @pytest.mark.asyncio
    async def test_rewards_can_unlock_further_achievements(self, approvals, store, make_child, session_factory, catalog):
        child_id = await make_child()

        # 95 earned + 10 from First Step crosses the 100 point threshold of Saver.
        outcome = await approvals.apply_approval(_approval(child_id, points=95, xp=90))

        assert outcome.achievements == ("First Step", "Saver")
        # 90 + 25 + 20 XP reaches level 2; one level bonus covers it.
        assert outcome.level_up.old_level == 1
        assert outcome.level_up.new_level == 2
        assert outcome.level_up.bonus_points_awarded == 10
        assert outcome.new_balance == 95 + 10 + 10 + 10

        balance = await store.get_balance(child_id)
        assert balance.total_xp_earned == 135
        assert balance.level == 2
        assert (await store.replay(child_id)).consistent

    @pytest.mark.asyncio
    async def test_empty_catalog_unlocks_nothing(self, approvals, make_child, emitter, session_factory):
        child_id = await make_child()

        outcome = await approvals.apply_approval(_approval(child_id, points=20, xp=15))

        assert outcome.achievements == ()
        assert outcome.new_balance == 20
        assert emitter.named(EventName.ACHIEVEMENT_UNLOCKED) == []
        assert await _unlock_count(session_factory, child_id) == 0

    @pytest.mark.asyncio
    async def test_inactive_achievement_is_skipped(self, approvals, make_child, db_session, session_factory, catalog):
        row = await db_session.get(Achievement, "first_step")
        row.is_active = False
        await db_session.commit()
        child_id = await make_child()

        outcome = await approvals.apply_approval(_approval(child_id, points=20, xp=15))

        assert outcome.achievements == ()
        assert await _unlock_count(session_factory, child_id) == 0


class TestUnlockOnRedemption:
    @pytest.mark.asyncio
    async def test_first_redemption_unlocks_first_reward(
        self, engine, store, make_child, make_reward, emitter, session_factory, catalog
    ):
        child_id = await make_child(balance=60)
        reward = await make_reward(points_cost=50)

        result = await engine.redeem(child_id, reward.id)

        assert result.achievements == ("First Reward",)
        assert result.new_balance == 60 - 50 + 15
        assert (await store.get_balance(child_id)).points_balance == 25

        [entry] = await _achievement_entries(session_factory, child_id)
        assert entry.details["achievement_slug"] == "first_reward"
        reasons = [e.data["reason"] for e in emitter.named(EventName.POINTS_UPDATED)]
        assert reasons[-2:] == ["redeemed", "achievement"]
        assert [e.data["achievementName"] for e in emitter.named(EventName.ACHIEVEMENT_UNLOCKED)] == ["First Reward"]

    @pytest.mark.asyncio
    async def test_second_redemption_unlocks_nothing(self, engine, make_child, make_reward, catalog):
        child_id = await make_child(balance=70)
        reward = await make_reward(points_cost=20)

        await engine.redeem(child_id, reward.id)
        second = await engine.redeem(child_id, reward.id)

        assert second.achievements == ()
        assert second.new_balance == 70 - 20 + 15 - 20


class TestListChildAchievements:
    @pytest.mark.asyncio
    async def test_reports_unlock_state_and_progress(self, approvals, make_child, db_session, catalog):
        child_id = await make_child()
        await approvals.apply_approval(_approval(child_id, points=20, xp=15))

        statuses = await list_child_achievements(db_session, child_id)

        assert len(statuses) == 16
        by_slug = {s.achievement.slug: s for s in statuses}
        assert by_slug["first_step"].unlocked
        assert by_slug["first_step"].current_value == 1
        assert not by_slug["getting_started"].unlocked
        assert by_slug["saver"].current_value == 30
        assert [s.achievement.slug for s in statuses][0] == "first_step"

    @pytest.mark.asyncio
    async def test_unknown_child(self, db_session, catalog):
        with pytest.raises(ChildNotFound):
            await list_child_achievements(db_session, uuid.uuid4())
