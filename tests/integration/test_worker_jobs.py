"""Scheduled jobs run against a ready-made worker context."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from taskbuddy.db.models import Notification, Reward
from taskbuddy.events.emitter import DomainEvent, EventEmitter, EventName
from taskbuddy.gamification.approval_service import ApprovalEvent, ApprovalService
from taskbuddy.workers.jobs import audit_ledgers, deactivate_rewards, warn_streaks_at_risk

NOW = datetime(2026, 7, 15, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def ctx(store, engine, emitter) -> dict:
    return {"store": store, "engine": engine, "emitter": emitter}


async def _complete(store, child_id: uuid.UUID, at: datetime) -> None:
    await ApprovalService(store).apply_approval(ApprovalEvent(
        child_id=child_id,
        task_assignment_id=uuid.uuid4(),
        points_amount=10,
        xp_amount=5,
        completed_at=at,
    ))


class TestWarnStreaksAtRisk:
    @pytest.mark.asyncio
    async def test_only_children_without_a_completion_today(self, ctx, store, make_child, emitter):
        idle = await make_child("Ava")
        busy = await make_child("Ben")
        await make_child("Cal")
        await _complete(store, idle, NOW - timedelta(days=1))
        await _complete(store, busy, NOW - timedelta(days=1))
        await _complete(store, busy, NOW - timedelta(hours=2))
        emitter.events.clear()

        warned = await warn_streaks_at_risk(ctx, now=NOW)

        assert warned == 1
        events = emitter.named(EventName.STREAK_AT_RISK)
        assert [e.child_id for e in events] == [idle]
        assert events[0].data == {"streakDays": 1}

    @pytest.mark.asyncio
    async def test_broken_streak_not_warned(self, ctx, store, make_child, emitter):
        child_id = await make_child()
        await _complete(store, child_id, NOW - timedelta(days=4))
        emitter.events.clear()

        assert await warn_streaks_at_risk(ctx, now=NOW) == 0
        assert emitter.events == []


class TestDeactivateRewards:
    @pytest.mark.asyncio
    async def test_expired_reward_switched_off(self, ctx, make_reward, session_factory):
        expired = await make_reward(expires_at=datetime.now(timezone.utc) - timedelta(days=2))
        await make_reward()

        assert await deactivate_rewards(ctx) == 1
        async with session_factory() as db:
            assert not (await db.get(Reward, expired.id)).is_active


class TestAuditLedgers:
    @pytest.mark.asyncio
    async def test_clean_ledgers(self, ctx, store, make_child):
        child_id = await make_child(balance=25)
        await _complete(store, child_id, NOW)
        await make_child("Ben")

        assert await audit_ledgers(ctx) == 0


class TestNotificationStore:
    @pytest.mark.asyncio
    async def test_events_copied_to_notifications(self, session_factory):
        child_id = uuid.uuid4()
        emitter = EventEmitter(session_factory=session_factory)

        await emitter.emit(
            DomainEvent.streak_milestone(child_id, 7, 35),
            DomainEvent.achievement_unlocked(child_id, "7-Day Streak"),
        )

        async with session_factory() as db:
            result = await db.execute(
                select(Notification).where(Notification.child_id == child_id).order_by(Notification.type)
            )
            rows = result.scalars().all()
        assert [(n.type, n.title) for n in rows] == [
            ("achievement:unlocked", "Achievement Unlocked"),
            ("streak:milestone", "Streak Milestone"),
        ]
        milestone = rows[1]
        assert milestone.description == "7-day streak! Bonus 35 points"
        assert milestone.payload == {"childId": str(child_id), "streakDays": 7, "bonusPoints": 35}
        assert not milestone.is_read
