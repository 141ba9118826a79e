"""Redemption engine: caps, expiry, balance, lifecycle and races."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from taskbuddy.db.models import LedgerEntry, Reward
from taskbuddy.errors import (
    InsufficientBalance,
    InvalidRedemptionState,
    PerChildLimitReached,
    RedemptionNotFound,
    RewardExpired,
    RewardInactive,
    RewardNotFound,
    SoldOut,
)
from taskbuddy.events.emitter import EventName
from taskbuddy.rewards.service import RedemptionResult


class TestRedeem:
    @pytest.mark.asyncio
    async def test_per_child_limit(self, engine, store, make_child, make_reward):
        child_id = await make_child(balance=60)
        reward = await make_reward(points_cost=50, max_redemptions_per_child=1)

        result = await engine.redeem(child_id, reward.id)
        assert result.status == "pending"
        assert result.new_balance == 10

        with pytest.raises(PerChildLimitReached):
            await engine.redeem(child_id, reward.id)
        assert (await store.get_balance(child_id)).points_balance == 10

    @pytest.mark.asyncio
    async def test_debit_and_redemption_share_a_commit(self, engine, make_child, make_reward, session_factory):
        child_id = await make_child(balance=100)
        reward = await make_reward(points_cost=40, name="Ice cream")

        result = await engine.redeem(child_id, reward.id)

        async with session_factory() as db:
            entries = await db.execute(
                select(LedgerEntry).where(
                    LedgerEntry.child_id == child_id, LedgerEntry.transaction_type == "redeemed"
                )
            )
            debit = entries.scalar_one()
        assert debit.points_amount == -40
        assert debit.reference_type == "redemption"
        assert debit.reference_id == str(result.redemption_id)
        assert debit.details["reward_name"] == "Ice cream"

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, engine, store, make_child, make_reward):
        child_id = await make_child(balance=30)
        reward = await make_reward(points_cost=50)

        with pytest.raises(InsufficientBalance) as exc_info:
            await engine.redeem(child_id, reward.id)
        assert "You have 30 but need 50" in exc_info.value.message
        assert (await store.get_balance(child_id)).points_balance == 30

    @pytest.mark.asyncio
    async def test_expired(self, engine, make_child, make_reward):
        child_id = await make_child(balance=100)
        reward = await make_reward(expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
        with pytest.raises(RewardExpired):
            await engine.redeem(child_id, reward.id)

    @pytest.mark.asyncio
    async def test_inactive(self, engine, make_child, make_reward, session_factory):
        child_id = await make_child(balance=100)
        reward = await make_reward()
        async with session_factory() as db:
            row = await db.get(Reward, reward.id)
            row.is_active = False
            await db.commit()
        with pytest.raises(RewardInactive):
            await engine.redeem(child_id, reward.id)

    @pytest.mark.asyncio
    async def test_other_family_reward_not_found(self, engine, make_child, make_reward):
        child_id = await make_child(balance=100)
        reward = await make_reward(family=uuid.uuid4())
        with pytest.raises(RewardNotFound):
            await engine.redeem(child_id, reward.id)

    @pytest.mark.asyncio
    async def test_sold_out_checked_before_balance(self, engine, make_child, make_reward):
        rich = await make_child("Ava", balance=100)
        poor = await make_child("Ben", balance=0)
        reward = await make_reward(points_cost=50, max_redemptions_total=1)
        await engine.redeem(rich, reward.id)

        with pytest.raises(SoldOut):
            await engine.redeem(poor, reward.id)

    @pytest.mark.asyncio
    async def test_concurrent_last_slot_goes_to_one_child(self, engine, store, make_child, make_reward):
        ava = await make_child("Ava", balance=100)
        ben = await make_child("Ben", balance=100)
        reward = await make_reward(points_cost=50, max_redemptions_total=1)

        results = await asyncio.gather(
            engine.redeem(ava, reward.id),
            engine.redeem(ben, reward.id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, RedemptionResult) for r in results) == 1
        assert sum(isinstance(r, SoldOut) for r in results) == 1
        balances = sorted([
            (await store.get_balance(ava)).points_balance,
            (await store.get_balance(ben)).points_balance,
        ])
        assert balances == [50, 100]

    @pytest.mark.asyncio
    async def test_concurrent_redemptions_never_overdraw(self, engine, store, make_child, make_reward):
        child_id = await make_child(balance=100)
        first = await make_reward(points_cost=60, name="Cinema")
        second = await make_reward(points_cost=60, name="Bowling")

        results = await asyncio.gather(
            engine.redeem(child_id, first.id),
            engine.redeem(child_id, second.id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, InsufficientBalance) for r in results) == 1
        assert (await store.get_balance(child_id)).points_balance == 40
        assert (await store.replay(child_id)).consistent


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_cancel_pending_refunds(self, engine, store, make_child, make_reward):
        child_id = await make_child(balance=140)
        reward = await make_reward(points_cost=100)
        result = await engine.redeem(child_id, reward.id)
        assert result.new_balance == 40

        cancelled = await engine.cancel(result.redemption_id, performed_by="mum")

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_at is not None
        assert cancelled.refund_entry_id is not None
        assert (await store.get_balance(child_id)).points_balance == 140

    @pytest.mark.asyncio
    async def test_cancel_frees_the_slot(self, engine, make_child, make_reward):
        child_id = await make_child(balance=200)
        reward = await make_reward(points_cost=50, max_redemptions_per_child=1, max_redemptions_total=1)
        result = await engine.redeem(child_id, reward.id)
        await engine.cancel(result.redemption_id)

        again = await engine.redeem(child_id, reward.id)
        assert again.status == "pending"

    @pytest.mark.asyncio
    async def test_cancel_twice_rejected(self, engine, store, make_child, make_reward):
        child_id = await make_child(balance=100)
        reward = await make_reward(points_cost=50)
        result = await engine.redeem(child_id, reward.id)
        await engine.cancel(result.redemption_id)

        with pytest.raises(InvalidRedemptionState):
            await engine.cancel(result.redemption_id)
        assert (await store.get_balance(child_id)).points_balance == 100

    @pytest.mark.asyncio
    async def test_approve_then_fulfill(self, engine, make_child, make_reward, emitter):
        child_id = await make_child(balance=100)
        reward = await make_reward(points_cost=50, name="Sleepover")
        result = await engine.redeem(child_id, reward.id)

        approved = await engine.approve(result.redemption_id)
        assert approved.status == "approved"
        assert approved.approved_at is not None

        fulfilled = await engine.fulfill(result.redemption_id)
        assert fulfilled.status == "fulfilled"

        events = emitter.named(EventName.REDEMPTION_FULFILLED)
        assert events[-1].data == {"redemptionId": str(result.redemption_id), "rewardName": "Sleepover"}

        with pytest.raises(InvalidRedemptionState):
            await engine.cancel(result.redemption_id)

    @pytest.mark.asyncio
    async def test_cancel_approved_refunds(self, engine, store, make_child, make_reward):
        child_id = await make_child(balance=100)
        reward = await make_reward(points_cost=30)
        result = await engine.redeem(child_id, reward.id)
        await engine.approve(result.redemption_id)

        await engine.cancel(result.redemption_id)
        assert (await store.get_balance(child_id)).points_balance == 100

    @pytest.mark.asyncio
    async def test_fulfill_requires_approval(self, engine, make_child, make_reward):
        child_id = await make_child(balance=100)
        reward = await make_reward(points_cost=30)
        result = await engine.redeem(child_id, reward.id)

        with pytest.raises(InvalidRedemptionState):
            await engine.fulfill(result.redemption_id)

    @pytest.mark.asyncio
    async def test_unknown_redemption(self, engine):
        with pytest.raises(RedemptionNotFound):
            await engine.approve(uuid.uuid4())


class TestAvailabilityAndMaintenance:
    @pytest.mark.asyncio
    async def test_availability_for_child(self, engine, make_child, make_reward):
        child_id = await make_child(balance=60)
        reward = await make_reward(points_cost=50, max_redemptions_per_child=1, max_redemptions_total=3)

        before = await engine.availability(reward.id, child_id)
        assert before.available
        assert before.remaining_total == 3
        assert before.remaining_for_child == 1
        assert before.can_afford

        await engine.redeem(child_id, reward.id)
        after = await engine.availability(reward.id, child_id)
        assert not after.available
        assert after.unavailable_reason == "PerChildLimitReached"
        assert after.total_redeemed == 1
        assert after.remaining_total == 2

    @pytest.mark.asyncio
    async def test_availability_without_child(self, engine, make_reward):
        reward = await make_reward(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        view = await engine.availability(reward.id)
        assert view.is_expired
        assert view.unavailable_reason == "Expired"
        assert view.can_afford is None

    @pytest.mark.asyncio
    async def test_list_redemptions_filters(self, engine, make_child, make_reward, family_id):
        child_id = await make_child(balance=200)
        reward = await make_reward(points_cost=20)
        first = await engine.redeem(child_id, reward.id)
        await engine.redeem(child_id, reward.id)
        await engine.cancel(first.redemption_id)

        pending = await engine.list_redemptions(family_id=family_id, status="pending")
        cancelled = await engine.list_redemptions(child_id=child_id, status="cancelled")
        assert len(pending) == 1
        assert [r.id for r in cancelled] == [first.redemption_id]
        assert await engine.list_redemptions(family_id=uuid.uuid4()) == []

    @pytest.mark.asyncio
    async def test_deactivate_unavailable_rewards(self, engine, make_child, make_reward, session_factory):
        child_id = await make_child(balance=100)
        expired = await make_reward(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        sold_out = await make_reward(points_cost=10, max_redemptions_total=1)
        open_reward = await make_reward(points_cost=10)
        await engine.redeem(child_id, sold_out.id)

        assert await engine.deactivate_unavailable_rewards() == 2

        async with session_factory() as db:
            assert not (await db.get(Reward, expired.id)).is_active
            assert not (await db.get(Reward, sold_out.id)).is_active
            assert (await db.get(Reward, open_reward.id)).is_active
