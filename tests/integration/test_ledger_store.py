"""Ledger store: append, balance, replay, idempotency and serialization."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from taskbuddy.db.models import ChildProgress, LedgerEntry
from taskbuddy.errors import ChildNotFound, IdempotencyConflict, InsufficientBalance, InvalidTransaction
from taskbuddy.events.emitter import EventName
from taskbuddy.ledger.transactions import (
    AdjustmentDetail,
    BonusDetail,
    LedgerReference,
    PenaltyDetail,
    TransactionType,
)


class TestOpenAccount:
    @pytest.mark.asyncio
    async def test_starts_at_zero(self, store, family_id):
        child_id = uuid.uuid4()
        snapshot = await store.open_account(child_id, family_id, "Ava")
        assert snapshot.points_balance == 0
        assert snapshot.total_xp_earned == 0
        assert snapshot.level == 1
        assert snapshot.ledger_version == 0

    @pytest.mark.asyncio
    async def test_idempotent(self, store, family_id, make_child):
        child_id = await make_child(balance=30)
        again = await store.open_account(child_id, family_id, "Ava")
        assert again.points_balance == 30

    @pytest.mark.asyncio
    async def test_unknown_child(self, store):
        with pytest.raises(ChildNotFound):
            await store.get_balance(uuid.uuid4())
        with pytest.raises(ChildNotFound):
            await store.apply_transaction(uuid.uuid4(), "bonus", 5, details=BonusDetail(reason="x"))


class TestApplyTransaction:
    @pytest.mark.asyncio
    async def test_earned_credits_points_and_xp(self, store, make_child):
        child_id = await make_child()
        entry = await store.apply_transaction(
            child_id, TransactionType.EARNED, 20, 15, LedgerReference.task_assignment(uuid.uuid4())
        )
        assert entry.sequence == 1
        assert entry.balance_after == 20
        assert entry.total_xp_after == 15
        assert entry.details["kind"] == "task_completion"

        balance = await store.get_balance(child_id)
        assert balance.points_balance == 20
        assert balance.total_points_earned == 20
        assert balance.total_xp_earned == 15
        assert balance.ledger_version == 1

    @pytest.mark.asyncio
    async def test_level_recomputed_from_xp(self, store, make_child):
        child_id = await make_child()
        await store.apply_transaction(child_id, "bonus", 0, 260, details=BonusDetail(reason="Catch-up"))
        assert (await store.get_balance(child_id)).level == 3

    @pytest.mark.asyncio
    async def test_penalty_refused_when_it_would_go_negative(self, store, make_child, emitter):
        child_id = await make_child(balance=10)
        emitted_before = len(emitter.events)

        with pytest.raises(InsufficientBalance) as exc_info:
            await store.apply_transaction(child_id, "penalty", -25, details=PenaltyDetail(reason="Fib"))

        assert exc_info.value.balance == 10
        assert exc_info.value.required == 25
        balance = await store.get_balance(child_id)
        assert balance.points_balance == 10
        assert balance.ledger_version == 1
        assert len(emitter.events) == emitted_before

    @pytest.mark.asyncio
    async def test_spending_does_not_reduce_lifetime_earned(self, store, make_child):
        child_id = await make_child(balance=50)
        await store.apply_transaction(child_id, "penalty", -20, details=PenaltyDetail(reason="Late"))
        balance = await store.get_balance(child_id)
        assert balance.points_balance == 30
        assert balance.total_points_earned == 50

    @pytest.mark.asyncio
    async def test_xp_adjustment_cannot_go_below_zero(self, store, make_child):
        child_id = await make_child()
        await store.apply_transaction(child_id, "bonus", 0, 40, details=BonusDetail(reason="x"))
        with pytest.raises(InvalidTransaction):
            await store.apply_transaction(child_id, "adjustment", 0, -50, details=AdjustmentDetail(reason="Undo"))

        await store.apply_transaction(child_id, "adjustment", 0, -40, details=AdjustmentDetail(reason="Undo"))
        balance = await store.get_balance(child_id)
        assert balance.total_xp_earned == 0
        assert balance.level == 1

    @pytest.mark.asyncio
    async def test_idempotency_key_returns_first_entry(self, store, make_child):
        child_id = await make_child()
        first = await store.apply_transaction(
            child_id, "bonus", 15, details=BonusDetail(reason="Tidy room"), idempotency_key="bonus:tidy"
        )
        second = await store.apply_transaction(
            child_id, "bonus", 15, details=BonusDetail(reason="Tidy room"), idempotency_key="bonus:tidy"
        )
        assert second.id == first.id
        assert (await store.get_balance(child_id)).points_balance == 15

    @pytest.mark.asyncio
    async def test_idempotency_key_of_another_child_conflicts(self, store, make_child, emitter):
        ava = await make_child("Ava")
        ben = await make_child("Ben")
        await store.apply_transaction(ava, "bonus", 10, details=BonusDetail(reason="Tidy room"), idempotency_key="k1")
        emitted = len(emitter.events)

        with pytest.raises(IdempotencyConflict) as exc_info:
            await store.apply_transaction(ben, "bonus", 99, details=BonusDetail(reason="Tidy room"), idempotency_key="k1")

        assert exc_info.value.status_code == 409
        assert isinstance(exc_info.value, InvalidTransaction)
        ben_balance = await store.get_balance(ben)
        assert ben_balance.points_balance == 0
        assert ben_balance.ledger_version == 0
        assert (await store.get_balance(ava)).points_balance == 10
        assert len(emitter.events) == emitted

    @pytest.mark.asyncio
    async def test_idempotency_key_with_different_amounts_conflicts(self, store, make_child):
        child_id = await make_child()
        await store.apply_transaction(
            child_id, "bonus", 15, details=BonusDetail(reason="Tidy room"), idempotency_key="bonus:tidy"
        )

        with pytest.raises(IdempotencyConflict):
            await store.apply_transaction(
                child_id, "bonus", 50, details=BonusDetail(reason="Tidy room"), idempotency_key="bonus:tidy"
            )
        with pytest.raises(IdempotencyConflict):
            await store.apply_transaction(
                child_id, "penalty", 15, details=PenaltyDetail(reason="Tidy room"), idempotency_key="bonus:tidy"
            )
        assert (await store.get_balance(child_id)).points_balance == 15

    @pytest.mark.asyncio
    async def test_event_emitted_after_commit(self, store, make_child, emitter):
        child_id = await make_child()
        await store.apply_transaction(child_id, "bonus", 12, details=BonusDetail(reason="Kind"))

        events = emitter.named(EventName.POINTS_UPDATED)
        assert events[-1].data == {"newBalance": 12, "delta": 12, "reason": "bonus"}

    @pytest.mark.asyncio
    async def test_concurrent_writers_serialize(self, store, make_child):
        child_id = await make_child()

        await asyncio.gather(*[
            store.apply_transaction(child_id, "bonus", 5, 1, details=BonusDetail(reason=f"Chore {n}"))
            for n in range(20)
        ])

        balance = await store.get_balance(child_id)
        assert balance.points_balance == 100
        assert balance.total_xp_earned == 20
        assert balance.ledger_version == 20
        assert (await store.replay(child_id)).consistent

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_overdraw(self, store, make_child):
        child_id = await make_child(balance=100)

        results = await asyncio.gather(
            store.apply_transaction(child_id, "penalty", -60, details=PenaltyDetail(reason="a")),
            store.apply_transaction(child_id, "penalty", -60, details=PenaltyDetail(reason="b")),
            return_exceptions=True,
        )

        assert sum(isinstance(r, InsufficientBalance) for r in results) == 1
        assert (await store.get_balance(child_id)).points_balance == 40


class TestReads:
    @pytest.mark.asyncio
    async def test_ledger_newest_first_with_paging(self, store, make_child):
        child_id = await make_child()
        for n in range(5):
            await store.apply_transaction(child_id, "bonus", n + 1, details=BonusDetail(reason=f"#{n}"))

        entries, total = await store.get_ledger(child_id, limit=2)
        assert total == 5
        assert [e.sequence for e in entries] == [5, 4]

        entries, _ = await store.get_ledger(child_id, limit=2, offset=4)
        assert [e.sequence for e in entries] == [1]

    @pytest.mark.asyncio
    async def test_ledger_time_window(self, store, make_child):
        child_id = await make_child(balance=10)
        future = datetime.now(timezone.utc) + timedelta(days=1)

        entries, total = await store.get_ledger(child_id, since=future)
        assert entries == []
        assert total == 0

        entries, total = await store.get_ledger(child_id, until=future)
        assert total == 1


class TestReplay:
    @pytest.mark.asyncio
    async def test_replay_matches_progress(self, store, make_child):
        child_id = await make_child(balance=80)
        await store.apply_transaction(child_id, "penalty", -30, details=PenaltyDetail(reason="x"))
        await store.apply_transaction(child_id, "bonus", 5, 40, details=BonusDetail(reason="y"))

        replayed = await store.replay(child_id)
        assert replayed.consistent
        assert replayed.entry_count == 3
        assert replayed.points_balance == 55
        assert replayed.total_xp_earned == 40

    @pytest.mark.asyncio
    async def test_replay_detects_drift(self, store, make_child, session_factory):
        child_id = await make_child(balance=20)
        async with session_factory() as db:
            await db.execute(
                update(ChildProgress).where(ChildProgress.child_id == child_id).values(points_balance=999)
            )
            await db.commit()

        replayed = await store.replay(child_id)
        assert not replayed.consistent
        assert replayed.points_balance == 20
        assert replayed.stored_points_balance == 999

    @pytest.mark.asyncio
    async def test_entries_chain_balance_after(self, store, make_child, session_factory):
        child_id = await make_child(balance=10)
        await store.apply_transaction(child_id, "bonus", 7, details=BonusDetail(reason="x"))
        await store.apply_transaction(child_id, "penalty", -3, details=PenaltyDetail(reason="y"))

        async with session_factory() as db:
            result = await db.execute(
                select(LedgerEntry).where(LedgerEntry.child_id == child_id).order_by(LedgerEntry.sequence)
            )
            entries = result.scalars().all()

        running = 0
        for entry in entries:
            running += entry.points_amount
            assert entry.balance_after == running
        assert running == 14
