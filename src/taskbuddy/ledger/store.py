"""Append-only points/XP ledger, the only writer of ``child_progress``.

Every mutation for a child runs inside :meth:`LedgerStore.unit_of_work`:

1. take the child's in-process lock
2. open a transaction and ``SELECT ... FOR UPDATE`` the progress row
3. append entries (each re-checks its preconditions against that row)
4. commit, then hand any queued events to the emitter

Entries carry a per-child ``sequence``; the unique ``(child_id, sequence)``
constraint turns a concurrent writer in another process into an
``IntegrityError`` that the caller can retry.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskbuddy.db.models import ChildProgress, LedgerEntry
from taskbuddy.errors import ChildNotFound, IdempotencyConflict, InsufficientBalance, InvalidTransaction
from taskbuddy.events.emitter import DomainEvent, EventSink
from taskbuddy.gamification.level_thresholds import level_from_total_xp, level_up_bonus
from taskbuddy.gamification.streak_service import StreakState, StreakUpdate
from taskbuddy.ledger.locks import KeyedLocks, get_lock_registry
from taskbuddy.ledger.transactions import (
    EARNING_TYPES,
    EntryDetail,
    LedgerReference,
    LevelUpDetail,
    TransactionType,
    validate_transaction,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceSnapshot:
    child_id: uuid.UUID
    points_balance: int
    total_points_earned: int
    total_xp_earned: int
    level: int
    current_streak_days: int
    longest_streak_days: int
    last_activity_at: datetime | None
    ledger_version: int
    as_of: datetime

    @property
    def streak_state(self) -> StreakState:
        return StreakState(self.current_streak_days, self.longest_streak_days, self.last_activity_at)


@dataclass(frozen=True)
class ReplayResult:
    child_id: uuid.UUID
    entry_count: int
    points_balance: int
    total_xp_earned: int
    stored_points_balance: int
    stored_total_xp_earned: int
    first_mismatch_sequence: int | None = None

    @property
    def consistent(self) -> bool:
        return (
            self.first_mismatch_sequence is None
            and self.points_balance == self.stored_points_balance
            and self.total_xp_earned == self.stored_total_xp_earned
        )


def _snapshot(progress: ChildProgress) -> BalanceSnapshot:
    return BalanceSnapshot(
        child_id=progress.child_id,
        points_balance=progress.points_balance,
        total_points_earned=progress.total_points_earned,
        total_xp_earned=progress.total_xp_earned,
        level=progress.level,
        current_streak_days=progress.current_streak_days,
        longest_streak_days=progress.longest_streak_days,
        last_activity_at=progress.last_activity_at,
        ledger_version=progress.ledger_version,
        as_of=datetime.now(timezone.utc),
    )


class ChildUnitOfWork:
    """Write scope for a single child, valid only inside ``unit_of_work``."""

    def __init__(self, session: AsyncSession, progress: ChildProgress) -> None:
        self.session = session
        self.progress = progress
        self.entries: list[LedgerEntry] = []
        self.events: list[DomainEvent] = []

    @property
    def child_id(self) -> uuid.UUID:
        return self.progress.child_id

    @property
    def streak_state(self) -> StreakState:
        p = self.progress
        return StreakState(p.current_streak_days, p.longest_streak_days, p.last_activity_at)

    async def find_by_idempotency_key(self, idempotency_key: str) -> LedgerEntry | None:
        """This child's entry stored under ``idempotency_key``, if any.

        Keys are unique across the whole ledger, so a key already held by
        another child raises ``IdempotencyConflict`` instead of matching.
        """
        result = await self.session.execute(
            select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
        )
        entry = result.scalar_one_or_none()
        if entry is not None and entry.child_id != self.child_id:
            logger.warning(
                "Idempotency key %r of child %s reused for child %s",
                idempotency_key, entry.child_id, self.child_id,
            )
            raise IdempotencyConflict(idempotency_key)
        return entry

    async def append(
        self,
        transaction_type: TransactionType | str,
        points_amount: int,
        xp_amount: int = 0,
        reference: LedgerReference | None = None,
        *,
        details: EntryDetail | dict | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerEntry:
        """Append one entry and move the progress row with it."""
        ttype, detail = validate_transaction(transaction_type, points_amount, xp_amount, reference, details)
        progress = self.progress

        new_balance = progress.points_balance + points_amount
        if new_balance < 0:
            raise InsufficientBalance(progress.points_balance, -points_amount)
        new_total_xp = progress.total_xp_earned + xp_amount
        if new_total_xp < 0:
            raise InvalidTransaction(
                f"Adjustment of {xp_amount} XP would make lifetime XP negative ({progress.total_xp_earned})."
            )

        now = datetime.now(timezone.utc)
        entry = LedgerEntry(
            id=uuid.uuid4(),
            child_id=progress.child_id,
            sequence=progress.ledger_version + 1,
            transaction_type=ttype.value,
            points_amount=points_amount,
            xp_amount=xp_amount,
            balance_after=new_balance,
            total_xp_after=new_total_xp,
            reference_type=reference.type if reference else None,
            reference_id=reference.id if reference else None,
            details=detail.model_dump(mode="json"),
            description=description,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        self.session.add(entry)

        progress.points_balance = new_balance
        progress.total_xp_earned = new_total_xp
        if ttype in EARNING_TYPES and points_amount > 0:
            progress.total_points_earned += points_amount
        progress.level = level_from_total_xp(new_total_xp).level
        progress.ledger_version = entry.sequence
        progress.updated_at = now
        await self.session.flush()

        self.entries.append(entry)
        return entry

    async def settle_level_up(self, old_level: int) -> int:
        """Pay one level-up bonus for every level gained since ``old_level``.

        Returns the bonus points (0 when the level did not rise).
        """
        new_level = self.progress.level
        if new_level <= old_level:
            return 0
        bonus = level_up_bonus(old_level, new_level)
        await self.append(
            TransactionType.MILESTONE_BONUS,
            bonus,
            0,
            LedgerReference.level_up(self.child_id),
            details=LevelUpDetail(old_level=old_level, new_level=new_level),
            description=f"Reached level {new_level}",
        )
        self.emit(DomainEvent.level_up(self.child_id, new_level, bonus))
        return bonus

    def record_activity(self, update: StreakUpdate) -> None:
        """Persist a streak evaluation on the locked progress row."""
        progress = self.progress
        progress.current_streak_days = update.current_streak_days
        progress.longest_streak_days = update.longest_streak_days
        progress.last_activity_at = update.last_activity_at
        progress.updated_at = datetime.now(timezone.utc)

    def emit(self, event: DomainEvent) -> None:
        """Queue an event; it is published only if the unit of work commits."""
        self.events.append(event)


class LedgerStore:
    """Source of truth for every child's points balance and lifetime XP."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        emitter: EventSink | None = None,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.emitter = emitter
        self.locks = locks or get_lock_registry()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def open_account(self, child_id: uuid.UUID, family_id: uuid.UUID, first_name: str) -> BalanceSnapshot:
        """Create the progress row for a new child profile (idempotent)."""
        async with self.locks.child(child_id):
            async with self.session_factory() as session, session.begin():
                progress = await session.get(ChildProgress, child_id)
                if progress is None:
                    now = datetime.now(timezone.utc)
                    progress = ChildProgress(
                        child_id=child_id,
                        family_id=family_id,
                        first_name=first_name,
                        points_balance=0,
                        total_points_earned=0,
                        total_xp_earned=0,
                        level=1,
                        current_streak_days=0,
                        longest_streak_days=0,
                        ledger_version=0,
                        created_at=now,
                        updated_at=now,
                    )
                    session.add(progress)
                    await session.flush()
                    logger.info("Opened ledger account for child %s", child_id)
                return _snapshot(progress)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def unit_of_work(self, child_id: uuid.UUID) -> AsyncIterator[ChildUnitOfWork]:
        """Serialized, atomic write scope for one child."""
        async with self.locks.child(child_id):
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(ChildProgress)
                        .where(ChildProgress.child_id == child_id)
                        .with_for_update()
                    )
                    progress = result.scalar_one_or_none()
                    if progress is None:
                        raise ChildNotFound(child_id)
                    uow = ChildUnitOfWork(session, progress)
                    yield uow
        await self._emit(uow.events)

    async def apply_transaction(
        self,
        child_id: uuid.UUID,
        transaction_type: TransactionType | str,
        points_amount: int,
        xp_amount: int = 0,
        reference: LedgerReference | None = None,
        *,
        details: EntryDetail | dict | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerEntry:
        """Append a single entry. A repeated ``idempotency_key`` returns the stored entry."""
        async with self.unit_of_work(child_id) as uow:
            if idempotency_key:
                existing = await uow.find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    if (
                        existing.transaction_type != str(transaction_type)
                        or existing.points_amount != points_amount
                        or existing.xp_amount != xp_amount
                    ):
                        raise IdempotencyConflict(idempotency_key)
                    return existing
            entry = await uow.append(
                transaction_type,
                points_amount,
                xp_amount,
                reference,
                details=details,
                description=description,
                idempotency_key=idempotency_key,
            )
            if points_amount:
                uow.emit(DomainEvent.points_updated(
                    child_id, entry.balance_after, points_amount, entry.transaction_type
                ))
        logger.info(
            "Ledger %s for child %s: %+d points, %+d XP -> balance %d",
            entry.transaction_type, child_id, points_amount, xp_amount, entry.balance_after,
        )
        return entry

    async def _emit(self, events: list[DomainEvent]) -> None:
        if not events or self.emitter is None:
            return
        try:
            await self.emitter.emit(*events)
        except Exception:
            logger.warning("Event emission failed after commit", exc_info=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_balance(self, child_id: uuid.UUID) -> BalanceSnapshot:
        async with self.session_factory() as session:
            progress = await session.get(ChildProgress, child_id)
            if progress is None:
                raise ChildNotFound(child_id)
            return _snapshot(progress)

    async def get_ledger(
        self,
        child_id: uuid.UUID,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[LedgerEntry], int]:
        """Entries newest first within ``[since, until)``, plus the total count."""
        async with self.session_factory() as session:
            if await session.get(ChildProgress, child_id) is None:
                raise ChildNotFound(child_id)
            filters = [LedgerEntry.child_id == child_id]
            if since is not None:
                filters.append(LedgerEntry.created_at >= since)
            if until is not None:
                filters.append(LedgerEntry.created_at < until)

            total_result = await session.execute(
                select(func.count()).select_from(LedgerEntry).where(*filters)
            )
            result = await session.execute(
                select(LedgerEntry)
                .where(*filters)
                .order_by(LedgerEntry.sequence.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total_result.scalar_one()

    async def replay(self, child_id: uuid.UUID) -> ReplayResult:
        """Rebuild balance and XP from the entries and compare with the progress row."""
        async with self.session_factory() as session:
            progress = await session.get(ChildProgress, child_id)
            if progress is None:
                raise ChildNotFound(child_id)
            result = await session.execute(
                select(LedgerEntry)
                .where(LedgerEntry.child_id == child_id)
                .order_by(LedgerEntry.sequence.asc())
            )
            entries = result.scalars().all()

        balance = 0
        total_xp = 0
        mismatch: int | None = None
        for expected_sequence, entry in enumerate(entries, start=1):
            balance += entry.points_amount
            total_xp += entry.xp_amount
            if mismatch is None and (
                entry.sequence != expected_sequence
                or entry.balance_after != balance
                or entry.total_xp_after != total_xp
            ):
                mismatch = entry.sequence

        replayed = ReplayResult(
            child_id=child_id,
            entry_count=len(entries),
            points_balance=balance,
            total_xp_earned=total_xp,
            stored_points_balance=progress.points_balance,
            stored_total_xp_earned=progress.total_xp_earned,
            first_mismatch_sequence=mismatch,
        )
        if not replayed.consistent:
            logger.error("Ledger replay mismatch for child %s: %s", child_id, replayed)
        return replayed
