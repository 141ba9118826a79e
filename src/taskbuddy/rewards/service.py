"""Reward redemption engine.

Redemptions that touch a household cap take the reward lock before the
child lock (never the reverse) and re-read the reward row ``FOR UPDATE``,
so two children racing for the last slot cannot both get it. The debit,
the redemption row and any achievement rewards it unlocks share one commit.

Lifecycle::

    pending --approve--> approved --fulfill--> fulfilled
       \\                   /
        `----cancel-------'---> cancelled (points refunded)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.db.models import Redemption, RedemptionStatus, Reward
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
from taskbuddy.events.emitter import DomainEvent
from taskbuddy.gamification.achievement_service import unlock_achievements
from taskbuddy.ledger.locks import KeyedLocks
from taskbuddy.ledger.store import LedgerStore
from taskbuddy.ledger.transactions import (
    AdjustmentDetail,
    LedgerReference,
    RedemptionDetail,
    TransactionType,
)

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = frozenset({RedemptionStatus.PENDING.value, RedemptionStatus.APPROVED.value})


@dataclass(frozen=True)
class RedemptionResult:
    redemption_id: uuid.UUID
    reward_id: uuid.UUID
    status: str
    points_spent: int
    new_balance: int
    achievements: tuple[str, ...] = ()


@dataclass(frozen=True)
class RewardAvailability:
    reward_id: uuid.UUID
    is_active: bool
    is_expired: bool
    total_redeemed: int
    remaining_total: int | None
    child_redeemed: int | None = None
    remaining_for_child: int | None = None
    can_afford: bool | None = None
    unavailable_reason: str | None = None

    @property
    def available(self) -> bool:
        return self.unavailable_reason is None


def is_expired(reward: Reward, now: datetime) -> bool:
    return reward.expires_at is not None and reward.expires_at <= now


async def count_redemptions(
    db: AsyncSession,
    reward_id: uuid.UUID,
    child_id: uuid.UUID | None = None,
) -> int:
    """Non-cancelled redemptions of a reward, optionally for one child."""
    stmt = (
        select(func.count())
        .select_from(Redemption)
        .where(
            Redemption.reward_id == reward_id,
            Redemption.status != RedemptionStatus.CANCELLED.value,
        )
    )
    if child_id is not None:
        stmt = stmt.where(Redemption.child_id == child_id)
    result = await db.execute(stmt)
    return result.scalar_one()


class RedemptionEngine:
    def __init__(self, store: LedgerStore, locks: KeyedLocks | None = None) -> None:
        self.store = store
        self.locks = locks or store.locks

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    async def redeem(
        self,
        child_id: uuid.UUID,
        reward_id: uuid.UUID,
        now: datetime | None = None,
    ) -> RedemptionResult:
        """Claim a reward for a child.

        Checked in order: active, not expired, household cap, per-child
        cap, balance. The first failure is raised and nothing is written.
        """
        now = now or datetime.now(timezone.utc)
        async with self.locks.reward(reward_id):
            async with self.store.unit_of_work(child_id) as uow:
                reward = await self._lock_reward(uow.session, reward_id)
                if reward.family_id != uow.progress.family_id:
                    raise RewardNotFound(reward_id)

                if not reward.is_active:
                    raise RewardInactive()
                if is_expired(reward, now):
                    raise RewardExpired()
                if reward.max_redemptions_total is not None:
                    total = await count_redemptions(uow.session, reward_id)
                    if total >= reward.max_redemptions_total:
                        raise SoldOut()
                if reward.max_redemptions_per_child is not None:
                    mine = await count_redemptions(uow.session, reward_id, child_id)
                    if mine >= reward.max_redemptions_per_child:
                        raise PerChildLimitReached()
                if uow.progress.points_balance < reward.points_cost:
                    raise InsufficientBalance(uow.progress.points_balance, reward.points_cost)

                redemption_id = uuid.uuid4()
                debit = await uow.append(
                    TransactionType.REDEEMED,
                    -reward.points_cost,
                    0,
                    LedgerReference.redemption(redemption_id),
                    details=RedemptionDetail(
                        redemption_id=str(redemption_id),
                        reward_id=str(reward_id),
                        reward_name=reward.name,
                    ),
                    description=f"Redeemed {reward.name}",
                )
                redemption = Redemption(
                    id=redemption_id,
                    reward_id=reward_id,
                    child_id=child_id,
                    status=RedemptionStatus.PENDING.value,
                    points_spent=reward.points_cost,
                    debit_entry_id=debit.id,
                    created_at=now,
                )
                uow.session.add(redemption)
                await uow.session.flush()
                uow.emit(DomainEvent.points_updated(child_id, debit.balance_after, debit.points_amount, "redeemed"))

                old_level = uow.progress.level
                unlocked = await unlock_achievements(uow)
                await uow.settle_level_up(old_level)
                new_balance = uow.progress.points_balance
                if new_balance != debit.balance_after:
                    uow.emit(DomainEvent.points_updated(
                        child_id, new_balance, new_balance - debit.balance_after, "achievement"
                    ))

        logger.info(
            "Child %s redeemed reward %s for %d points (balance %d)",
            child_id, reward_id, reward.points_cost, new_balance,
        )
        return RedemptionResult(
            redemption_id=redemption_id,
            reward_id=reward_id,
            status=RedemptionStatus.PENDING.value,
            points_spent=reward.points_cost,
            new_balance=new_balance,
            achievements=tuple(a.name for a in unlocked),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def approve(self, redemption_id: uuid.UUID) -> Redemption:
        child_id, _ = await self._locate(redemption_id)
        async with self.store.unit_of_work(child_id) as uow:
            redemption = await self._lock_redemption(uow.session, redemption_id)
            if redemption.status != RedemptionStatus.PENDING.value:
                raise InvalidRedemptionState("approve", redemption.status)
            redemption.status = RedemptionStatus.APPROVED.value
            redemption.approved_at = datetime.now(timezone.utc)
        logger.info("Redemption %s approved", redemption_id)
        return redemption

    async def cancel(self, redemption_id: uuid.UUID, performed_by: str | None = None) -> Redemption:
        """Cancel a pending or approved redemption and refund its points."""
        child_id, reward_id = await self._locate(redemption_id)
        async with self.locks.reward(reward_id):
            async with self.store.unit_of_work(child_id) as uow:
                redemption = await self._lock_redemption(uow.session, redemption_id)
                if redemption.status not in CANCELLABLE_STATUSES:
                    raise InvalidRedemptionState("cancel", redemption.status)

                refund = await uow.append(
                    TransactionType.ADJUSTMENT,
                    redemption.points_spent,
                    0,
                    LedgerReference.redemption_cancellation(redemption_id),
                    details=AdjustmentDetail(
                        reason=f"Cancelled redemption of {redemption.reward.name}",
                        reverses_entry_id=str(redemption.debit_entry_id) if redemption.debit_entry_id else None,
                        performed_by=performed_by,
                    ),
                    description=f"Refund for {redemption.reward.name}",
                    idempotency_key=f"refund:{redemption_id}",
                )
                redemption.status = RedemptionStatus.CANCELLED.value
                redemption.refund_entry_id = refund.id
                redemption.cancelled_at = datetime.now(timezone.utc)
                uow.emit(DomainEvent.points_updated(child_id, refund.balance_after, refund.points_amount, "refund"))

        logger.info("Redemption %s cancelled, refunded %d points", redemption_id, redemption.points_spent)
        return redemption

    async def fulfill(self, redemption_id: uuid.UUID) -> Redemption:
        child_id, _ = await self._locate(redemption_id)
        async with self.store.unit_of_work(child_id) as uow:
            redemption = await self._lock_redemption(uow.session, redemption_id)
            if redemption.status != RedemptionStatus.APPROVED.value:
                raise InvalidRedemptionState("fulfill", redemption.status)
            redemption.status = RedemptionStatus.FULFILLED.value
            redemption.fulfilled_at = datetime.now(timezone.utc)
            uow.emit(DomainEvent.redemption_fulfilled(child_id, redemption_id, redemption.reward.name))
        logger.info("Redemption %s fulfilled", redemption_id)
        return redemption

    # ------------------------------------------------------------------
    # Reads and maintenance
    # ------------------------------------------------------------------

    async def availability(
        self,
        reward_id: uuid.UUID,
        child_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> RewardAvailability:
        """Point-in-time view of whether a reward can be redeemed; takes no locks."""
        now = now or datetime.now(timezone.utc)
        async with self.store.session_factory() as session:
            reward = await session.get(Reward, reward_id)
            if reward is None:
                raise RewardNotFound(reward_id)
            total = await count_redemptions(session, reward_id)
            remaining_total = (
                max(0, reward.max_redemptions_total - total)
                if reward.max_redemptions_total is not None
                else None
            )

            child_redeemed = remaining_for_child = can_afford = None
            if child_id is not None:
                balance = await self.store.get_balance(child_id)
                child_redeemed = await count_redemptions(session, reward_id, child_id)
                if reward.max_redemptions_per_child is not None:
                    remaining_for_child = max(0, reward.max_redemptions_per_child - child_redeemed)
                can_afford = balance.points_balance >= reward.points_cost

        expired = is_expired(reward, now)
        reason = None
        if not reward.is_active:
            reason = RewardInactive.code
        elif expired:
            reason = RewardExpired.code
        elif remaining_total == 0:
            reason = SoldOut.code
        elif remaining_for_child == 0:
            reason = PerChildLimitReached.code
        elif can_afford is False:
            reason = InsufficientBalance.code

        return RewardAvailability(
            reward_id=reward_id,
            is_active=reward.is_active,
            is_expired=expired,
            total_redeemed=total,
            remaining_total=remaining_total,
            child_redeemed=child_redeemed,
            remaining_for_child=remaining_for_child,
            can_afford=can_afford,
            unavailable_reason=reason,
        )

    async def list_redemptions(
        self,
        family_id: uuid.UUID | None = None,
        child_id: uuid.UUID | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[Redemption]:
        async with self.store.session_factory() as session:
            stmt = select(Redemption).join(Reward, Redemption.reward_id == Reward.id)
            if family_id is not None:
                stmt = stmt.where(Reward.family_id == family_id)
            if child_id is not None:
                stmt = stmt.where(Redemption.child_id == child_id)
            if status is not None:
                stmt = stmt.where(Redemption.status == status)
            result = await session.execute(stmt.order_by(Redemption.created_at.desc()).limit(limit))
            return list(result.scalars().all())

    async def deactivate_unavailable_rewards(self, now: datetime | None = None) -> int:
        """Switch off active rewards that are expired or fully claimed."""
        now = now or datetime.now(timezone.utc)
        deactivated = 0
        async with self.store.session_factory() as session:
            result = await session.execute(select(Reward).where(Reward.is_active.is_(True)))
            for reward in result.scalars().all():
                if is_expired(reward, now):
                    reason = "expired"
                elif (
                    reward.max_redemptions_total is not None
                    and await count_redemptions(session, reward.id) >= reward.max_redemptions_total
                ):
                    reason = "sold out"
                else:
                    continue
                reward.is_active = False
                deactivated += 1
                logger.info("Deactivated reward %s (%s)", reward.id, reason)
            await session.commit()
        return deactivated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _lock_reward(db: AsyncSession, reward_id: uuid.UUID) -> Reward:
        result = await db.execute(select(Reward).where(Reward.id == reward_id).with_for_update())
        reward = result.scalar_one_or_none()
        if reward is None:
            raise RewardNotFound(reward_id)
        return reward

    @staticmethod
    async def _lock_redemption(db: AsyncSession, redemption_id: uuid.UUID) -> Redemption:
        result = await db.execute(
            select(Redemption).where(Redemption.id == redemption_id).with_for_update()
        )
        redemption = result.scalar_one_or_none()
        if redemption is None:
            raise RedemptionNotFound(redemption_id)
        return redemption

    async def _locate(self, redemption_id: uuid.UUID) -> tuple[uuid.UUID, uuid.UUID]:
        async with self.store.session_factory() as session:
            redemption = await session.get(Redemption, redemption_id)
            if redemption is None:
                raise RedemptionNotFound(redemption_id)
            return redemption.child_id, redemption.reward_id


async def create_reward(
    db: AsyncSession,
    *,
    family_id: uuid.UUID,
    name: str,
    points_cost: int,
    max_redemptions_per_child: int | None = None,
    max_redemptions_total: int | None = None,
    expires_at: datetime | None = None,
) -> Reward:
    reward = Reward(
        id=uuid.uuid4(),
        family_id=family_id,
        name=name,
        points_cost=points_cost,
        max_redemptions_per_child=max_redemptions_per_child,
        max_redemptions_total=max_redemptions_total,
        expires_at=expires_at,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(reward)
    await db.commit()
    logger.info("Created reward %s (%s, %d points)", reward.id, name, points_cost)
    return reward


async def list_rewards(db: AsyncSession, family_id: uuid.UUID, include_inactive: bool = False) -> list[Reward]:
    stmt = select(Reward).where(Reward.family_id == family_id)
    if not include_inactive:
        stmt = stmt.where(Reward.is_active.is_(True))
    result = await db.execute(stmt.order_by(Reward.points_cost.asc()))
    return list(result.scalars().all())
