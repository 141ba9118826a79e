"""Reward and redemption endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.database import get_session
from taskbuddy.db.models import Redemption, RedemptionStatus, Reward
from taskbuddy.dependencies import get_redemption_engine
from taskbuddy.ledger.retry import retry_on_conflict
from taskbuddy.rewards.schemas import (
    AvailabilityResponse,
    RedeemRequest,
    RedeemResponse,
    RedemptionActionRequest,
    RedemptionListResponse,
    RedemptionResponse,
    RewardCreateRequest,
    RewardListResponse,
    RewardResponse,
)
from taskbuddy.rewards.service import RedemptionEngine, create_reward, list_rewards

router = APIRouter(prefix="/api/v1/rewards", tags=["Rewards"])
redemptions_router = APIRouter(prefix="/api/v1/redemptions", tags=["Redemptions"])


def _reward_response(reward: Reward) -> RewardResponse:
    return RewardResponse(
        id=reward.id,
        family_id=reward.family_id,
        name=reward.name,
        points_cost=reward.points_cost,
        max_redemptions_per_child=reward.max_redemptions_per_child,
        max_redemptions_total=reward.max_redemptions_total,
        expires_at=reward.expires_at,
        is_active=reward.is_active,
    )


def _redemption_response(redemption: Redemption) -> RedemptionResponse:
    return RedemptionResponse(
        id=redemption.id,
        reward_id=redemption.reward_id,
        reward_name=redemption.reward.name,
        child_id=redemption.child_id,
        status=redemption.status,
        points_spent=redemption.points_spent,
        created_at=redemption.created_at,
        approved_at=redemption.approved_at,
        fulfilled_at=redemption.fulfilled_at,
        cancelled_at=redemption.cancelled_at,
    )


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


@router.post("", response_model=RewardResponse, status_code=status.HTTP_201_CREATED)
async def create(body: RewardCreateRequest, db: AsyncSession = Depends(get_session)) -> RewardResponse:
    reward = await create_reward(db, **body.model_dump())
    return _reward_response(reward)


@router.get("", response_model=RewardListResponse)
async def list_family_rewards(
    family_id: uuid.UUID,
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_session),
) -> RewardListResponse:
    rewards = await list_rewards(db, family_id, include_inactive=include_inactive)
    return RewardListResponse(rewards=[_reward_response(r) for r in rewards])


@router.post("/{reward_id}/redeem", response_model=RedeemResponse, status_code=status.HTTP_201_CREATED)
async def redeem(
    reward_id: uuid.UUID,
    body: RedeemRequest,
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> RedeemResponse:
    """Redeem a reward. Refusals come back as 409/422 with a specific ``code``."""
    result = await retry_on_conflict(lambda: engine.redeem(body.child_id, reward_id))
    return RedeemResponse(
        redemption_id=result.redemption_id,
        status=result.status,
        points_spent=result.points_spent,
        new_balance=result.new_balance,
        achievements_unlocked=list(result.achievements),
    )


@router.get("/{reward_id}/availability", response_model=AvailabilityResponse)
async def availability(
    reward_id: uuid.UUID,
    child_id: uuid.UUID | None = None,
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> AvailabilityResponse:
    view = await engine.availability(reward_id, child_id)
    return AvailabilityResponse(
        reward_id=view.reward_id,
        available=view.available,
        unavailable_reason=view.unavailable_reason,
        is_active=view.is_active,
        is_expired=view.is_expired,
        total_redeemed=view.total_redeemed,
        remaining_total=view.remaining_total,
        child_redeemed=view.child_redeemed,
        remaining_for_child=view.remaining_for_child,
        can_afford=view.can_afford,
    )


# ---------------------------------------------------------------------------
# Redemptions
# ---------------------------------------------------------------------------


@redemptions_router.get("", response_model=RedemptionListResponse)
async def list_redemptions(
    family_id: uuid.UUID | None = None,
    child_id: uuid.UUID | None = None,
    status_filter: RedemptionStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> RedemptionListResponse:
    redemptions = await engine.list_redemptions(
        family_id=family_id,
        child_id=child_id,
        status=status_filter.value if status_filter else None,
        limit=limit,
    )
    return RedemptionListResponse(redemptions=[_redemption_response(r) for r in redemptions])


@redemptions_router.post("/{redemption_id}/approve", response_model=RedemptionResponse)
async def approve(
    redemption_id: uuid.UUID,
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> RedemptionResponse:
    redemption = await retry_on_conflict(lambda: engine.approve(redemption_id))
    return _redemption_response(redemption)


@redemptions_router.post("/{redemption_id}/cancel", response_model=RedemptionResponse)
async def cancel(
    redemption_id: uuid.UUID,
    body: RedemptionActionRequest | None = None,
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> RedemptionResponse:
    """Cancel and refund. Legal while pending or approved."""
    performed_by = body.performed_by if body else None
    redemption = await retry_on_conflict(lambda: engine.cancel(redemption_id, performed_by))
    return _redemption_response(redemption)


@redemptions_router.post("/{redemption_id}/fulfill", response_model=RedemptionResponse)
async def fulfill(
    redemption_id: uuid.UUID,
    engine: RedemptionEngine = Depends(get_redemption_engine),
) -> RedemptionResponse:
    redemption = await retry_on_conflict(lambda: engine.fulfill(redemption_id))
    return _redemption_response(redemption)
