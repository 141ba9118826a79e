"""Pydantic models for reward and redemption endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import AwareDatetime, BaseModel, Field


class RewardCreateRequest(BaseModel):
    family_id: uuid.UUID
    name: str = Field(min_length=1, max_length=100)
    points_cost: int = Field(gt=0)
    max_redemptions_per_child: int | None = Field(default=None, ge=1)
    max_redemptions_total: int | None = Field(default=None, ge=1)
    expires_at: AwareDatetime | None = None


class RewardResponse(BaseModel):
    id: uuid.UUID
    family_id: uuid.UUID
    name: str
    points_cost: int
    max_redemptions_per_child: int | None = None
    max_redemptions_total: int | None = None
    expires_at: datetime | None = None
    is_active: bool


class RewardListResponse(BaseModel):
    rewards: list[RewardResponse]


class RedeemRequest(BaseModel):
    child_id: uuid.UUID


class RedeemResponse(BaseModel):
    redemption_id: uuid.UUID
    status: str
    points_spent: int
    new_balance: int
    achievements_unlocked: list[str] = []


class AvailabilityResponse(BaseModel):
    reward_id: uuid.UUID
    available: bool
    unavailable_reason: str | None = None
    is_active: bool
    is_expired: bool
    total_redeemed: int
    remaining_total: int | None = None
    child_redeemed: int | None = None
    remaining_for_child: int | None = None
    can_afford: bool | None = None


class RedemptionActionRequest(BaseModel):
    performed_by: str | None = Field(default=None, max_length=64)


class RedemptionResponse(BaseModel):
    id: uuid.UUID
    reward_id: uuid.UUID
    reward_name: str
    child_id: uuid.UUID
    status: str
    points_spent: int
    created_at: datetime
    approved_at: datetime | None = None
    fulfilled_at: datetime | None = None
    cancelled_at: datetime | None = None


class RedemptionListResponse(BaseModel):
    redemptions: list[RedemptionResponse]
