"""Pydantic models for child balance, ledger and family settings endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from taskbuddy.ledger.transactions import TransactionType


class ChildCreateRequest(BaseModel):
    child_id: uuid.UUID | None = None
    family_id: uuid.UUID
    first_name: str = Field(min_length=1, max_length=64)


class BalanceResponse(BaseModel):
    child_id: uuid.UUID
    points_balance: int
    total_points_earned: int
    total_xp_earned: int
    level: int
    current_streak_days: int
    longest_streak_days: int
    ledger_version: int
    as_of: datetime


class LedgerEntryResponse(BaseModel):
    id: uuid.UUID
    sequence: int
    transaction_type: str
    points_amount: int
    xp_amount: int
    balance_after: int
    total_xp_after: int
    reference_type: str | None = None
    reference_id: str | None = None
    details: dict[str, Any] = {}
    description: str | None = None
    created_at: datetime


class LedgerPageResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int
    limit: int
    offset: int


class ManualTransactionRequest(BaseModel):
    """Parent-initiated bonus, penalty or audited adjustment."""

    transaction_type: TransactionType
    points_amount: int
    xp_amount: int = 0
    reason: str = Field(min_length=1, max_length=200)
    performed_by: str | None = Field(default=None, max_length=64)
    reverses_entry_id: uuid.UUID | None = None
    idempotency_key: str | None = Field(default=None, max_length=200)


class ReplayResponse(BaseModel):
    child_id: uuid.UUID
    consistent: bool
    entry_count: int
    points_balance: int
    total_xp_earned: int
    stored_points_balance: int
    stored_total_xp_earned: int
    first_mismatch_sequence: int | None = None


class FamilySettingsRequest(BaseModel):
    streak_grace_period_hours: int | None = Field(default=None, ge=0, le=12)
    max_active_primary: int | None = Field(default=None, ge=0, le=10)
    max_active_secondary: int | None = Field(default=None, ge=0, le=10)


class FamilySettingsResponse(BaseModel):
    family_id: uuid.UUID
    streak_grace_period_hours: int
    max_active_primary: int
    max_active_secondary: int
