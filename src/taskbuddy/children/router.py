"""Child ledger endpoints and family settings."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, status
from pydantic import AwareDatetime
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.children.schemas import (
    BalanceResponse,
    ChildCreateRequest,
    FamilySettingsRequest,
    FamilySettingsResponse,
    LedgerEntryResponse,
    LedgerPageResponse,
    ManualTransactionRequest,
    ReplayResponse,
)
from taskbuddy.children.service import get_child, get_family_settings, update_family_settings
from taskbuddy.config import get_settings
from taskbuddy.database import get_session
from taskbuddy.db.models import FamilySettings, LedgerEntry
from taskbuddy.dependencies import get_ledger_store
from taskbuddy.gamification.level_thresholds import level_from_total_xp
from taskbuddy.gamification.schemas import ProgressResponse, StreakResponse
from taskbuddy.gamification.streak_service import effective_streak, is_streak_at_risk, next_milestone
from taskbuddy.ledger.retry import retry_on_conflict
from taskbuddy.ledger.store import BalanceSnapshot, LedgerStore
from taskbuddy.ledger.transactions import manual_detail
from taskbuddy.tasks.scheduler import TaskScheduler
from taskbuddy.tasks.schemas import CapacityEntry, ChildCapacityResponse

router = APIRouter(prefix="/api/v1/children", tags=["Children"])
families_router = APIRouter(prefix="/api/v1/families", tags=["Families"])


def _balance_response(snapshot: BalanceSnapshot) -> BalanceResponse:
    return BalanceResponse(
        child_id=snapshot.child_id,
        points_balance=snapshot.points_balance,
        total_points_earned=snapshot.total_points_earned,
        total_xp_earned=snapshot.total_xp_earned,
        level=snapshot.level,
        current_streak_days=snapshot.current_streak_days,
        longest_streak_days=snapshot.longest_streak_days,
        ledger_version=snapshot.ledger_version,
        as_of=snapshot.as_of,
    )


def _entry_response(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        sequence=entry.sequence,
        transaction_type=entry.transaction_type,
        points_amount=entry.points_amount,
        xp_amount=entry.xp_amount,
        balance_after=entry.balance_after,
        total_xp_after=entry.total_xp_after,
        reference_type=entry.reference_type,
        reference_id=entry.reference_id,
        details=entry.details or {},
        description=entry.description,
        created_at=entry.created_at,
    )


def _settings_response(row: FamilySettings) -> FamilySettingsResponse:
    return FamilySettingsResponse(
        family_id=row.family_id,
        streak_grace_period_hours=row.streak_grace_period_hours,
        max_active_primary=row.max_active_primary,
        max_active_secondary=row.max_active_secondary,
    )


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------


@router.post("", response_model=BalanceResponse, status_code=status.HTTP_201_CREATED)
async def open_account(
    body: ChildCreateRequest,
    store: LedgerStore = Depends(get_ledger_store),
) -> BalanceResponse:
    """Start a child's ledger at zero points, level 1."""
    snapshot = await store.open_account(body.child_id or uuid.uuid4(), body.family_id, body.first_name)
    return _balance_response(snapshot)


@router.get("/{child_id}/balance", response_model=BalanceResponse)
async def balance(child_id: uuid.UUID, store: LedgerStore = Depends(get_ledger_store)) -> BalanceResponse:
    return _balance_response(await store.get_balance(child_id))


@router.get("/{child_id}/ledger", response_model=LedgerPageResponse)
async def ledger(
    child_id: uuid.UUID,
    since: AwareDatetime | None = None,
    until: AwareDatetime | None = None,
    limit: int = Query(default=50, ge=1),
    offset: int = Query(default=0, ge=0),
    store: LedgerStore = Depends(get_ledger_store),
) -> LedgerPageResponse:
    """Ledger history, newest first, within ``[since, until)``.

    Bounds must carry a UTC offset; naive timestamps are rejected with 422.
    """
    limit = min(limit, get_settings().ledger_page_max)
    entries, total = await store.get_ledger(child_id, since=since, until=until, limit=limit, offset=offset)
    return LedgerPageResponse(
        entries=[_entry_response(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/{child_id}/transactions", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def post_transaction(
    child_id: uuid.UUID,
    body: ManualTransactionRequest,
    store: LedgerStore = Depends(get_ledger_store),
) -> LedgerEntryResponse:
    """Parent bonus, penalty or correction."""
    details = manual_detail(
        body.transaction_type,
        body.reason,
        performed_by=body.performed_by,
        reverses_entry_id=str(body.reverses_entry_id) if body.reverses_entry_id else None,
    )
    entry = await retry_on_conflict(lambda: store.apply_transaction(
        child_id,
        body.transaction_type,
        body.points_amount,
        body.xp_amount,
        details=details,
        description=body.reason,
        idempotency_key=body.idempotency_key,
    ))
    return _entry_response(entry)


@router.get("/{child_id}/ledger/verify", response_model=ReplayResponse)
async def verify_ledger(child_id: uuid.UUID, store: LedgerStore = Depends(get_ledger_store)) -> ReplayResponse:
    """Replay the ledger and compare it with the stored balance."""
    replayed = await store.replay(child_id)
    return ReplayResponse(
        child_id=replayed.child_id,
        consistent=replayed.consistent,
        entry_count=replayed.entry_count,
        points_balance=replayed.points_balance,
        total_xp_earned=replayed.total_xp_earned,
        stored_points_balance=replayed.stored_points_balance,
        stored_total_xp_earned=replayed.stored_total_xp_earned,
        first_mismatch_sequence=replayed.first_mismatch_sequence,
    )


@router.get("/{child_id}/progress", response_model=ProgressResponse)
async def progress(
    child_id: uuid.UUID,
    store: LedgerStore = Depends(get_ledger_store),
    db: AsyncSession = Depends(get_session),
) -> ProgressResponse:
    """Level bar plus streak status as of now."""
    snapshot = await store.get_balance(child_id)
    level = level_from_total_xp(snapshot.total_xp_earned)

    child = await get_child(db, child_id)
    family = await get_family_settings(db, child.family_id)
    now = datetime.now(timezone.utc)
    state = snapshot.streak_state
    current = effective_streak(state, now, family.streak_grace_period_hours)

    return ProgressResponse(
        child_id=child_id,
        level=level.level,
        total_xp=snapshot.total_xp_earned,
        xp_into_level=level.xp_into_level,
        xp_for_level=level.xp_for_level,
        xp_to_next_level=level.xp_to_next_level,
        progress=level.progress,
        is_max_level=level.is_max_level,
        points_balance=snapshot.points_balance,
        total_points_earned=snapshot.total_points_earned,
        streak=StreakResponse(
            current_streak=current,
            longest_streak=snapshot.longest_streak_days,
            last_activity_at=snapshot.last_activity_at,
            at_risk=is_streak_at_risk(state, now, family.streak_grace_period_hours),
            next_milestone=next_milestone(current),
            grace_period_hours=family.streak_grace_period_hours,
        ),
    )


@router.get("/{child_id}/capacity", response_model=ChildCapacityResponse)
async def capacity(child_id: uuid.UUID, db: AsyncSession = Depends(get_session)) -> ChildCapacityResponse:
    """Active assignments per task tag against the family limits."""
    summary = await TaskScheduler(db).get_child_capacity(child_id)
    entries = {
        tag: CapacityEntry(task_tag=tag, used=c.used, limit=c.limit, remaining=c.remaining)
        for tag, c in summary.items()
    }
    return ChildCapacityResponse(child_id=child_id, primary=entries["primary"], secondary=entries["secondary"])


# ---------------------------------------------------------------------------
# Family settings
# ---------------------------------------------------------------------------


@families_router.get("/{family_id}/settings", response_model=FamilySettingsResponse)
async def read_settings(family_id: uuid.UUID, db: AsyncSession = Depends(get_session)) -> FamilySettingsResponse:
    return _settings_response(await get_family_settings(db, family_id))


@families_router.put("/{family_id}/settings", response_model=FamilySettingsResponse)
async def write_settings(
    family_id: uuid.UUID,
    body: FamilySettingsRequest,
    db: AsyncSession = Depends(get_session),
) -> FamilySettingsResponse:
    row = await update_family_settings(db, family_id, **body.model_dump())
    return _settings_response(row)
