"""Family settings lookup and child profile helpers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.config import get_settings
from taskbuddy.db.models import ChildProgress, FamilySettings
from taskbuddy.errors import ChildNotFound
from taskbuddy.gamification.streak_service import validate_grace_period


def default_family_settings(family_id: uuid.UUID) -> FamilySettings:
    """Unsaved settings row carrying the configured defaults."""
    settings = get_settings()
    return FamilySettings(
        family_id=family_id,
        streak_grace_period_hours=settings.default_streak_grace_period_hours,
        max_active_primary=settings.default_max_active_primary,
        max_active_secondary=settings.default_max_active_secondary,
        updated_at=datetime.now(timezone.utc),
    )


async def get_family_settings(db: AsyncSession, family_id: uuid.UUID) -> FamilySettings:
    """Stored settings for a family, or the defaults when none were saved."""
    stored = await db.get(FamilySettings, family_id)
    return stored if stored is not None else default_family_settings(family_id)


async def update_family_settings(
    db: AsyncSession,
    family_id: uuid.UUID,
    *,
    streak_grace_period_hours: int | None = None,
    max_active_primary: int | None = None,
    max_active_secondary: int | None = None,
) -> FamilySettings:
    row = await db.get(FamilySettings, family_id)
    if row is None:
        row = default_family_settings(family_id)
        db.add(row)
    if streak_grace_period_hours is not None:
        row.streak_grace_period_hours = validate_grace_period(streak_grace_period_hours)
    if max_active_primary is not None:
        row.max_active_primary = max_active_primary
    if max_active_secondary is not None:
        row.max_active_secondary = max_active_secondary
    row.updated_at = datetime.now(timezone.utc)
    await db.commit()
    return row


async def get_child(db: AsyncSession, child_id: uuid.UUID) -> ChildProgress:
    child = await db.get(ChildProgress, child_id)
    if child is None:
        raise ChildNotFound(child_id)
    return child
