"""Scheduled maintenance jobs run by the arq worker."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy import select

from taskbuddy.children.service import get_family_settings
from taskbuddy.config import get_settings
from taskbuddy.database import close_db, get_session_factory, init_db
from taskbuddy.db.models import ChildProgress
from taskbuddy.events.emitter import DomainEvent, EventEmitter
from taskbuddy.gamification.streak_service import StreakState, is_streak_at_risk
from taskbuddy.ledger.store import LedgerStore
from taskbuddy.rewards.service import RedemptionEngine

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open DB and Redis and build the services the jobs share."""
    settings = get_settings()
    await init_db(settings.database_url)
    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    session_factory = get_session_factory()
    emitter = EventEmitter(
        redis=redis_client,
        session_factory=session_factory if settings.persist_notifications else None,
    )
    store = LedgerStore(session_factory, emitter=emitter)

    ctx["redis"] = redis_client
    ctx["emitter"] = emitter
    ctx["store"] = store
    ctx["engine"] = RedemptionEngine(store)
    logger.info("Maintenance worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Maintenance worker shut down")


async def deactivate_rewards(ctx: dict) -> int:  # type: ignore[type-arg]
    """Nightly: switch off expired and sold-out rewards."""
    engine: RedemptionEngine = ctx["engine"]
    count = await engine.deactivate_unavailable_rewards()
    if count:
        logger.info("Deactivated %d reward(s)", count)
    return count


async def warn_streaks_at_risk(ctx: dict, now: datetime | None = None) -> int:  # type: ignore[type-arg]
    """Evening: nudge children whose streak ends unless they finish a task today."""
    store: LedgerStore = ctx["store"]
    emitter: EventEmitter = ctx["emitter"]
    now = now or datetime.now(timezone.utc)

    events = []
    async with store.session_factory() as session:
        result = await session.execute(
            select(ChildProgress).where(ChildProgress.current_streak_days > 0)
        )
        grace_by_family: dict[uuid.UUID, int] = {}
        for child in result.scalars():
            if child.family_id not in grace_by_family:
                family = await get_family_settings(session, child.family_id)
                grace_by_family[child.family_id] = family.streak_grace_period_hours
            state = StreakState(child.current_streak_days, child.longest_streak_days, child.last_activity_at)
            if is_streak_at_risk(state, now, grace_by_family[child.family_id]):
                events.append(DomainEvent.streak_at_risk(child.child_id, child.current_streak_days))

    if events:
        await emitter.emit(*events)
    logger.info("Streak risk scan: %d child(ren) warned", len(events))
    return len(events)


async def audit_ledgers(ctx: dict) -> int:  # type: ignore[type-arg]
    """Nightly: replay every child's ledger and report drift."""
    store: LedgerStore = ctx["store"]
    async with store.session_factory() as session:
        result = await session.execute(select(ChildProgress.child_id))
        child_ids = list(result.scalars())

    mismatches = 0
    for child_id in child_ids:
        replayed = await store.replay(child_id)
        if not replayed.consistent:
            mismatches += 1
    logger.info("Ledger audit: %d child(ren), %d mismatch(es)", len(child_ids), mismatches)
    return mismatches

