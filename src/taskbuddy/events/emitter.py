"""Domain events published after a ledger commit.

Delivery is fire-and-forget: events go to Redis pub/sub (per-child
``ws:user:{child_id}`` plus a ``pubsub:*`` broadcast channel that the
real-time bridge fans out) and are copied into the ``notifications`` table.
A failure in either sink is logged and swallowed; it never touches the
ledger write that produced the event, which is already committed.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskbuddy.db.models import Notification

logger = logging.getLogger(__name__)


class EventName(StrEnum):
    POINTS_UPDATED = "points:updated"
    LEVEL_UP = "level:up"
    ACHIEVEMENT_UNLOCKED = "achievement:unlocked"
    STREAK_MILESTONE = "streak:milestone"
    REDEMPTION_FULFILLED = "redemption:fulfilled"
    STREAK_AT_RISK = "streak:at_risk"


# Redis broadcast channel per event, consumed by the real-time bridge.
BROADCAST_CHANNELS: dict[EventName, str] = {
    EventName.POINTS_UPDATED: "pubsub:points_updated",
    EventName.LEVEL_UP: "pubsub:level_up",
    EventName.ACHIEVEMENT_UNLOCKED: "pubsub:achievement_unlocked",
    EventName.STREAK_MILESTONE: "pubsub:streak_milestone",
    EventName.REDEMPTION_FULFILLED: "pubsub:redemption_fulfilled",
    EventName.STREAK_AT_RISK: "pubsub:streak_at_risk",
}


@dataclass(frozen=True)
class DomainEvent:
    name: EventName
    child_id: uuid.UUID
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def payload(self) -> dict[str, Any]:
        return {"childId": str(self.child_id), **self.data}

    @classmethod
    def points_updated(cls, child_id: uuid.UUID, new_balance: int, delta: int, reason: str) -> DomainEvent:
        return cls(EventName.POINTS_UPDATED, child_id, {"newBalance": new_balance, "delta": delta, "reason": reason})

    @classmethod
    def level_up(cls, child_id: uuid.UUID, new_level: int, bonus_points: int) -> DomainEvent:
        return cls(EventName.LEVEL_UP, child_id, {"newLevel": new_level, "bonusPoints": bonus_points})

    @classmethod
    def achievement_unlocked(cls, child_id: uuid.UUID, achievement_name: str) -> DomainEvent:
        return cls(EventName.ACHIEVEMENT_UNLOCKED, child_id, {"achievementName": achievement_name})

    @classmethod
    def streak_milestone(cls, child_id: uuid.UUID, streak_days: int, bonus_points: int) -> DomainEvent:
        return cls(EventName.STREAK_MILESTONE, child_id, {"streakDays": streak_days, "bonusPoints": bonus_points})

    @classmethod
    def redemption_fulfilled(cls, child_id: uuid.UUID, redemption_id: uuid.UUID, reward_name: str) -> DomainEvent:
        return cls(
            EventName.REDEMPTION_FULFILLED,
            child_id,
            {"redemptionId": str(redemption_id), "rewardName": reward_name},
        )

    @classmethod
    def streak_at_risk(cls, child_id: uuid.UUID, streak_days: int) -> DomainEvent:
        return cls(EventName.STREAK_AT_RISK, child_id, {"streakDays": streak_days})


class EventSink(Protocol):
    async def emit(self, *events: DomainEvent) -> None: ...


def _notification_text(event: DomainEvent) -> tuple[str, str]:
    data = event.data
    if event.name is EventName.POINTS_UPDATED:
        delta = data.get("delta", 0)
        sign = "+" if delta >= 0 else ""
        return "Points Updated", f"{sign}{delta} points. New balance: {data['newBalance']}"
    if event.name is EventName.LEVEL_UP:
        return "Level Up!", f"Level {data['newLevel']} reached. Bonus {data['bonusPoints']} points"
    if event.name is EventName.ACHIEVEMENT_UNLOCKED:
        return "Achievement Unlocked", data["achievementName"]
    if event.name is EventName.STREAK_MILESTONE:
        return "Streak Milestone", f"{data['streakDays']}-day streak! Bonus {data['bonusPoints']} points"
    if event.name is EventName.STREAK_AT_RISK:
        return "Streak at Risk", f"Complete a task today to keep your {data['streakDays']}-day streak"
    return "Reward Fulfilled", f"{data['rewardName']} has been handed over"


class EventEmitter:
    """Publishes domain events to Redis and stores them as notifications."""

    def __init__(
        self,
        redis: object | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.redis = redis
        self.session_factory = session_factory

    async def emit(self, *events: DomainEvent) -> None:
        if not events:
            return
        for event in events:
            await self._publish(event)
        await self._store(events)

    async def _publish(self, event: DomainEvent) -> None:
        if self.redis is None:
            return
        message = json.dumps({"event": event.name.value, "data": event.payload})
        try:
            await self.redis.publish(f"ws:user:{event.child_id}", message)  # type: ignore[attr-defined]
            await self.redis.publish(BROADCAST_CHANNELS[event.name], message)  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Failed to publish %s for child %s", event.name, event.child_id, exc_info=True)

    async def _store(self, events: Iterable[DomainEvent]) -> None:
        if self.session_factory is None:
            return
        now = datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                for event in events:
                    title, description = _notification_text(event)
                    session.add(Notification(
                        child_id=event.child_id,
                        type=event.name.value,
                        title=title,
                        description=description,
                        payload=event.payload,
                        created_at=now,
                    ))
                await session.commit()
        except Exception:
            logger.warning("Failed to store notifications", exc_info=True)
