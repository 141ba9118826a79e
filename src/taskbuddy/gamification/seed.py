"""Achievement catalog seed data, upserted on startup."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskbuddy.db.models import Achievement

logger = logging.getLogger(__name__)


def _achievement(
    slug: str,
    name: str,
    description: str,
    category: str,
    tier: str,
    criteria_type: str,
    criteria_value: int,
    points_reward: int,
    xp_reward: int,
) -> dict:
    return {
        "slug": slug,
        "name": name,
        "description": description,
        "category": category,
        "tier": tier,
        "criteria_type": criteria_type,
        "criteria_value": criteria_value,
        "points_reward": points_reward,
        "xp_reward": xp_reward,
    }


ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Tasks
    _achievement("first_step", "First Step", "Complete your very first task",
                 "tasks", "bronze", "tasks_completed", 1, 10, 25),
    _achievement("getting_started", "Getting Started", "Complete 5 tasks",
                 "tasks", "bronze", "tasks_completed", 5, 25, 50),
    _achievement("task_master", "Task Master", "Complete 25 tasks",
                 "tasks", "silver", "tasks_completed", 25, 50, 100),
    _achievement("unstoppable", "Unstoppable", "Complete 100 tasks",
                 "tasks", "gold", "tasks_completed", 100, 150, 300),
    _achievement("legendary_helper", "Legendary Helper", "Complete 500 tasks",
                 "tasks", "platinum", "tasks_completed", 500, 500, 1000),
    # Streaks
    _achievement("consistent", "Consistent", "Maintain a 3-day streak",
                 "streaks", "bronze", "streak_days", 3, 15, 30),
    _achievement("on_a_roll", "On a Roll", "Maintain a 7-day streak",
                 "streaks", "silver", "streak_days", 7, 50, 100),
    _achievement("dedicated", "Dedicated", "Maintain a 14-day streak",
                 "streaks", "gold", "streak_days", 14, 100, 200),
    _achievement("ironclad", "Ironclad", "Maintain a 30-day streak",
                 "streaks", "platinum", "streak_days", 30, 300, 600),
    # Points
    _achievement("saver", "Saver", "Earn 100 total points",
                 "points", "bronze", "points_earned", 100, 10, 20),
    _achievement("treasure_hunter", "Treasure Hunter", "Earn 500 total points",
                 "points", "silver", "points_earned", 500, 50, 100),
    _achievement("rich_kid", "Rich Kid", "Earn 2,000 total points",
                 "points", "gold", "points_earned", 2000, 100, 250),
    # Milestones
    _achievement("level_up", "Level Up!", "Reach Level 5",
                 "milestones", "bronze", "level_reached", 5, 25, 50),
    _achievement("rising_star", "Rising Star", "Reach Level 10",
                 "milestones", "silver", "level_reached", 10, 75, 150),
    _achievement("champion", "Champion", "Reach Level 25",
                 "milestones", "gold", "level_reached", 25, 200, 500),
    _achievement("first_reward", "First Reward", "Redeem your first reward",
                 "milestones", "bronze", "rewards_redeemed", 1, 15, 30),
]

for _order, _data in enumerate(ACHIEVEMENT_SEED_DATA, start=1):
    _data["sort_order"] = _order


async def seed_achievements(db: AsyncSession) -> int:
    """Insert or refresh every catalog entry. Returns the number seeded.

    Unlocks already recorded keep pointing at the same slug; catalog rows are
    never deleted.
    """
    result = await db.execute(select(Achievement))
    existing = {a.slug: a for a in result.scalars().all()}

    for data in ACHIEVEMENT_SEED_DATA:
        row = existing.get(data["slug"])
        if row is None:
            db.add(Achievement(is_active=True, **data))
        else:
            for field, value in data.items():
                setattr(row, field, value)

    await db.commit()
    logger.info("Seeded %d achievement definitions", len(ACHIEVEMENT_SEED_DATA))
    return len(ACHIEVEMENT_SEED_DATA)
