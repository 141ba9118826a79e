"""Level curve and computation.

XP needed to go from level n to n+1 is ``floor(100 * 1.5 ** (n - 1))``:

    1 -> 2:  100 XP
    2 -> 3:  150 XP
    3 -> 4:  225 XP
    4 -> 5:  337 XP
    ...

The table is built once with integer arithmetic so it is exact and never
changes for XP already earned. Level is always recomputed from lifetime XP;
it is never an independent source of truth.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

BASE_XP = 100
GROWTH_NUMERATOR = 3  # growth factor 1.5 expressed as 3/2
GROWTH_DENOMINATOR = 2
MAX_LEVEL = 100

# Milestone bonus Points per level reached: level 2 -> 10, level 3 -> 15, ...
LEVEL_MULTIPLIER = 5

# XP awarded per task difficulty when the approver does not override it.
TASK_XP: dict[str, int] = {
    "easy": 10,
    "medium": 15,
    "hard": 35,
}


def xp_required_for_level(level: int) -> int:
    """XP needed to advance from ``level`` to ``level + 1``."""
    if level < 1:
        msg = f"level must be >= 1, got {level}"
        raise ValueError(msg)
    exponent = level - 1
    return (BASE_XP * GROWTH_NUMERATOR**exponent) // (GROWTH_DENOMINATOR**exponent)


def _build_thresholds() -> list[dict[str, int]]:
    thresholds = []
    cumulative = 0
    for level in range(1, MAX_LEVEL + 1):
        required = xp_required_for_level(level) if level < MAX_LEVEL else 0
        thresholds.append({"level": level, "xp_required": required, "cumulative": cumulative})
        cumulative += required
    return thresholds


LEVEL_THRESHOLDS: list[dict[str, int]] = _build_thresholds()
_CUMULATIVE: list[int] = [t["cumulative"] for t in LEVEL_THRESHOLDS]


@dataclass(frozen=True)
class LevelProgress:
    level: int
    xp_into_level: int
    xp_for_level: int  # size of the current level band; 0 at MAX_LEVEL
    xp_to_next_level: int
    level_floor_xp: int

    @property
    def is_max_level(self) -> bool:
        return self.level >= MAX_LEVEL

    @property
    def progress(self) -> float:
        """Fraction of the current level completed, for the XP bar."""
        if self.xp_for_level == 0:
            return 1.0
        return self.xp_into_level / self.xp_for_level


def level_from_total_xp(total_xp: int) -> LevelProgress:
    """Compute level info from lifetime XP. Pure and deterministic."""
    total_xp = max(0, total_xp)
    index = bisect_right(_CUMULATIVE, total_xp) - 1
    current = LEVEL_THRESHOLDS[index]
    xp_into_level = total_xp - current["cumulative"]
    xp_for_level = current["xp_required"]
    return LevelProgress(
        level=current["level"],
        xp_into_level=xp_into_level,
        xp_for_level=xp_for_level,
        xp_to_next_level=max(0, xp_for_level - xp_into_level),
        level_floor_xp=current["cumulative"],
    )


def level_up_bonus(old_level: int, new_level: int) -> int:
    """Milestone bonus Points for every level gained (a big award can skip levels)."""
    return sum(level * LEVEL_MULTIPLIER for level in range(old_level + 1, new_level + 1))


def task_xp_for_difficulty(difficulty: str | None) -> int:
    return TASK_XP.get(difficulty or "medium", TASK_XP["medium"])
