"""Daily streak tracking: calendar-day evaluation, milestones and risk checks.

A streak day is a UTC calendar day with at least one approved completion.

- first completion ever           -> streak 1
- another completion the same day -> unchanged
- completion the next day         -> streak + 1
- one missed day, but completed within the family's grace window
  (the first ``grace_period_hours`` of the day)  -> streak + 1
- anything later                  -> streak resets to 1

Everything here is pure; the approval service persists the result through
the ledger unit of work.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

STREAK_MILESTONES: tuple[int, ...] = (7, 14, 21, 30, 60, 100, 150, 200, 365)

# Milestone bonus Points: 7 days -> 35, 14 -> 70, 30 -> 150, 100 -> 500, ...
STREAK_MILESTONE_POINTS_PER_DAY = 5

MIN_GRACE_PERIOD_HOURS = 0
MAX_GRACE_PERIOD_HOURS = 12


@dataclass(frozen=True)
class StreakState:
    current_streak_days: int = 0
    longest_streak_days: int = 0
    last_activity_at: datetime | None = None


@dataclass(frozen=True)
class StreakUpdate:
    current_streak_days: int
    longest_streak_days: int
    last_activity_at: datetime
    changed: bool
    is_new_record: bool
    milestone: int | None = None

    @property
    def milestone_bonus_points(self) -> int:
        return streak_milestone_bonus(self.milestone) if self.milestone else 0


def is_milestone(streak_days: int) -> bool:
    return streak_days in STREAK_MILESTONES


def streak_milestone_bonus(streak_days: int) -> int:
    if not is_milestone(streak_days):
        return 0
    return streak_days * STREAK_MILESTONE_POINTS_PER_DAY


def next_milestone(streak_days: int) -> int | None:
    """The next milestone strictly above ``streak_days``, or None past the last one."""
    for milestone in STREAK_MILESTONES:
        if milestone > streak_days:
            return milestone
    return None


def validate_grace_period(hours: int) -> int:
    if not MIN_GRACE_PERIOD_HOURS <= hours <= MAX_GRACE_PERIOD_HOURS:
        msg = f"grace period must be between {MIN_GRACE_PERIOD_HOURS} and {MAX_GRACE_PERIOD_HOURS} hours, got {hours}"
        raise ValueError(msg)
    return hours


def _utc_day(dt: datetime) -> date:
    return dt.astimezone(timezone.utc).date()


def _within_grace(moment: datetime, grace_period_hours: int) -> bool:
    if grace_period_hours <= 0:
        return False
    moment = moment.astimezone(timezone.utc)
    midnight = datetime.combine(moment.date(), time.min, tzinfo=timezone.utc)
    return moment - midnight < timedelta(hours=grace_period_hours)


def _days_since(last_activity_at: datetime, moment: datetime) -> int:
    return (_utc_day(moment) - _utc_day(last_activity_at)).days


def evaluate_streak(state: StreakState, completed_at: datetime, grace_period_hours: int) -> StreakUpdate:
    """Apply one completion to a child's streak state."""
    validate_grace_period(grace_period_hours)
    current = state.current_streak_days

    if state.last_activity_at is None:
        new_streak = 1
        last_activity_at = completed_at
    else:
        gap = _days_since(state.last_activity_at, completed_at)
        if gap <= 0:
            # Same day, or a late-arriving completion for an earlier day.
            new_streak = max(current, 1)
        elif gap == 1:
            new_streak = current + 1
        elif gap == 2 and _within_grace(completed_at, grace_period_hours):
            new_streak = current + 1
        else:
            new_streak = 1
        last_activity_at = max(state.last_activity_at, completed_at)

    changed = new_streak != current
    return StreakUpdate(
        current_streak_days=new_streak,
        longest_streak_days=max(state.longest_streak_days, new_streak),
        last_activity_at=last_activity_at,
        changed=changed,
        is_new_record=new_streak > state.longest_streak_days,
        milestone=new_streak if changed and is_milestone(new_streak) else None,
    )


def is_streak_broken(state: StreakState, now: datetime, grace_period_hours: int) -> bool:
    """True once the next completion would reset the streak to 1."""
    if state.current_streak_days == 0 or state.last_activity_at is None:
        return False
    gap = _days_since(state.last_activity_at, now)
    if gap <= 1:
        return False
    return not (gap == 2 and _within_grace(now, grace_period_hours))


def is_streak_at_risk(state: StreakState, now: datetime, grace_period_hours: int) -> bool:
    """Active streak, nothing completed today, and not yet broken."""
    if state.current_streak_days == 0 or state.last_activity_at is None:
        return False
    if _days_since(state.last_activity_at, now) <= 0:
        return False
    return not is_streak_broken(state, now, grace_period_hours)


def effective_streak(state: StreakState, now: datetime, grace_period_hours: int) -> int:
    """Streak as it should be displayed right now (0 once broken)."""
    if is_streak_broken(state, now, grace_period_hours):
        return 0
    return state.current_streak_days
