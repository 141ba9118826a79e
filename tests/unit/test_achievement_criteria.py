"""Achievement criteria: which running total each type reads, and thresholds."""

import pytest

from taskbuddy.gamification.achievement_service import ChildStats, CriteriaType, criteria_met
from taskbuddy.gamification.seed import ACHIEVEMENT_SEED_DATA


def _stats(**overrides: int) -> ChildStats:
    values = {
        "tasks_completed": 0,
        "current_streak_days": 0,
        "longest_streak_days": 0,
        "total_points_earned": 0,
        "level": 1,
        "rewards_redeemed": 0,
    }
    values.update(overrides)
    return ChildStats(**values)


class TestValueFor:
    @pytest.mark.parametrize(
        ("criteria_type", "field", "value"),
        [
            ("tasks_completed", "tasks_completed", 12),
            ("points_earned", "total_points_earned", 340),
            ("level_reached", "level", 6),
            ("rewards_redeemed", "rewards_redeemed", 2),
        ],
    )
    def test_reads_matching_total(self, criteria_type, field, value):
        assert _stats(**{field: value}).value_for(criteria_type) == value

    def test_streak_uses_best_of_current_and_longest(self):
        assert _stats(current_streak_days=2, longest_streak_days=9).value_for("streak_days") == 9
        assert _stats(current_streak_days=4, longest_streak_days=4).value_for("streak_days") == 4

    def test_unknown_type(self):
        assert _stats().value_for("early_completion") is None


class TestCriteriaMet:
    def test_threshold_is_inclusive(self):
        assert criteria_met(CriteriaType.TASKS_COMPLETED, 5, _stats(tasks_completed=5))
        assert not criteria_met(CriteriaType.TASKS_COMPLETED, 5, _stats(tasks_completed=4))

    def test_broken_streak_still_counts_longest(self):
        stats = _stats(current_streak_days=0, longest_streak_days=7)
        assert criteria_met(CriteriaType.STREAK_DAYS, 7, stats)

    def test_unknown_type_never_met(self):
        assert not criteria_met("perfect_week", 0, _stats(tasks_completed=100))


def test_catalog_uses_known_criteria_and_unique_slugs():
    slugs = [a["slug"] for a in ACHIEVEMENT_SEED_DATA]
    assert len(slugs) == len(set(slugs))
    assert {a["criteria_type"] for a in ACHIEVEMENT_SEED_DATA} <= set(CriteriaType)
    assert [a["sort_order"] for a in ACHIEVEMENT_SEED_DATA] == list(range(1, len(slugs) + 1))
