"""Transaction types, per-type accounting rules and typed entry details.

Each ledger entry carries a ``details`` payload drawn from a closed set of
variants, discriminated by ``kind``. The rule table below pins which
variants and which point/XP signs are legal for each transaction type, so
XP can only ever go down through an audited ``adjustment``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from taskbuddy.errors import InvalidTransaction


class TransactionType(StrEnum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    BONUS = "bonus"
    PENALTY = "penalty"
    ADJUSTMENT = "adjustment"
    MILESTONE_BONUS = "milestone_bonus"


# Debits are refused outright when the balance cannot cover them.
DEBIT_TYPES = frozenset({TransactionType.REDEEMED, TransactionType.PENALTY})

# Positive points of these types count toward lifetime ``total_points_earned``.
EARNING_TYPES = frozenset({
    TransactionType.EARNED,
    TransactionType.BONUS,
    TransactionType.MILESTONE_BONUS,
})


@dataclass(frozen=True)
class LedgerReference:
    """Link from an entry to the record that caused it."""

    type: str
    id: str

    @classmethod
    def task_assignment(cls, assignment_id: object) -> LedgerReference:
        return cls("task_assignment", str(assignment_id))

    @classmethod
    def redemption(cls, redemption_id: object) -> LedgerReference:
        return cls("redemption", str(redemption_id))

    @classmethod
    def redemption_cancellation(cls, redemption_id: object) -> LedgerReference:
        return cls("redemption_cancellation", str(redemption_id))

    @classmethod
    def level_up(cls, child_id: object) -> LedgerReference:
        return cls("level_up", str(child_id))

    @classmethod
    def streak_milestone(cls, child_id: object) -> LedgerReference:
        return cls("streak_milestone", str(child_id))

    @classmethod
    def achievement(cls, slug: str) -> LedgerReference:
        return cls("achievement", slug)


# ---------------------------------------------------------------------------
# Entry details (closed tagged variant)
# ---------------------------------------------------------------------------


class _Detail(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class TaskCompletionDetail(_Detail):
    kind: Literal["task_completion"] = "task_completion"
    task_assignment_id: str


class RedemptionDetail(_Detail):
    kind: Literal["redemption"] = "redemption"
    redemption_id: str
    reward_id: str
    reward_name: str | None = None


class BonusDetail(_Detail):
    kind: Literal["bonus"] = "bonus"
    reason: str = Field(min_length=1, max_length=200)


class PenaltyDetail(_Detail):
    kind: Literal["penalty"] = "penalty"
    reason: str = Field(min_length=1, max_length=200)


class AdjustmentDetail(_Detail):
    """Audited correction. The only variant allowed to move XP downward."""

    kind: Literal["adjustment"] = "adjustment"
    reason: str = Field(min_length=1, max_length=200)
    reverses_entry_id: str | None = None
    performed_by: str | None = None


class LevelUpDetail(_Detail):
    kind: Literal["level_up"] = "level_up"
    old_level: int = Field(ge=1)
    new_level: int = Field(ge=2)


class StreakMilestoneDetail(_Detail):
    kind: Literal["streak_milestone"] = "streak_milestone"
    streak_days: int = Field(ge=1)


class AchievementDetail(_Detail):
    kind: Literal["achievement"] = "achievement"
    achievement_slug: str
    achievement_name: str


EntryDetail = Annotated[
    Union[
        TaskCompletionDetail,
        RedemptionDetail,
        BonusDetail,
        PenaltyDetail,
        AdjustmentDetail,
        LevelUpDetail,
        StreakMilestoneDetail,
        AchievementDetail,
    ],
    Field(discriminator="kind"),
]

_detail_adapter: TypeAdapter[EntryDetail] = TypeAdapter(EntryDetail)


def parse_detail(raw: dict) -> EntryDetail:
    """Load a stored ``details`` JSON payload back into its variant."""
    return _detail_adapter.validate_python(raw)


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


class Sign(StrEnum):
    ANY = "any"
    ZERO = "zero"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NON_NEGATIVE = "non_negative"


def _sign_ok(sign: Sign, value: int) -> bool:
    if sign is Sign.ANY:
        return True
    if sign is Sign.ZERO:
        return value == 0
    if sign is Sign.POSITIVE:
        return value > 0
    if sign is Sign.NEGATIVE:
        return value < 0
    return value >= 0


@dataclass(frozen=True)
class TransactionRule:
    points: Sign
    xp: Sign
    detail_kinds: frozenset[str]


TRANSACTION_RULES: dict[TransactionType, TransactionRule] = {
    TransactionType.EARNED: TransactionRule(Sign.NON_NEGATIVE, Sign.NON_NEGATIVE, frozenset({"task_completion"})),
    TransactionType.REDEEMED: TransactionRule(Sign.NEGATIVE, Sign.ZERO, frozenset({"redemption"})),
    TransactionType.BONUS: TransactionRule(Sign.NON_NEGATIVE, Sign.NON_NEGATIVE, frozenset({"bonus", "achievement"})),
    TransactionType.PENALTY: TransactionRule(Sign.NEGATIVE, Sign.ZERO, frozenset({"penalty"})),
    TransactionType.ADJUSTMENT: TransactionRule(Sign.ANY, Sign.ANY, frozenset({"adjustment"})),
    TransactionType.MILESTONE_BONUS: TransactionRule(
        Sign.POSITIVE, Sign.ZERO, frozenset({"level_up", "streak_milestone"})
    ),
}


def _default_detail(transaction_type: TransactionType, reference: LedgerReference | None) -> EntryDetail | None:
    if transaction_type is TransactionType.EARNED and reference is not None:
        return TaskCompletionDetail(task_assignment_id=reference.id)
    if transaction_type is TransactionType.BONUS:
        return BonusDetail(reason="Bonus")
    if transaction_type is TransactionType.PENALTY:
        return PenaltyDetail(reason="Penalty")
    return None


def validate_transaction(
    transaction_type: TransactionType | str,
    points_amount: int,
    xp_amount: int,
    reference: LedgerReference | None = None,
    details: EntryDetail | dict | None = None,
) -> tuple[TransactionType, EntryDetail]:
    """Check a proposed transaction against the rule table.

    Returns the normalised type and details; raises ``InvalidTransaction``.
    """
    try:
        ttype = TransactionType(transaction_type)
    except ValueError:
        raise InvalidTransaction(f"Unknown transaction type: {transaction_type!r}") from None

    if isinstance(details, dict):
        try:
            details = parse_detail(details)
        except ValidationError as exc:
            raise InvalidTransaction(f"Invalid details for {ttype}: {exc.errors()[0]['msg']}") from exc
    if details is None:
        details = _default_detail(ttype, reference)
    if details is None:
        raise InvalidTransaction(f"A {ttype} transaction requires explicit details.")

    rule = TRANSACTION_RULES[ttype]
    if details.kind not in rule.detail_kinds:
        raise InvalidTransaction(f"Details of kind {details.kind!r} are not valid for a {ttype} transaction.")
    if not _sign_ok(rule.points, points_amount):
        raise InvalidTransaction(f"Points amount {points_amount} is not allowed for {ttype} ({rule.points}).")
    if not _sign_ok(rule.xp, xp_amount):
        raise InvalidTransaction(f"XP amount {xp_amount} is not allowed for {ttype} ({rule.xp}).")
    return ttype, details


# Types a parent may post directly; the rest come from approvals and redemptions.
MANUAL_TYPES = frozenset({TransactionType.BONUS, TransactionType.PENALTY, TransactionType.ADJUSTMENT})


def manual_detail(
    transaction_type: TransactionType | str,
    reason: str,
    performed_by: str | None = None,
    reverses_entry_id: str | None = None,
) -> EntryDetail:
    ttype = TransactionType(transaction_type)
    if ttype not in MANUAL_TYPES:
        raise InvalidTransaction(f"{ttype} entries cannot be posted manually.")
    if ttype is TransactionType.BONUS:
        return BonusDetail(reason=reason)
    if ttype is TransactionType.PENALTY:
        return PenaltyDetail(reason=reason)
    return AdjustmentDetail(reason=reason, performed_by=performed_by, reverses_entry_id=reverses_entry_id)
