"""Domain errors raised by the ledger, redemption and scheduling services.

Every error carries a stable ``code`` (used by API clients to pick a message)
and a human-readable ``message`` that says exactly why the operation was
refused. None of these are retried: they describe business state, not a
transient failure.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all business-rule rejections."""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self) -> str:
        return "The operation could not be completed."


class InsufficientBalance(LedgerError):
    code = "InsufficientBalance"
    status_code = 422

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Not enough points. You have {balance} but need {required}.")


class InvalidTransaction(LedgerError):
    code = "InvalidTransaction"
    status_code = 422


class IdempotencyConflict(InvalidTransaction):
    """An idempotency key was reused for a different child or a different entry."""

    code = "IdempotencyConflict"
    status_code = 409

    def __init__(self, idempotency_key: str) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(f"Idempotency key {idempotency_key!r} was already used for a different transaction.")


class RewardUnavailable(LedgerError):
    """A redemption was refused because of the reward's state or caps."""

    code = "RewardUnavailable"
    status_code = 409


class RewardInactive(RewardUnavailable):
    code = "RewardInactive"

    def default_message(self) -> str:
        return "This reward is no longer available."


class RewardExpired(RewardUnavailable):
    code = "Expired"

    def default_message(self) -> str:
        return "This reward has expired."


class SoldOut(RewardUnavailable):
    code = "SoldOut"

    def default_message(self) -> str:
        return "This reward has been fully claimed by the household."


class PerChildLimitReached(RewardUnavailable):
    code = "PerChildLimitReached"

    def default_message(self) -> str:
        return "You have already claimed this reward the maximum number of times."


class CapacityExceeded(LedgerError):
    code = "CapacityExceeded"
    status_code = 409

    def __init__(self, child_first_name: str, task_tag: str, limit: int) -> None:
        self.task_tag = task_tag
        self.limit = limit
        noun = "task" if limit == 1 else "tasks"
        super().__init__(
            f"{child_first_name} already has {limit} active {task_tag} {noun}. "
            "Complete or remove an existing task first."
        )


class InvalidRedemptionState(LedgerError):
    code = "InvalidRedemptionState"
    status_code = 409

    def __init__(self, action: str, status: str) -> None:
        self.action = action
        self.status = status
        super().__init__(f"Cannot {action} a redemption that is {status}.")


class NotFound(LedgerError):
    code = "NotFound"
    status_code = 404
    resource = "Resource"

    def __init__(self, identifier: object) -> None:
        self.identifier = identifier
        super().__init__(f"{self.resource} not found")


class ChildNotFound(NotFound):
    code = "ChildNotFound"
    resource = "Child"


class RewardNotFound(NotFound):
    code = "RewardNotFound"
    resource = "Reward"


class RedemptionNotFound(NotFound):
    code = "RedemptionNotFound"
    resource = "Redemption"


class TaskNotFound(NotFound):
    code = "TaskNotFound"
    resource = "Task"
