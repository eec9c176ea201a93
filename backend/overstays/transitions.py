"""
Closed transition table for overstay records.

Every status change in the services goes through ``transition``; anything not
listed here is refused with ``StateConflictError`` and leaves the record alone.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from overstays.exceptions import StateConflictError
from overstays.models import OverstayRecord

Status = OverstayRecord.Status


class Action(str, Enum):
    REFRESH = "refresh"
    ENTER_GRACE = "enter_grace"
    FLAG_FOR_REVIEW = "flag_for_review"
    APPROVE = "approve"
    WAIVE = "waive"
    BEGIN_CHARGE = "begin_charge"
    NO_PAYMENT_METHOD = "no_payment_method"
    CHARGE_SUCCEEDED = "charge_succeeded"
    ESCALATE = "escalate"
    CHECKOUT_PAID = "checkout_paid"
    REFUND_PARTIAL = "refund_partial"
    REFUND_FULL = "refund_full"
    RESOLVE = "resolve"
    MANUAL_ESCALATE = "manual_escalate"


TRANSITIONS: dict[str, dict[Action, str]] = {
    Status.DETECTED: {
        Action.REFRESH: Status.DETECTED,
        Action.ENTER_GRACE: Status.GRACE_PERIOD,
        Action.FLAG_FOR_REVIEW: Status.PENDING_REVIEW,
        Action.RESOLVE: Status.RESOLVED,
        Action.MANUAL_ESCALATE: Status.ESCALATED,
    },
    Status.GRACE_PERIOD: {
        Action.REFRESH: Status.GRACE_PERIOD,
        Action.FLAG_FOR_REVIEW: Status.PENDING_REVIEW,
        Action.RESOLVE: Status.RESOLVED,
        Action.MANUAL_ESCALATE: Status.ESCALATED,
    },
    Status.PENDING_REVIEW: {
        Action.REFRESH: Status.PENDING_REVIEW,
        Action.APPROVE: Status.PENALTY_APPROVED,
        Action.WAIVE: Status.PENALTY_WAIVED,
        Action.RESOLVE: Status.RESOLVED,
        Action.MANUAL_ESCALATE: Status.ESCALATED,
    },
    Status.PENALTY_APPROVED: {
        Action.BEGIN_CHARGE: Status.CHARGE_PENDING,
        Action.NO_PAYMENT_METHOD: Status.CHARGE_FAILED,
        Action.CHECKOUT_PAID: Status.CHARGE_SUCCEEDED,
        Action.RESOLVE: Status.RESOLVED,
        Action.MANUAL_ESCALATE: Status.ESCALATED,
    },
    Status.CHARGE_FAILED: {
        Action.REFRESH: Status.CHARGE_FAILED,
        Action.APPROVE: Status.PENALTY_APPROVED,
        Action.WAIVE: Status.PENALTY_WAIVED,
        Action.BEGIN_CHARGE: Status.CHARGE_PENDING,
        Action.NO_PAYMENT_METHOD: Status.CHARGE_FAILED,
        Action.CHECKOUT_PAID: Status.CHARGE_SUCCEEDED,
        Action.RESOLVE: Status.RESOLVED,
        Action.MANUAL_ESCALATE: Status.ESCALATED,
    },
    # A worker that died mid-charge leaves the record here; re-entering waits until the attempt is stale.
    Status.CHARGE_PENDING: {
        Action.BEGIN_CHARGE: Status.CHARGE_PENDING,
        Action.NO_PAYMENT_METHOD: Status.CHARGE_FAILED,
        Action.CHARGE_SUCCEEDED: Status.CHARGE_SUCCEEDED,
        Action.ESCALATE: Status.ESCALATED,
    },
    # Only a paid checkout (or an operator re-charge that succeeds) leaves escalation.
    Status.ESCALATED: {
        Action.BEGIN_CHARGE: Status.CHARGE_PENDING,
        Action.NO_PAYMENT_METHOD: Status.CHARGE_FAILED,
        Action.CHECKOUT_PAID: Status.CHARGE_SUCCEEDED,
    },
    Status.CHARGE_SUCCEEDED: {
        Action.REFUND_PARTIAL: Status.CHARGE_SUCCEEDED,
        Action.REFUND_FULL: Status.RESOLVED,
    },
    Status.PENALTY_WAIVED: {},
    Status.RESOLVED: {},
}

TERMINAL_STATUSES = frozenset(status for status, moves in TRANSITIONS.items() if not moves)


def allowed_actions(status: str) -> frozenset[Action]:
    return frozenset(TRANSITIONS.get(status, {}))


def statuses_allowing(action: Action) -> frozenset[str]:
    return frozenset(status for status, moves in TRANSITIONS.items() if action in moves)


def can_transition(status: str, action: Action) -> bool:
    return action in TRANSITIONS.get(status, {})


def next_status(record: OverstayRecord, action: Action, *, conflict_message: Optional[str] = None) -> str:
    """Return the status ``action`` leads to, or raise when the table forbids it."""
    target = TRANSITIONS.get(record.status, {}).get(action)
    if target is None:
        message = conflict_message or "Cannot {action} overstay record in status: {status}"
        raise StateConflictError(
            message.format(action=action.value, status=record.status),
            current_status=record.status,
        )
    return target


def transition(record: OverstayRecord, action: Action, *, conflict_message: Optional[str] = None) -> str:
    """
    Apply ``action`` to ``record`` in memory and return the previous status.

    The caller saves the record and writes the history entry in the same
    transaction.
    """
    target = next_status(record, action, conflict_message=conflict_message)
    previous = record.status
    record.status = target
    return previous
