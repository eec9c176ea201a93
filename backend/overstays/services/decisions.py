"""Manager approve / adjust / waive decisions on a reviewed overstay."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from notifications import tasks as notification_tasks
from overstays.exceptions import (
    OverstayError,
    OverstayValidationError,
    ResourceMissingError,
    ServiceResult,
)
from overstays.history import EventSource, EventType, record_history
from overstays.models import OverstayRecord
from overstays.notify import notify_after_commit
from overstays.transitions import Action, next_status, transition

logger = logging.getLogger(__name__)
User = get_user_model()

DECISION_CONFLICT = "Cannot process decision for record in status: {status}"
DEFAULT_WAIVE_REASON = "Manager waived penalty"


@dataclass(frozen=True)
class ApproveDecision:
    record_id: int
    manager_id: int
    final_penalty_cents: Optional[int] = None
    notes: str = ""


@dataclass(frozen=True)
class AdjustDecision:
    record_id: int
    manager_id: int
    final_penalty_cents: int
    notes: str = ""


@dataclass(frozen=True)
class WaiveDecision:
    record_id: int
    manager_id: int
    waive_reason: str = ""
    notes: str = ""


Decision = Union[ApproveDecision, AdjustDecision, WaiveDecision]


def _parse_amount(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise OverstayValidationError("Penalty amount must be a whole number of cents")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise OverstayValidationError("Penalty amount must be a whole number of cents") from None


def decision_from_payload(record_id: int, manager_id: int, payload: Mapping[str, Any]) -> Decision:
    """Build a typed decision from a loosely typed request body."""
    action = (payload.get("action") or "").strip().lower()
    notes = (payload.get("notes") or "").strip()
    if action == "approve":
        return ApproveDecision(
            record_id=record_id,
            manager_id=manager_id,
            final_penalty_cents=_parse_amount(payload.get("final_penalty_cents")),
            notes=notes,
        )
    if action == "adjust":
        amount = _parse_amount(payload.get("final_penalty_cents"))
        if amount is None:
            raise OverstayValidationError("Adjusted penalty amount is required")
        return AdjustDecision(
            record_id=record_id,
            manager_id=manager_id,
            final_penalty_cents=amount,
            notes=notes,
        )
    if action == "waive":
        return WaiveDecision(
            record_id=record_id,
            manager_id=manager_id,
            waive_reason=(payload.get("waive_reason") or payload.get("reason") or "").strip(),
            notes=notes,
        )
    raise OverstayValidationError(f"Unknown decision action: {action or 'missing'}")


def _check_amount(amount: int, ceiling: int) -> None:
    if amount < 0:
        raise OverstayValidationError("Penalty amount cannot be negative")
    if amount > ceiling:
        raise OverstayValidationError(
            f"Penalty amount ({amount} cents) cannot exceed the calculated maximum ({ceiling} cents)"
        )


def _apply(decision: Decision) -> OverstayRecord:
    manager = User.objects.filter(pk=decision.manager_id).first()
    if manager is None:
        raise ResourceMissingError("Manager not found")

    with transaction.atomic():
        record = OverstayRecord.objects.select_for_update().filter(pk=decision.record_id).first()
        if record is None:
            raise ResourceMissingError("Overstay record not found")

        now = timezone.now()
        if isinstance(decision, WaiveDecision):
            previous = transition(record, Action.WAIVE, conflict_message=DECISION_CONFLICT)
            reason = decision.waive_reason or DEFAULT_WAIVE_REASON
            record.final_penalty_cents = 0
            record.penalty_waived = True
            record.waive_reason = reason
            record.resolved_at = now
            record.resolution_type = OverstayRecord.ResolutionType.WAIVED
            event_type = EventType.PENALTY_WAIVED
            description = f"Penalty waived by {manager.get_username()}: {reason}"
        else:
            # Status is checked before the amount so a stale record reports the conflict.
            next_status(record, Action.APPROVE, conflict_message=DECISION_CONFLICT)
            amount = decision.final_penalty_cents
            if amount is None:
                amount = record.calculated_penalty_cents
            _check_amount(amount, record.calculated_penalty_cents)
            previous = transition(record, Action.APPROVE, conflict_message=DECISION_CONFLICT)
            record.final_penalty_cents = amount
            record.penalty_waived = False
            record.penalty_approved_at = now
            record.penalty_approved_by = manager
            event_type = EventType.PENALTY_APPROVED
            verb = "adjusted" if isinstance(decision, AdjustDecision) else "approved"
            description = f"Penalty {verb} by {manager.get_username()}: {amount} cents"

        if decision.notes:
            record.manager_notes = decision.notes
        record.save()

        record_history(
            record,
            previous_status=previous,
            event_type=event_type,
            event_source=EventSource.MANAGER,
            description=description,
            metadata={
                "action": type(decision).__name__.replace("Decision", "").lower(),
                "final_penalty_cents": record.final_penalty_cents,
                "calculated_penalty_cents": record.calculated_penalty_cents,
                "notes": decision.notes,
            },
            created_by=manager,
        )
        if record.status == OverstayRecord.Status.PENALTY_WAIVED:
            notify_after_commit(notification_tasks.send_overstay_penalty_waived_email, record.pk)
    return record


def apply_decision(decision: Decision) -> ServiceResult:
    """
    Record a manager decision.

    Allowed from ``pending_review`` and ``charge_failed`` only. Approve and
    adjust may lower the penalty but never raise it above the calculated
    ceiling. Failures come back as an unsuccessful result; the record is left
    untouched.
    """
    try:
        record = _apply(decision)
    except OverstayError as exc:
        logger.info(
            "overstays: decision rejected",
            extra={"record_id": decision.record_id, "error": str(exc)},
        )
        return ServiceResult.from_exception(exc)

    logger.info(
        "overstays: decision recorded",
        extra={"record_id": record.pk, "status": record.status, "manager_id": decision.manager_id},
    )
    return ServiceResult.ok(
        record_id=record.pk,
        status=record.status,
        final_penalty_cents=record.final_penalty_cents,
    )
