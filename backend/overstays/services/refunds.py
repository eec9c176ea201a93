"""
Full and partial refunds of a collected overstay penalty.

The refund request (amount and idempotency key) is persisted on the record
and committed before the gateway is called. A request whose outcome was
never recorded is repeated under the same key, so the gateway cannot issue
it twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.utils import timezone

from notifications import tasks as notification_tasks
from overstays.exceptions import (
    OverstayError,
    OverstayValidationError,
    ResourceMissingError,
    ServiceResult,
    StateConflictError,
)
from overstays.history import EventSource, EventType, record_history
from overstays.models import OverstayRecord
from overstays.notify import notify_after_commit
from overstays.transitions import Action, next_status, transition
from payments.gateway import PaymentGateway, RefundResult
from payments.ledger import apply_refund

logger = logging.getLogger(__name__)

REFUND_CONFLICT = "Can only refund penalties that were successfully charged (status: {status})"
REFUND_IN_PROGRESS = "A refund of {amount} cents is already in progress for this penalty"
GATEWAY_REFUND_REASON = "requested_by_customer"


def refund_idempotency_key(record_id: int, amount_cents: int, already_refunded_cents: int) -> str:
    return f"overstay_refund_{record_id}_{amount_cents}_{already_refunded_cents}"


def _refund_amount(record: OverstayRecord, partial_amount_cents: Optional[int]) -> int:
    remaining = record.refundable_cents
    amount = remaining if partial_amount_cents is None else int(partial_amount_cents)
    if amount <= 0:
        raise OverstayValidationError("Refund amount must be greater than zero")
    if amount > remaining:
        raise OverstayValidationError(
            f"Refund amount ({amount} cents) cannot exceed the refundable balance ({remaining} cents)"
        )
    return amount


def _lock_record(record_id: int) -> OverstayRecord:
    record = (
        OverstayRecord.objects.select_for_update()
        .select_related("booking")
        .filter(pk=record_id)
        .first()
    )
    if record is None:
        raise ResourceMissingError("Overstay record not found")
    return record


@dataclass(frozen=True)
class _PendingRefund:
    record_id: int
    payment_intent_id: str
    amount_cents: int
    idempotency_key: str


def _begin_refund(record_id: int, partial_amount_cents: Optional[int]) -> _PendingRefund:
    with transaction.atomic():
        record = _lock_record(record_id)
        next_status(record, Action.REFUND_PARTIAL, conflict_message=REFUND_CONFLICT)
        if not record.payment_intent_id:
            raise OverstayValidationError(
                "No payment reference on this penalty; refund it manually in Stripe"
            )
        if record.pending_refund_key:
            pending = record.pending_refund_cents
            if partial_amount_cents is not None and int(partial_amount_cents) != pending:
                raise StateConflictError(
                    REFUND_IN_PROGRESS.format(amount=pending),
                    current_status=record.status,
                )
            return _PendingRefund(record.pk, record.payment_intent_id, pending, record.pending_refund_key)

        amount = _refund_amount(record, partial_amount_cents)
        key = refund_idempotency_key(record.pk, amount, record.refunded_amount_cents)
        record.pending_refund_cents = amount
        record.pending_refund_key = key
        record.save()
    return _PendingRefund(record.pk, record.payment_intent_id, amount, key)


def _release_refund(pending: _PendingRefund) -> None:
    with transaction.atomic():
        record = _lock_record(pending.record_id)
        if record.pending_refund_key == pending.idempotency_key:
            record.pending_refund_cents = 0
            record.pending_refund_key = ""
            record.save()


def _record_refund(
    pending: _PendingRefund,
    refund: RefundResult,
    *,
    reason: str,
    refunded_by,
) -> tuple[OverstayRecord, bool]:
    """Apply a refund the gateway issued; returns ``(record, applied)``."""
    with transaction.atomic():
        record = _lock_record(pending.record_id)
        if record.pending_refund_key != pending.idempotency_key:
            # A repeat of the same request already recorded it.
            return record, False

        amount = pending.amount_cents
        now = timezone.now()
        record.refunded_amount_cents += amount
        record.refund_id = refund.refund_id
        record.refunded_at = now
        record.pending_refund_cents = 0
        record.pending_refund_key = ""
        full = record.refunded_amount_cents >= record.collected_amount_cents
        previous = transition(
            record,
            Action.REFUND_FULL if full else Action.REFUND_PARTIAL,
            conflict_message=REFUND_CONFLICT,
        )
        if full:
            record.resolved_at = now
            record.resolution_type = OverstayRecord.ResolutionType.REFUNDED
        record.save()
        record_history(
            record,
            previous_status=previous,
            event_type=EventType.REFUND,
            event_source=EventSource.MANAGER,
            description=f"{'Full' if full else 'Partial'} refund of {amount} cents: {reason}",
            metadata={
                "refund_id": refund.refund_id,
                "amount_cents": amount,
                "total_refunded_cents": record.refunded_amount_cents,
                "reason": reason,
            },
            created_by=refunded_by,
        )
        notify_after_commit(notification_tasks.send_overstay_refund_email, record.pk, amount)
    return record, True


def refund_penalty(
    record_id: int,
    *,
    reason: str,
    refunded_by,
    gateway: PaymentGateway,
    partial_amount_cents: Optional[int] = None,
) -> ServiceResult:
    """
    Refund some or all of a collected penalty.

    Refunds accumulate; the record only moves to ``resolved`` once the whole
    charged amount has gone back to the renter. Only one refund request is
    in flight per record at a time.
    """
    reason = (reason or "").strip()
    try:
        if not reason:
            raise OverstayValidationError("Refund reason is required")
        pending = _begin_refund(record_id, partial_amount_cents)
    except OverstayError as exc:
        logger.info("overstays: refund rejected", extra={"record_id": record_id, "error": str(exc)})
        return ServiceResult.from_exception(exc)

    try:
        refund = gateway.refund(
            payment_intent_id=pending.payment_intent_id,
            amount_cents=pending.amount_cents,
            reason=GATEWAY_REFUND_REASON,
            idempotency_key=pending.idempotency_key,
            metadata={
                "kind": "overstay_penalty_refund",
                "overstay_record_id": str(pending.record_id),
                "reason": reason[:500],
            },
        )
    except Exception as exc:
        logger.warning(
            "overstays: gateway refund failed for record %s",
            pending.record_id,
            exc_info=True,
        )
        _release_refund(pending)
        return ServiceResult.fail(
            f"Refund failed: {exc}",
            kind="gateway",
            http_status=502,
            record_id=pending.record_id,
        )

    try:
        record, applied = _record_refund(pending, refund, reason=reason, refunded_by=refunded_by)
    except OverstayError as exc:
        logger.exception("overstays: could not record refund %s for %s", refund.refund_id, record_id)
        return ServiceResult.from_exception(exc)

    if applied:
        try:
            with transaction.atomic():
                apply_refund(
                    payment_intent_id=record.payment_intent_id,
                    refund_amount_cents=pending.amount_cents,
                    refund_id=refund.refund_id,
                )
        except Exception:
            logger.exception("overstays: billing refund update failed for record %s", record.pk)

    logger.info(
        "overstays: penalty refunded",
        extra={"record_id": record.pk, "amount_cents": pending.amount_cents, "applied": applied},
    )
    return ServiceResult.ok(
        record_id=record.pk,
        status=record.status,
        refund_id=refund.refund_id,
        amount_cents=pending.amount_cents,
        refunded_amount_cents=record.refunded_amount_cents,
        remaining_cents=record.refundable_cents,
    )
