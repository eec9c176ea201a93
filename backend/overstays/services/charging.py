"""
Off-session collection of an approved overstay penalty.

The record is moved to ``charge_pending`` and committed before the gateway is
called, so a crashed worker leaves a visible record that can be re-driven.
Any failure from the gateway, reported or raised, escalates the record to a
hosted checkout link; there is no automatic retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
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
from payments.gateway import OffSessionCharge, PaymentGateway
from payments.ledger import record_payment_transaction, sync_stripe_fees
from payments.models import OwnerPayoutAccount, PaymentTransaction
from payments.tax import add_tax, processing_fee_cents

logger = logging.getLogger(__name__)

Status = OverstayRecord.Status

CHARGE_CONFLICT = "Cannot charge penalty for record in status: {status}"
CHARGE_IN_PROGRESS = "A charge for this penalty is already in progress"
NO_PAYMENT_METHOD_REASON = "No saved payment method available"
SCA_FAILURE_REASON = "Payment requires authentication (3DS/SCA)"
SCA_STATUSES = frozenset({"requires_action", "requires_confirmation", "requires_payment_method"})
STATEMENT_DESCRIPTOR_SUFFIX = "OVERSTAY FEE"
# A charge_pending record younger than this belongs to a live attempt.
STALE_CHARGE_MINUTES = 60


@dataclass(frozen=True)
class PenaltyAmounts:
    base_cents: int
    tax_cents: int
    total_cents: int
    tax_rate_percent: Decimal
    platform_fee_cents: int

    def as_metadata(self) -> dict[str, str]:
        return {
            "penalty_base_cents": str(self.base_cents),
            "penalty_tax_cents": str(self.tax_cents),
            "tax_rate_percent": str(self.tax_rate_percent),
        }


def compute_penalty_amounts(
    base_cents: int,
    tax_rate_percent,
    *,
    has_destination: bool,
) -> PenaltyAmounts:
    """Tax on the base, then the processing-fee surcharge on the taxed total."""
    rate = Decimal(str(tax_rate_percent or 0))
    tax_cents, total_cents = add_tax(base_cents, rate)
    return PenaltyAmounts(
        base_cents=base_cents,
        tax_cents=tax_cents,
        total_cents=total_cents,
        tax_rate_percent=rate,
        platform_fee_cents=processing_fee_cents(total_cents) if has_destination else 0,
    )


def resolve_payment_method(booking) -> tuple[str, str]:
    """Booking-level Stripe references, falling back to the renter's profile customer."""
    customer_id = (booking.renter_stripe_customer_id or "").strip()
    if not customer_id:
        customer_id = (getattr(booking.renter, "stripe_customer_id", "") or "").strip()
    payment_method_id = (booking.renter_stripe_payment_method_id or "").strip()
    return customer_id, payment_method_id


def resolve_destination_account(location) -> Optional[str]:
    """The location manager's connected account, when it can take destination charges."""
    manager_id = getattr(location, "manager_id", None)
    if not manager_id:
        return None
    account = OwnerPayoutAccount.objects.filter(user_id=manager_id).first()
    if account is None or not account.can_receive_destination_charges:
        return None
    return account.stripe_account_id


def charge_idempotency_key(record_id: int, day: date) -> str:
    return f"overstay_penalty_{record_id}_{day.isoformat()}"


def _failure_reason_for_status(status: str) -> str:
    if status in SCA_STATUSES:
        return SCA_FAILURE_REASON
    return f"Payment status: {status}"


def _failure_reason_for_exception(exc: Exception) -> str:
    code = getattr(exc, "code", "") or ""
    if code == "authentication_required":
        return SCA_FAILURE_REASON
    return str(exc) or exc.__class__.__name__


def _lock_record(record_id: int) -> OverstayRecord:
    record = (
        OverstayRecord.objects.select_for_update()
        .select_related("booking", "booking__renter", "booking__listing", "booking__listing__location")
        .filter(pk=record_id)
        .first()
    )
    if record is None:
        raise ResourceMissingError("Overstay record not found")
    return record


def _has_live_attempt(record: OverstayRecord, now) -> bool:
    if record.status != Status.CHARGE_PENDING or record.charge_attempted_at is None:
        return False
    return record.charge_attempted_at > now - timedelta(minutes=STALE_CHARGE_MINUTES)


@dataclass(frozen=True)
class _PreparedCharge:
    record_id: int
    customer_id: str
    payment_method_id: str
    destination: Optional[str]
    amounts: PenaltyAmounts
    idempotency_key: str
    metadata: dict[str, str]


def _prepare_charge(record_id: int, today: date) -> _PreparedCharge | ServiceResult:
    """Validate and move the record into ``charge_pending``; committed on return."""
    with transaction.atomic():
        record = _lock_record(record_id)
        next_status(record, Action.BEGIN_CHARGE, conflict_message=CHARGE_CONFLICT)
        now = timezone.now()
        if _has_live_attempt(record, now):
            raise StateConflictError(CHARGE_IN_PROGRESS, current_status=record.status)
        if (record.final_penalty_cents or 0) <= 0:
            raise OverstayValidationError("No penalty amount to charge")

        booking = record.booking
        customer_id, payment_method_id = resolve_payment_method(booking)
        if not customer_id or not payment_method_id:
            previous = transition(record, Action.NO_PAYMENT_METHOD, conflict_message=CHARGE_CONFLICT)
            record.charge_attempted_at = now
            record.charge_failed_at = now
            record.charge_failure_reason = NO_PAYMENT_METHOD_REASON
            record.save()
            record_history(
                record,
                previous_status=previous,
                event_type=EventType.CHARGE_ATTEMPT,
                event_source=EventSource.SYSTEM,
                description=f"Charge not attempted: {NO_PAYMENT_METHOD_REASON}",
                metadata={"reason": "no_payment_method"},
            )
            return ServiceResult.fail(
                NO_PAYMENT_METHOD_REASON,
                kind="payment_method",
                http_status=400,
                record_id=record.pk,
                status=record.status,
            )

        location = booking.listing.location
        destination = resolve_destination_account(location)
        amounts = compute_penalty_amounts(
            record.final_penalty_cents,
            location.tax_rate_percent,
            has_destination=bool(destination),
        )
        key = charge_idempotency_key(record.pk, today)

        previous = transition(record, Action.BEGIN_CHARGE, conflict_message=CHARGE_CONFLICT)
        record.charge_attempted_at = now
        record.save()
        record_history(
            record,
            previous_status=previous,
            event_type=EventType.CHARGE_ATTEMPT,
            event_source=EventSource.SYSTEM,
            description=f"Off-session charge attempt for {amounts.total_cents} cents",
            metadata={
                "amount_cents": amounts.total_cents,
                "base_cents": amounts.base_cents,
                "tax_cents": amounts.tax_cents,
                "platform_fee_cents": amounts.platform_fee_cents,
                "destination_account": destination or "",
                "idempotency_key": key,
            },
        )

        metadata = {
            "kind": "overstay_penalty",
            "type": "overstay_penalty",
            "overstay_record_id": str(record.pk),
            "booking_id": str(booking.pk),
            "renter_id": str(booking.renter_id),
            "manager_id": str(location.manager_id),
            "days_overdue": str(record.days_overdue),
            **amounts.as_metadata(),
        }
    return _PreparedCharge(
        record_id=record_id,
        customer_id=customer_id,
        payment_method_id=payment_method_id,
        destination=destination,
        amounts=amounts,
        idempotency_key=key,
        metadata=metadata,
    )


def _record_billing_entry(record: OverstayRecord, prepared: _PreparedCharge, charge: OffSessionCharge, gateway) -> None:
    """Secondary effect: reconciled billing row plus settled Stripe fees."""
    try:
        with transaction.atomic():
            txn = record_payment_transaction(
                booking=record.booking,
                user=record.booking.renter,
                manager=record.booking.listing.location.manager,
                kind=PaymentTransaction.Kind.OVERSTAY_PENALTY,
                amount_cents=prepared.amounts.total_cents,
                base_amount_cents=prepared.amounts.base_cents,
                tax_amount_cents=prepared.amounts.tax_cents,
                service_fee_cents=prepared.amounts.platform_fee_cents,
                payment_intent_id=charge.payment_intent_id,
                charge_id=charge.charge_id,
                metadata={
                    "overstay_record_id": record.pk,
                    "days_overdue": record.days_overdue,
                    "destination_account": prepared.destination or "",
                    "charged_via": "off_session",
                },
            )
    except Exception:
        logger.exception("overstays: billing entry failed for record %s", record.pk)
        return

    try:
        breakdown = gateway.get_fee_breakdown(charge.payment_intent_id, stripe_account=prepared.destination)
        with transaction.atomic():
            sync_stripe_fees(txn, breakdown)
    except Exception:
        logger.warning(
            "overstays: fee sync failed for record %s",
            record.pk,
            exc_info=True,
        )


def _note_unapplied_result(record: OverstayRecord, description: str, metadata: dict) -> None:
    """History for a gateway outcome that arrived after another attempt settled the record."""
    record_history(
        record,
        previous_status=record.status,
        event_type=EventType.CHARGE_ATTEMPT,
        event_source=EventSource.SYSTEM,
        description=description,
        metadata={"applied": False, **metadata},
    )


def _finalize_success(prepared: _PreparedCharge, charge: OffSessionCharge, gateway) -> ServiceResult:
    """
    Record a payment the gateway reported as succeeded.

    The money has moved, so the payment is recorded even when an
    overlapping attempt escalated or failed the record in the meantime.
    """
    with transaction.atomic():
        record = _lock_record(prepared.record_id)
        if record.status == Status.CHARGE_SUCCEEDED:
            if record.payment_intent_id != charge.payment_intent_id:
                logger.error(
                    "overstays: second payment %s reported for charged record %s",
                    charge.payment_intent_id,
                    record.pk,
                )
                _note_unapplied_result(
                    record,
                    f"Additional payment reported: {charge.payment_intent_id}",
                    {"payment_intent_id": charge.payment_intent_id, "amount_cents": prepared.amounts.total_cents},
                )
            return ServiceResult.ok(
                record_id=record.pk,
                status=record.status,
                payment_intent_id=record.payment_intent_id,
                amount_cents=record.charged_amount_cents,
            )

        action = Action.CHARGE_SUCCEEDED if record.status == Status.CHARGE_PENDING else Action.CHECKOUT_PAID
        try:
            previous = transition(record, action, conflict_message=CHARGE_CONFLICT)
        except StateConflictError as exc:
            logger.error(
                "overstays: payment %s succeeded but record %s is %s",
                charge.payment_intent_id,
                record.pk,
                record.status,
            )
            _note_unapplied_result(
                record,
                f"Payment {charge.payment_intent_id} succeeded after the record became {record.status}",
                {"payment_intent_id": charge.payment_intent_id, "charge_id": charge.charge_id},
            )
            return ServiceResult.fail(
                str(exc),
                kind=exc.kind,
                http_status=exc.http_status,
                record_id=record.pk,
                status=record.status,
                payment_intent_id=charge.payment_intent_id,
            )

        now = timezone.now()
        record.payment_intent_id = charge.payment_intent_id
        record.charge_id = charge.charge_id
        record.charged_amount_cents = prepared.amounts.total_cents
        record.charge_succeeded_at = now
        record.charge_failure_reason = ""
        record.resolved_at = now
        record.resolution_type = OverstayRecord.ResolutionType.PAID
        record.save()
        record_history(
            record,
            previous_status=previous,
            event_type=EventType.CHARGE_ATTEMPT,
            event_source=EventSource.SYSTEM,
            description=f"Payment successful: {charge.payment_intent_id}",
            metadata={
                "payment_intent_id": charge.payment_intent_id,
                "charge_id": charge.charge_id,
                "amount_cents": prepared.amounts.total_cents,
            },
        )
        notify_after_commit(notification_tasks.send_overstay_penalty_charged_email, record.pk)

    _record_billing_entry(record, prepared, charge, gateway)
    logger.info(
        "overstays: penalty charged",
        extra={"record_id": record.pk, "payment_intent_id": charge.payment_intent_id},
    )
    return ServiceResult.ok(
        record_id=record.pk,
        status=record.status,
        payment_intent_id=charge.payment_intent_id,
        amount_cents=prepared.amounts.total_cents,
    )


def _escalate_failure(
    prepared: _PreparedCharge,
    reason: str,
    gateway,
    *,
    payment_intent_id: str = "",
) -> ServiceResult:
    from overstays.services.escalation import escalate

    with transaction.atomic():
        record = _lock_record(prepared.record_id)
        if record.status != Status.CHARGE_PENDING:
            # Another attempt already settled the record; keep its outcome.
            _note_unapplied_result(
                record,
                f"Overlapping charge attempt failed: {reason}",
                {"reason": reason, "payment_intent_id": payment_intent_id},
            )
            logger.warning(
                "overstays: charge failure ignored, record already settled",
                extra={"record_id": record.pk, "status": record.status, "reason": reason},
            )
            return ServiceResult.fail(
                f"Charge attempt failed ({reason}); record is already {record.status}",
                kind="conflict",
                http_status=409,
                record_id=record.pk,
                status=record.status,
            )

        previous = transition(record, Action.ESCALATE, conflict_message=CHARGE_CONFLICT)
        record.charge_failed_at = timezone.now()
        record.charge_failure_reason = reason
        record.resolution_type = OverstayRecord.ResolutionType.ESCALATED_COLLECTION
        record.resolution_notes = f"Off-session charge failed: {reason}"
        if payment_intent_id:
            record.payment_intent_id = payment_intent_id
        record.save()
        record_history(
            record,
            previous_status=previous,
            event_type=EventType.AUTO_ESCALATION,
            event_source=EventSource.SYSTEM,
            description=f"Off-session charge failed: {reason}. Escalated for hosted payment.",
            metadata={"reason": reason, "payment_intent_id": payment_intent_id},
        )

    logger.warning(
        "overstays: charge failed, escalating",
        extra={"record_id": prepared.record_id, "reason": reason},
    )
    escalate(prepared.record_id, reason, gateway=gateway)
    return ServiceResult.fail(
        f"Auto-charge failed ({reason}). Escalated; payment link sent to renter.",
        kind="charge_failed",
        http_status=402,
        record_id=prepared.record_id,
        status=Status.ESCALATED,
    )


def charge_penalty(record_id: int, *, gateway: PaymentGateway, today: Optional[date] = None) -> ServiceResult:
    """
    Collect an approved penalty off-session.

    Allowed from ``penalty_approved``, ``charge_failed``, ``escalated`` (an
    operator-forced retry) and a stale ``charge_pending`` (a worker died
    mid-charge). A fresh ``charge_pending`` means another attempt is live
    and is refused. Never raises; every outcome is a ServiceResult.
    """
    today = today or timezone.localdate()
    try:
        prepared = _prepare_charge(record_id, today)
    except OverstayError as exc:
        logger.info("overstays: charge rejected", extra={"record_id": record_id, "error": str(exc)})
        return ServiceResult.from_exception(exc)
    if isinstance(prepared, ServiceResult):
        return prepared

    try:
        charge = gateway.create_off_session_charge(
            amount_cents=prepared.amounts.total_cents,
            customer_id=prepared.customer_id,
            payment_method_id=prepared.payment_method_id,
            idempotency_key=prepared.idempotency_key,
            metadata=prepared.metadata,
            destination_account=prepared.destination,
            platform_fee_cents=prepared.amounts.platform_fee_cents or None,
            description=f"Overstay penalty for booking #{prepared.metadata['booking_id']}",
            statement_descriptor_suffix=STATEMENT_DESCRIPTOR_SUFFIX,
        )
    except Exception as exc:
        logger.info("overstays: gateway raised during charge", exc_info=True)
        charge = None
        failure_reason = _failure_reason_for_exception(exc)

    try:
        if charge is None:
            return _escalate_failure(prepared, failure_reason, gateway)
        if charge.succeeded:
            return _finalize_success(prepared, charge, gateway)
        return _escalate_failure(
            prepared,
            _failure_reason_for_status(charge.status),
            gateway,
            payment_intent_id=charge.payment_intent_id,
        )
    except OverstayError as exc:
        logger.exception("overstays: could not record charge outcome for %s", record_id)
        return ServiceResult.from_exception(exc)
