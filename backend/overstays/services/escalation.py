"""Hosted checkout recovery for penalties the off-session charge could not collect."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Mapping, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from notifications import tasks as notification_tasks
from overstays.exceptions import (
    OverstayError,
    OverstayPermissionError,
    OverstayValidationError,
    ResourceMissingError,
    ServiceResult,
)
from overstays.history import EventSource, EventType, record_history
from overstays.models import OverstayRecord
from overstays.notify import notify_after_commit
from overstays.transitions import Action, next_status, transition
from payments.gateway import CheckoutSession, PaymentGateway
from payments.ledger import record_payment_transaction
from payments.models import PaymentTransaction
from payments.stripe_api import _get_frontend_origin

logger = logging.getLogger(__name__)

PAY_CONFLICT = "Cannot pay penalty for record in status: {status}"


def checkout_urls(record_id: int) -> tuple[str, str]:
    origin = _get_frontend_origin()
    return (
        f"{origin}/payments/success?overstay={record_id}",
        f"{origin}/payments/cancel?overstay={record_id}",
    )


def _checkout_expiry_timestamp() -> int:
    hours = int(getattr(settings, "OVERSTAY_CHECKOUT_EXPIRY_HOURS", 24))
    return int((timezone.now() + timedelta(hours=hours)).timestamp())


def create_penalty_checkout(
    record: OverstayRecord,
    *,
    gateway: PaymentGateway,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> CheckoutSession:
    """
    Open a hosted checkout for the approved (or calculated) penalty.

    Uses the same tax and fee accounting as the off-session charge and stores
    the session id on the record.
    """
    from overstays.services.charging import compute_penalty_amounts, resolve_destination_account

    base_cents = record.penalty_amount_cents
    if base_cents <= 0:
        raise OverstayValidationError("Invalid penalty amount")

    booking = record.booking
    location = booking.listing.location
    destination = resolve_destination_account(location)
    amounts = compute_penalty_amounts(
        base_cents,
        location.tax_rate_percent,
        has_destination=bool(destination),
    )
    default_success, default_cancel = checkout_urls(record.pk)
    session = gateway.create_checkout_session(
        amount_cents=amounts.total_cents,
        product_name="Overstay penalty",
        description=(
            f"{record.days_overdue} day(s) past the end of booking #{booking.pk} "
            f"at {location.name}"
        ),
        success_url=success_url or default_success,
        cancel_url=cancel_url or default_cancel,
        metadata={
            "kind": "overstay_penalty",
            "type": "overstay_penalty",
            "overstay_record_id": str(record.pk),
            "booking_id": str(booking.pk),
            "renter_id": str(booking.renter_id),
            "manager_id": str(location.manager_id),
            **amounts.as_metadata(),
        },
        customer_email=booking.renter.email or None,
        destination_account=destination,
        platform_fee_cents=amounts.platform_fee_cents or None,
        expires_at=_checkout_expiry_timestamp(),
    )
    record.checkout_session_id = session.session_id
    record.save(update_fields=["checkout_session_id", "updated_at"])
    return session


def escalate(record_id: int, reason: str, *, gateway: PaymentGateway) -> Optional[str]:
    """
    Hand an escalated record to humans: payment link to the renter, summary to staff.

    Returns the checkout URL, or None when the session could not be created.
    A failed checkout still alerts staff so collection can continue by hand.
    """
    record = (
        OverstayRecord.objects.select_related(
            "booking", "booking__renter", "booking__listing", "booking__listing__location"
        )
        .filter(pk=record_id)
        .first()
    )
    if record is None:
        logger.warning("overstays: cannot escalate missing record %s", record_id)
        return None

    session = None
    try:
        session = create_penalty_checkout(record, gateway=gateway)
    except Exception:
        logger.exception("overstays: checkout session failed for escalated record %s", record_id)

    with transaction.atomic():
        if session is not None:
            record_history(
                record,
                previous_status=record.status,
                event_type=EventType.NOTIFICATION_SENT,
                event_source=EventSource.SYSTEM,
                description="Escalation payment link generated for renter",
                metadata={
                    "kind": "escalation_payment_link",
                    "checkout_session_id": session.session_id,
                    "checkout_url": session.url,
                    "reason": reason,
                },
            )
            notify_after_commit(
                notification_tasks.send_overstay_payment_link_email, record.pk, session.url, reason
            )
        notify_after_commit(notification_tasks.send_overstay_escalation_admin_email, record.pk, reason)
    return session.url if session is not None else None


def create_renter_payment_checkout(record_id: int, renter, *, gateway: PaymentGateway) -> ServiceResult:
    """Self-serve payment link for the renter; the record's status is not changed."""
    try:
        record = (
            OverstayRecord.objects.select_related(
                "booking", "booking__renter", "booking__listing", "booking__listing__location"
            )
            .filter(pk=record_id)
            .first()
        )
        if record is None:
            raise ResourceMissingError("Overstay record not found")
        if record.booking.renter_id != getattr(renter, "pk", None):
            raise OverstayPermissionError("This penalty does not belong to you")
        next_status(record, Action.CHECKOUT_PAID, conflict_message=PAY_CONFLICT)
        session = create_penalty_checkout(record, gateway=gateway)
    except OverstayError as exc:
        return ServiceResult.from_exception(exc)
    except Exception as exc:
        logger.exception("overstays: renter checkout failed for record %s", record_id)
        return ServiceResult.fail(str(exc) or "Unable to create payment link", kind="gateway", http_status=502)

    return ServiceResult.ok(
        record_id=record.pk,
        checkout_url=session.url,
        session_id=session.session_id,
    )


def _session_value(session: Any, field: str, default: Any = None) -> Any:
    if isinstance(session, Mapping):
        return session.get(field, default)
    return getattr(session, field, default)


def _int_or_zero(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def complete_checkout_payment(session: Any) -> ServiceResult:
    """
    Apply a completed hosted checkout to its overstay record.

    Replays of the same session are acknowledged without side effects.
    """
    metadata = _session_value(session, "metadata") or {}
    record_id = _int_or_zero(metadata.get("overstay_record_id"))
    session_id = _session_value(session, "id", "") or ""
    payment_intent = _session_value(session, "payment_intent", "") or ""
    payment_intent_id = payment_intent if isinstance(payment_intent, str) else _session_value(payment_intent, "id", "")
    amount_total = _int_or_zero(_session_value(session, "amount_total"))

    try:
        with transaction.atomic():
            record = (
                OverstayRecord.objects.select_for_update()
                .select_related("booking", "booking__renter", "booking__listing__location")
                .filter(pk=record_id)
                .first()
            )
            if record is None:
                raise ResourceMissingError("Overstay record not found")
            if record.status == OverstayRecord.Status.CHARGE_SUCCEEDED and (
                record.checkout_session_id == session_id
                or (payment_intent_id and record.payment_intent_id == payment_intent_id)
            ):
                return ServiceResult.ok(record_id=record.pk, status=record.status, already_applied=True)

            previous = transition(record, Action.CHECKOUT_PAID, conflict_message=PAY_CONFLICT)
            now = timezone.now()
            record.checkout_session_id = session_id or record.checkout_session_id
            record.payment_intent_id = payment_intent_id or record.payment_intent_id
            record.charge_succeeded_at = now
            record.resolved_at = now
            record.resolution_type = OverstayRecord.ResolutionType.PAID
            if record.final_penalty_cents is None:
                record.final_penalty_cents = record.calculated_penalty_cents
            record.charged_amount_cents = amount_total or record.final_penalty_cents
            record.save()
            record_history(
                record,
                previous_status=previous,
                event_type=EventType.CHARGE_ATTEMPT,
                event_source=EventSource.PAYMENT_WEBHOOK,
                description=f"Penalty paid via checkout session {session_id}",
                metadata={
                    "checkout_session_id": session_id,
                    "payment_intent_id": payment_intent_id,
                    "amount_cents": record.charged_amount_cents,
                },
            )
            notify_after_commit(notification_tasks.send_overstay_penalty_charged_email, record.pk)
    except OverstayError as exc:
        return ServiceResult.from_exception(exc)

    try:
        with transaction.atomic():
            record_payment_transaction(
                booking=record.booking,
                user=record.booking.renter,
                manager=record.booking.listing.location.manager,
                kind=PaymentTransaction.Kind.OVERSTAY_PENALTY,
                amount_cents=record.charged_amount_cents,
                base_amount_cents=_int_or_zero(metadata.get("penalty_base_cents"))
                or record.final_penalty_cents,
                tax_amount_cents=_int_or_zero(metadata.get("penalty_tax_cents")),
                payment_intent_id=payment_intent_id,
                metadata={
                    "overstay_record_id": record.pk,
                    "checkout_session_id": session_id,
                    "charged_via": "checkout",
                },
            )
    except Exception:
        logger.exception("overstays: billing entry failed for checkout on record %s", record.pk)

    logger.info(
        "overstays: checkout payment applied",
        extra={"record_id": record.pk, "session_id": session_id},
    )
    return ServiceResult.ok(record_id=record.pk, status=record.status, already_applied=False)
