from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.core import mail
from django.utils import timezone

from overstays.models import OverstayHistoryEntry, OverstayRecord
from overstays.services.charging import (
    CHARGE_IN_PROGRESS,
    NO_PAYMENT_METHOD_REASON,
    SCA_FAILURE_REASON,
    STATEMENT_DESCRIPTOR_SUFFIX,
    charge_idempotency_key,
    charge_penalty,
    compute_penalty_amounts,
)
from overstays.services.decisions import ApproveDecision, apply_decision
from overstays.tasks import recover_stuck_charges_task
from overstays.tests.fixtures import FakeGateway
from payments.gateway import FeeBreakdown, OffSessionCharge
from payments.models import PaymentTransaction
from payments.stripe_api import StripePaymentError, StripeTransientError

pytestmark = pytest.mark.django_db

EventType = OverstayHistoryEntry.EventType


def test_penalty_amounts_add_tax_then_processing_fee():
    amounts = compute_penalty_amounts(4400, Decimal("5.00"), has_destination=True)

    assert amounts.tax_cents == 220
    assert amounts.total_cents == 4620
    # 4620 * 2.9% + 30
    assert amounts.platform_fee_cents == 164


def test_penalty_amounts_without_destination_have_no_platform_fee():
    amounts = compute_penalty_amounts(4400, None, has_destination=False)

    assert amounts.total_cents == 4400
    assert amounts.platform_fee_cents == 0


def test_successful_charge_marks_record_paid(approved_record, fake_gateway, today):
    result = charge_penalty(approved_record.pk, gateway=fake_gateway, today=today)

    assert result.success is True
    assert result.data["payment_intent_id"] == "pi_test_1"
    approved_record.refresh_from_db()
    assert approved_record.status == OverstayRecord.Status.CHARGE_SUCCEEDED
    assert approved_record.charged_amount_cents == 4400
    assert approved_record.payment_intent_id == "pi_test_1"
    assert approved_record.charge_id == "ch_test_1"
    assert approved_record.resolution_type == OverstayRecord.ResolutionType.PAID
    assert approved_record.resolved_at is not None
    assert approved_record.is_resolved is True

    call = fake_gateway.charges[0]
    assert call["amount_cents"] == 4400
    assert call["customer_id"] == "cus_booking_renter"
    assert call["payment_method_id"] == "pm_card_visa"
    assert call["idempotency_key"] == charge_idempotency_key(approved_record.pk, today)
    assert call["statement_descriptor_suffix"] == STATEMENT_DESCRIPTOR_SUFFIX
    assert call["metadata"]["kind"] == "overstay_penalty"
    assert call["destination_account"] is None

    events = list(approved_record.history.order_by("id").values_list("event_type", "new_status"))
    assert events == [
        (EventType.CHARGE_ATTEMPT, OverstayRecord.Status.CHARGE_PENDING),
        (EventType.CHARGE_ATTEMPT, OverstayRecord.Status.CHARGE_SUCCEEDED),
    ]


def test_successful_charge_writes_billing_entry_with_fees(
    approved_record, fake_gateway, location, manager_payout_account
):
    location.tax_rate_percent = Decimal("5.00")
    location.save()
    fake_gateway.fee_breakdown = FeeBreakdown(
        amount_cents=4620, processing_fee_cents=164, net_amount_cents=4456, platform_fee_cents=164
    )

    result = charge_penalty(approved_record.pk, gateway=fake_gateway)

    assert result.success is True
    assert fake_gateway.charges[0]["destination_account"] == "acct_test_manager"
    assert fake_gateway.charges[0]["platform_fee_cents"] == 164

    txn = PaymentTransaction.objects.get(payment_intent_id="pi_test_1")
    assert txn.kind == PaymentTransaction.Kind.OVERSTAY_PENALTY
    assert txn.status == PaymentTransaction.Status.SUCCEEDED
    assert txn.amount_cents == 4620
    assert txn.base_amount_cents == 4400
    assert txn.tax_amount_cents == 220
    assert txn.service_fee_cents == 164
    assert txn.manager_id == location.manager_id
    assert txn.stripe_processing_fee_cents == 164
    assert txn.stripe_net_amount_cents == 4456


def test_billing_failure_does_not_undo_the_charge(approved_record, fake_gateway, monkeypatch):
    from overstays.services import charging

    def broken_ledger(**kwargs):
        raise RuntimeError("ledger down")

    monkeypatch.setattr(charging, "record_payment_transaction", broken_ledger)

    result = charge_penalty(approved_record.pk, gateway=fake_gateway)

    assert result.success is True
    approved_record.refresh_from_db()
    assert approved_record.status == OverstayRecord.Status.CHARGE_SUCCEEDED
    assert PaymentTransaction.objects.count() == 0


def test_falls_back_to_profile_customer(record_factory, booking_factory, fake_gateway):
    booking = booking_factory(renter_stripe_customer_id="")
    record = record_factory(booking=booking, status=OverstayRecord.Status.PENALTY_APPROVED, final_penalty_cents=4400)

    charge_penalty(record.pk, gateway=fake_gateway)

    assert fake_gateway.charges[0]["customer_id"] == "cus_profile_renter"


def test_missing_payment_method_fails_without_calling_gateway(record_factory, booking_factory, fake_gateway):
    booking = booking_factory(renter_stripe_payment_method_id="")
    record = record_factory(booking=booking, status=OverstayRecord.Status.PENALTY_APPROVED, final_penalty_cents=4400)

    result = charge_penalty(record.pk, gateway=fake_gateway)

    assert result.success is False
    assert result.error == NO_PAYMENT_METHOD_REASON
    assert fake_gateway.charges == []
    record.refresh_from_db()
    assert record.status == OverstayRecord.Status.CHARGE_FAILED
    assert record.charge_failure_reason == NO_PAYMENT_METHOD_REASON
    assert record.history.get().event_type == EventType.CHARGE_ATTEMPT


def test_card_decline_escalates_with_payment_link(
    pending_record, manager_user, renter_user, staff_user, fake_gateway, django_capture_on_commit_callbacks
):
    fake_gateway.charge_error = StripePaymentError("Your card was declined.", code="card_declined")

    with django_capture_on_commit_callbacks(execute=True):
        decision = apply_decision(ApproveDecision(record_id=pending_record.pk, manager_id=manager_user.pk))
        result = charge_penalty(pending_record.pk, gateway=fake_gateway)

    assert decision.success is True
    assert result.success is False
    assert result.http_status == 402
    assert result.error == "Auto-charge failed (Your card was declined.). Escalated; payment link sent to renter."

    pending_record.refresh_from_db()
    assert pending_record.status == OverstayRecord.Status.ESCALATED
    assert pending_record.charge_failure_reason == "Your card was declined."
    assert pending_record.charge_failed_at is not None
    assert pending_record.resolution_type == OverstayRecord.ResolutionType.ESCALATED_COLLECTION
    assert pending_record.checkout_session_id == "cs_test_1"

    events = list(pending_record.history.order_by("id").values_list("event_type", flat=True))
    assert events[:4] == [
        EventType.PENALTY_APPROVED,
        EventType.CHARGE_ATTEMPT,
        EventType.AUTO_ESCALATION,
        EventType.NOTIFICATION_SENT,
    ]
    link_entry = pending_record.history.filter(event_type=EventType.NOTIFICATION_SENT).order_by("id").first()
    assert link_entry.metadata["kind"] == "escalation_payment_link"
    assert link_entry.metadata["checkout_url"] == "https://checkout.stripe.test/pay/cs_test_1"

    checkout = fake_gateway.checkouts[0]
    assert checkout["amount_cents"] == 4400
    assert checkout["metadata"]["overstay_record_id"] == str(pending_record.pk)
    assert checkout["success_url"] == f"https://app.example.com/payments/success?overstay={pending_record.pk}"

    recipients = {message.to[0] for message in mail.outbox}
    assert recipients == {renter_user.email, staff_user.email}
    renter_mail = next(message for message in mail.outbox if message.to == [renter_user.email])
    assert "https://checkout.stripe.test/pay/cs_test_1" in renter_mail.body


def test_authentication_required_status_escalates_with_sca_reason(approved_record, fake_gateway):
    fake_gateway.charge_status = "requires_action"

    result = charge_penalty(approved_record.pk, gateway=fake_gateway)

    assert result.success is False
    approved_record.refresh_from_db()
    assert approved_record.status == OverstayRecord.Status.ESCALATED
    assert approved_record.charge_failure_reason == SCA_FAILURE_REASON
    assert approved_record.payment_intent_id == "pi_test_1"


def test_escalation_survives_checkout_failure(approved_record, fake_gateway):
    fake_gateway.charge_error = StripePaymentError("Your card was declined.", code="card_declined")
    fake_gateway.checkout_error = RuntimeError("stripe unavailable")

    result = charge_penalty(approved_record.pk, gateway=fake_gateway)

    assert result.http_status == 402
    approved_record.refresh_from_db()
    assert approved_record.status == OverstayRecord.Status.ESCALATED
    assert approved_record.checkout_session_id == ""
    assert not approved_record.history.filter(event_type=EventType.NOTIFICATION_SENT).exists()


def test_failed_charge_is_not_retried_automatically(approved_record, fake_gateway):
    fake_gateway.charge_error = StripePaymentError("Your card was declined.", code="card_declined")

    charge_penalty(approved_record.pk, gateway=fake_gateway)

    assert len(fake_gateway.charges) == 1


def test_operator_recharge_from_escalated(approved_record, fake_gateway):
    fake_gateway.charge_error = StripePaymentError("Your card was declined.", code="card_declined")
    charge_penalty(approved_record.pk, gateway=fake_gateway)
    fake_gateway.charge_error = None

    result = charge_penalty(approved_record.pk, gateway=fake_gateway)

    assert result.success is True
    approved_record.refresh_from_db()
    assert approved_record.status == OverstayRecord.Status.CHARGE_SUCCEEDED


def test_charge_requires_approval(pending_record, fake_gateway):
    result = charge_penalty(pending_record.pk, gateway=fake_gateway)

    assert result.success is False
    assert result.http_status == 409
    assert result.error == "Cannot charge penalty for record in status: pending_review"
    assert fake_gateway.charges == []


def test_zero_penalty_is_not_charged(record_factory, fake_gateway):
    record = record_factory(status=OverstayRecord.Status.PENALTY_APPROVED, final_penalty_cents=0)

    result = charge_penalty(record.pk, gateway=fake_gateway)

    assert result.success is False
    assert result.error == "No penalty amount to charge"
    record.refresh_from_db()
    assert record.status == OverstayRecord.Status.PENALTY_APPROVED


def test_missing_record(fake_gateway):
    result = charge_penalty(424242, gateway=fake_gateway)

    assert result.http_status == 404


def test_idempotency_key_is_per_record_and_day():
    assert charge_idempotency_key(7, date(2025, 3, 9)) == "overstay_penalty_7_2025-03-09"


def test_stuck_charge_pending_records_are_redriven(record_factory, fake_gateway):
    stuck = record_factory(
        status=OverstayRecord.Status.CHARGE_PENDING,
        final_penalty_cents=4400,
        charge_attempted_at=timezone.now() - timedelta(hours=2),
    )
    fresh = record_factory(
        booking=None,
        status=OverstayRecord.Status.CHARGE_PENDING,
        final_penalty_cents=4400,
        charge_attempted_at=timezone.now(),
    )

    queued = recover_stuck_charges_task()

    assert queued == 1
    stuck.refresh_from_db()
    fresh.refresh_from_db()
    assert stuck.status == OverstayRecord.Status.CHARGE_SUCCEEDED
    assert fresh.status == OverstayRecord.Status.CHARGE_PENDING


class _OverlappingGateway(FakeGateway):
    """Runs ``interleave`` while the first charge is still waiting on the gateway."""

    def __init__(self, interleave, first_status="succeeded"):
        super().__init__()
        self.interleave = interleave
        self.first_status = first_status

    def create_off_session_charge(self, **kwargs):
        if self.interleave is None:
            return super().create_off_session_charge(**kwargs)
        interleave, self.interleave = self.interleave, None
        self.charges.append(kwargs)
        interleave(self)
        return OffSessionCharge(
            status=self.first_status,
            payment_intent_id="pi_first",
            charge_id="ch_first" if self.first_status == "succeeded" else "",
        )


def test_second_charge_is_refused_while_first_is_in_flight(approved_record):
    overlapping = {}

    def interleave(gateway):
        overlapping["result"] = charge_penalty(approved_record.pk, gateway=gateway)

    gateway = _OverlappingGateway(interleave)

    result = charge_penalty(approved_record.pk, gateway=gateway)

    assert overlapping["result"].success is False
    assert overlapping["result"].http_status == 409
    assert overlapping["result"].error == CHARGE_IN_PROGRESS
    assert result.success is True
    assert len(gateway.charges) == 1
    approved_record.refresh_from_db()
    assert approved_record.status == OverstayRecord.Status.CHARGE_SUCCEEDED
    assert approved_record.payment_intent_id == "pi_first"


def test_payment_that_lands_after_an_overlapping_escalation_is_kept(approved_record):
    overlapping = {}

    def interleave(gateway):
        OverstayRecord.objects.filter(pk=approved_record.pk).update(
            charge_attempted_at=timezone.now() - timedelta(hours=2)
        )
        gateway.charge_error = StripeTransientError("Concurrent request with the same key")
        overlapping["result"] = charge_penalty(approved_record.pk, gateway=gateway)
        gateway.charge_error = None

    gateway = _OverlappingGateway(interleave)

    result = charge_penalty(approved_record.pk, gateway=gateway)

    assert overlapping["result"].data["status"] == OverstayRecord.Status.ESCALATED
    assert result.success is True
    approved_record.refresh_from_db()
    assert approved_record.status == OverstayRecord.Status.CHARGE_SUCCEEDED
    assert approved_record.payment_intent_id == "pi_first"
    assert approved_record.charge_id == "ch_first"
    assert approved_record.resolution_type == OverstayRecord.ResolutionType.PAID
    last = approved_record.history.order_by("-id").first()
    assert last.previous_status == OverstayRecord.Status.ESCALATED
    assert last.new_status == OverstayRecord.Status.CHARGE_SUCCEEDED


def test_decline_after_another_attempt_succeeded_keeps_the_payment(approved_record):
    def interleave(gateway):
        OverstayRecord.objects.filter(pk=approved_record.pk).update(
            status=OverstayRecord.Status.CHARGE_SUCCEEDED,
            payment_intent_id="pi_other",
            charged_amount_cents=4400,
        )

    gateway = _OverlappingGateway(interleave, first_status="requires_payment_method")

    result = charge_penalty(approved_record.pk, gateway=gateway)

    assert result.success is False
    assert result.http_status == 409
    assert gateway.checkouts == []
    approved_record.refresh_from_db()
    assert approved_record.status == OverstayRecord.Status.CHARGE_SUCCEEDED
    assert approved_record.payment_intent_id == "pi_other"
    last = approved_record.history.order_by("-id").first()
    assert last.event_type == EventType.CHARGE_ATTEMPT
    assert last.metadata["applied"] is False
