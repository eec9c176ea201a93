import pytest
from django.core import mail

from overstays.models import OverstayHistoryEntry, OverstayRecord
from overstays.services.refunds import refund_penalty
from payments.ledger import record_payment_transaction
from payments.models import PaymentTransaction

pytestmark = pytest.mark.django_db


def test_partial_refund_keeps_record_charged(charged_record, manager_user, fake_gateway):
    result = refund_penalty(
        charged_record.pk,
        reason="Renter moved out early in the grace window",
        refunded_by=manager_user,
        partial_amount_cents=2000,
        gateway=fake_gateway,
    )

    assert result.success is True
    assert result.data["amount_cents"] == 2000
    assert result.data["remaining_cents"] == 2400
    charged_record.refresh_from_db()
    assert charged_record.status == OverstayRecord.Status.CHARGE_SUCCEEDED
    assert charged_record.refunded_amount_cents == 2000
    assert charged_record.refund_id == "re_test_1"

    call = fake_gateway.refunds[0]
    assert call["payment_intent_id"] == "pi_existing"
    assert call["amount_cents"] == 2000

    entry = charged_record.history.get()
    assert entry.event_type == OverstayHistoryEntry.EventType.REFUND
    assert entry.created_by == manager_user
    assert entry.metadata["total_refunded_cents"] == 2000


def test_refund_cannot_exceed_remaining_balance(charged_record, manager_user, fake_gateway):
    refund_penalty(
        charged_record.pk,
        reason="goodwill",
        refunded_by=manager_user,
        partial_amount_cents=2000,
        gateway=fake_gateway,
    )

    result = refund_penalty(
        charged_record.pk,
        reason="goodwill again",
        refunded_by=manager_user,
        partial_amount_cents=3000,
        gateway=fake_gateway,
    )

    assert result.success is False
    assert result.http_status == 400
    assert result.error == "Refund amount (3000 cents) cannot exceed the refundable balance (2400 cents)"
    assert len(fake_gateway.refunds) == 1
    charged_record.refresh_from_db()
    assert charged_record.refunded_amount_cents == 2000


def test_full_refund_resolves_record(charged_record, manager_user, renter_user, fake_gateway, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        result = refund_penalty(
            charged_record.pk,
            reason="Charged in error",
            refunded_by=manager_user,
            gateway=fake_gateway,
        )

    assert result.success is True
    assert result.data["amount_cents"] == 4400
    charged_record.refresh_from_db()
    assert charged_record.status == OverstayRecord.Status.RESOLVED
    assert charged_record.resolution_type == OverstayRecord.ResolutionType.REFUNDED
    assert charged_record.refundable_cents == 0
    assert [message.to for message in mail.outbox] == [[renter_user.email]]


def test_partial_refunds_that_add_up_resolve_record(charged_record, manager_user, fake_gateway):
    for amount in (2000, 2400):
        refund_penalty(
            charged_record.pk,
            reason="split refund",
            refunded_by=manager_user,
            partial_amount_cents=amount,
            gateway=fake_gateway,
        )

    charged_record.refresh_from_db()
    assert charged_record.status == OverstayRecord.Status.RESOLVED
    assert charged_record.refunded_amount_cents == 4400
    assert fake_gateway.refunds[0]["idempotency_key"] != fake_gateway.refunds[1]["idempotency_key"]


def test_refund_updates_billing_entry(charged_record, manager_user, fake_gateway):
    record_payment_transaction(
        booking=charged_record.booking,
        user=charged_record.booking.renter,
        amount_cents=4400,
        base_amount_cents=4400,
        payment_intent_id="pi_existing",
    )

    refund_penalty(
        charged_record.pk,
        reason="goodwill",
        refunded_by=manager_user,
        partial_amount_cents=1000,
        gateway=fake_gateway,
    )

    txn = PaymentTransaction.objects.get(payment_intent_id="pi_existing")
    assert txn.status == PaymentTransaction.Status.PARTIALLY_REFUNDED
    assert txn.refund_amount_cents == 1000
    assert txn.refund_id == "re_test_1"


@pytest.mark.parametrize("amount", [0, -5])
def test_refund_amount_must_be_positive(charged_record, manager_user, fake_gateway, amount):
    result = refund_penalty(
        charged_record.pk,
        reason="oops",
        refunded_by=manager_user,
        partial_amount_cents=amount,
        gateway=fake_gateway,
    )

    assert result.error == "Refund amount must be greater than zero"


def test_refund_requires_reason(charged_record, manager_user, fake_gateway):
    result = refund_penalty(charged_record.pk, reason="  ", refunded_by=manager_user, gateway=fake_gateway)

    assert result.success is False
    assert result.error == "Refund reason is required"


def test_refund_only_for_charged_records(approved_record, manager_user, fake_gateway):
    result = refund_penalty(approved_record.pk, reason="n/a", refunded_by=manager_user, gateway=fake_gateway)

    assert result.http_status == 409
    assert fake_gateway.refunds == []


def test_refund_without_payment_reference(record_factory, manager_user, fake_gateway):
    record = record_factory(
        status=OverstayRecord.Status.CHARGE_SUCCEEDED,
        final_penalty_cents=4400,
        charged_amount_cents=4400,
    )

    result = refund_penalty(record.pk, reason="manual", refunded_by=manager_user, gateway=fake_gateway)

    assert result.success is False
    assert "refund it manually in Stripe" in result.error


def test_gateway_refund_failure_leaves_record_unchanged(charged_record, manager_user, fake_gateway):
    fake_gateway.refund_error = RuntimeError("charge already refunded")

    result = refund_penalty(charged_record.pk, reason="dup", refunded_by=manager_user, gateway=fake_gateway)

    assert result.http_status == 502
    charged_record.refresh_from_db()
    assert charged_record.refunded_amount_cents == 0
    assert charged_record.history.count() == 0
    assert charged_record.pending_refund_key == ""


def test_refund_is_marked_pending_before_the_gateway_call(charged_record, manager_user, fake_gateway, monkeypatch):
    seen = {}
    original = fake_gateway.refund

    def refund(**kwargs):
        seen["record"] = OverstayRecord.objects.get(pk=charged_record.pk)
        return original(**kwargs)

    monkeypatch.setattr(fake_gateway, "refund", refund)

    refund_penalty(
        charged_record.pk,
        reason="goodwill",
        refunded_by=manager_user,
        partial_amount_cents=1500,
        gateway=fake_gateway,
    )

    assert seen["record"].pending_refund_cents == 1500
    assert seen["record"].pending_refund_key == fake_gateway.refunds[0]["idempotency_key"]
    charged_record.refresh_from_db()
    assert charged_record.pending_refund_cents == 0
    assert charged_record.pending_refund_key == ""


def test_unrecorded_refund_is_retried_under_the_same_key(charged_record, manager_user, fake_gateway, monkeypatch):
    from overstays.services import refunds

    original = refunds.record_history

    def broken_history(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(refunds, "record_history", broken_history)
    with pytest.raises(RuntimeError):
        refund_penalty(
            charged_record.pk,
            reason="goodwill",
            refunded_by=manager_user,
            partial_amount_cents=2000,
            gateway=fake_gateway,
        )

    charged_record.refresh_from_db()
    assert charged_record.refunded_amount_cents == 0
    assert charged_record.pending_refund_cents == 2000

    monkeypatch.setattr(refunds, "record_history", original)
    result = refund_penalty(
        charged_record.pk,
        reason="goodwill",
        refunded_by=manager_user,
        partial_amount_cents=2000,
        gateway=fake_gateway,
    )

    assert result.success is True
    first, second = fake_gateway.refunds
    assert first["idempotency_key"] == second["idempotency_key"]
    charged_record.refresh_from_db()
    assert charged_record.refunded_amount_cents == 2000
    assert charged_record.pending_refund_key == ""
    assert charged_record.history.filter(event_type=OverstayHistoryEntry.EventType.REFUND).count() == 1


def test_different_amount_is_refused_while_a_refund_is_pending(charged_record, manager_user, fake_gateway):
    OverstayRecord.objects.filter(pk=charged_record.pk).update(
        pending_refund_cents=2000,
        pending_refund_key=f"overstay_refund_{charged_record.pk}_2000_0",
    )

    result = refund_penalty(
        charged_record.pk,
        reason="goodwill",
        refunded_by=manager_user,
        partial_amount_cents=3000,
        gateway=fake_gateway,
    )

    assert result.http_status == 409
    assert result.error == "A refund of 2000 cents is already in progress for this penalty"
    assert fake_gateway.refunds == []


def test_overlapping_refund_requests_apply_the_amount_once(charged_record, manager_user, fake_gateway, monkeypatch):
    original = fake_gateway.refund
    state = {"nested": None}

    def refund(**kwargs):
        if state["nested"] is None:
            state["nested"] = "running"
            state["nested"] = refund_penalty(
                charged_record.pk,
                reason="goodwill",
                refunded_by=manager_user,
                partial_amount_cents=2000,
                gateway=fake_gateway,
            )
        return original(**kwargs)

    monkeypatch.setattr(fake_gateway, "refund", refund)

    result = refund_penalty(
        charged_record.pk,
        reason="goodwill",
        refunded_by=manager_user,
        partial_amount_cents=2000,
        gateway=fake_gateway,
    )

    assert state["nested"].success is True
    assert result.success is True
    assert len({call["idempotency_key"] for call in fake_gateway.refunds}) == 1
    charged_record.refresh_from_db()
    assert charged_record.refunded_amount_cents == 2000
    assert result.data["refunded_amount_cents"] == 2000
    assert charged_record.history.filter(event_type=OverstayHistoryEntry.EventType.REFUND).count() == 1
