"""Payment gateway double and overstay record fixtures."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Optional

import pytest
from django.utils import timezone

from core.settings_resolver import clear_settings_cache
from overstays.models import OverstayRecord
from payments.gateway import (
    CheckoutSession,
    FeeBreakdown,
    OffSessionCharge,
    RefundResult,
    configure_payment_gateway,
)


class FakeGateway:
    """Records every call; outcomes are set per test through attributes."""

    def __init__(self):
        self.charge_status = "succeeded"
        self.charge_error: Optional[Exception] = None
        self.checkout_error: Optional[Exception] = None
        self.refund_error: Optional[Exception] = None
        self.fee_breakdown: Optional[FeeBreakdown] = None
        self.charges: list[dict] = []
        self.checkouts: list[dict] = []
        self.refunds: list[dict] = []
        self.fee_lookups: list[str] = []

    def create_off_session_charge(self, **kwargs) -> OffSessionCharge:
        self.charges.append(kwargs)
        if self.charge_error is not None:
            raise self.charge_error
        number = len(self.charges)
        return OffSessionCharge(
            status=self.charge_status,
            payment_intent_id=f"pi_test_{number}",
            charge_id=f"ch_test_{number}" if self.charge_status == "succeeded" else "",
        )

    def create_checkout_session(self, **kwargs) -> CheckoutSession:
        self.checkouts.append(kwargs)
        if self.checkout_error is not None:
            raise self.checkout_error
        number = len(self.checkouts)
        return CheckoutSession(
            session_id=f"cs_test_{number}",
            url=f"https://checkout.stripe.test/pay/cs_test_{number}",
        )

    def refund(self, **kwargs) -> RefundResult:
        self.refunds.append(kwargs)
        if self.refund_error is not None:
            raise self.refund_error
        return RefundResult(refund_id=f"re_test_{len(self.refunds)}", amount_cents=kwargs["amount_cents"])

    def get_fee_breakdown(self, payment_intent_id, *, stripe_account=None):
        self.fee_lookups.append(payment_intent_id)
        return self.fee_breakdown


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def _install_fake_gateway(fake_gateway):
    configure_payment_gateway(fake_gateway)
    yield
    configure_payment_gateway(FakeGateway())


@pytest.fixture(autouse=True)
def _clear_in_process_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def record_factory(booking_factory, today):
    """Create a record directly in a given status, bypassing detection."""

    def _create(*, booking=None, status=OverstayRecord.Status.PENDING_REVIEW, **fields) -> OverstayRecord:
        booking = booking or booking_factory()
        days_overdue = (today - booking.end_date).days
        fields.setdefault("days_overdue", days_overdue)
        fields.setdefault("grace_period_ends_at", booking.end_date + timedelta(days=3))
        fields.setdefault("daily_rate_cents", booking.listing.daily_rate_cents)
        fields.setdefault("penalty_rate", Decimal("0.10"))
        fields.setdefault("calculated_penalty_cents", 4400)
        return OverstayRecord.objects.create(
            booking=booking,
            idempotency_key=f"booking_{booking.pk}_overstay_{booking.end_date.isoformat()}",
            end_date=booking.end_date,
            status=status,
            detected_at=timezone.now(),
            **fields,
        )

    return _create


@pytest.fixture
def pending_record(record_factory):
    return record_factory()


@pytest.fixture
def approved_record(record_factory, manager_user):
    return record_factory(
        status=OverstayRecord.Status.PENALTY_APPROVED,
        final_penalty_cents=4400,
        penalty_approved_at=timezone.now(),
        penalty_approved_by=manager_user,
    )


@pytest.fixture
def charged_record(record_factory, manager_user):
    now = timezone.now()
    return record_factory(
        status=OverstayRecord.Status.CHARGE_SUCCEEDED,
        final_penalty_cents=4400,
        charged_amount_cents=4400,
        payment_intent_id="pi_existing",
        charge_id="ch_existing",
        charge_attempted_at=now,
        charge_succeeded_at=now,
        resolved_at=now,
        resolution_type=OverstayRecord.ResolutionType.PAID,
        penalty_approved_at=now,
        penalty_approved_by=manager_user,
    )


@pytest.fixture
def manager_client(api_client, manager_user):
    api_client.force_authenticate(user=manager_user)
    return api_client


@pytest.fixture
def renter_client(api_client, renter_user):
    api_client.force_authenticate(user=renter_user)
    return api_client
