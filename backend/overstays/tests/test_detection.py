from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.core import mail

from bookings.models import Booking
from overstays.config import EffectivePenaltyConfig
from overstays.models import OverstayHistoryEntry, OverstayRecord
from overstays.services.detection import compute_penalty, detect_overstays, idempotency_key_for

pytestmark = pytest.mark.django_db

POLICY = EffectivePenaltyConfig(grace_period_days=3, penalty_rate=Decimal("0.10"), max_penalty_days=30)


def test_compute_penalty_inside_grace_period_accrues_nothing():
    end = date(2025, 3, 1)
    result = compute_penalty(end_date=end, today=end + timedelta(days=2), daily_rate_cents=2000, config=POLICY)

    assert result.days_overdue == 2
    assert result.is_in_grace_period is True
    assert result.grace_period_ends_at == date(2025, 3, 4)
    assert result.penalty_days == 0
    assert result.calculated_penalty_cents == 0
    assert result.status == OverstayRecord.Status.GRACE_PERIOD


def test_compute_penalty_counts_days_past_grace():
    end = date(2025, 3, 1)
    result = compute_penalty(end_date=end, today=end + timedelta(days=5), daily_rate_cents=2000, config=POLICY)

    assert result.is_in_grace_period is False
    assert result.daily_penalty_cents == 2200
    assert result.penalty_days == 2
    assert result.calculated_penalty_cents == 4400
    assert result.status == OverstayRecord.Status.PENDING_REVIEW


def test_compute_penalty_on_last_grace_day_boundary():
    end = date(2025, 3, 1)
    result = compute_penalty(end_date=end, today=end + timedelta(days=3), daily_rate_cents=2000, config=POLICY)

    assert result.is_in_grace_period is False
    assert result.penalty_days == 0
    assert result.calculated_penalty_cents == 0


def test_compute_penalty_caps_at_max_penalty_days():
    end = date(2025, 3, 1)
    result = compute_penalty(end_date=end, today=end + timedelta(days=60), daily_rate_cents=2000, config=POLICY)

    assert result.days_overdue == 60
    assert result.penalty_days == 30
    assert result.calculated_penalty_cents == 2200 * 30


def test_compute_penalty_rounds_daily_amount_half_up():
    end = date(2025, 3, 1)
    result = compute_penalty(end_date=end, today=end + timedelta(days=4), daily_rate_cents=1995, config=POLICY)

    # 1995 * 1.10 = 2194.5
    assert result.daily_penalty_cents == 2195
    assert result.calculated_penalty_cents == 2195


def test_scan_opens_grace_period_record(booking_factory, today):
    booking = booking_factory(end_date=today - timedelta(days=2))

    results = detect_overstays(today=today)

    assert len(results) == 1
    assert results[0].created is True
    record = OverstayRecord.objects.get(booking=booking)
    assert record.status == OverstayRecord.Status.GRACE_PERIOD
    assert record.days_overdue == 2
    assert record.calculated_penalty_cents == 0
    assert record.grace_period_ends_at == booking.end_date + timedelta(days=3)
    assert record.idempotency_key == idempotency_key_for(booking)

    entry = record.history.get()
    assert entry.event_type == OverstayHistoryEntry.EventType.STATUS_CHANGE
    assert entry.event_source == OverstayHistoryEntry.EventSource.CRON
    assert entry.previous_status is None
    assert entry.new_status == OverstayRecord.Status.GRACE_PERIOD
    assert entry.description == "Overstay detected. Days overdue: 2"


def test_scan_flags_record_for_review_after_grace(booking_factory, today):
    booking = booking_factory(end_date=today - timedelta(days=5))

    detect_overstays(today=today)

    record = OverstayRecord.objects.get(booking=booking)
    assert record.status == OverstayRecord.Status.PENDING_REVIEW
    assert record.days_overdue == 5
    assert record.daily_rate_cents == 2000
    assert record.penalty_rate == Decimal("0.1000")
    assert record.calculated_penalty_cents == 4400
    assert record.final_penalty_cents is None


def test_scan_is_idempotent_for_the_same_day(booking_factory, today):
    booking = booking_factory(end_date=today - timedelta(days=5))

    detect_overstays(today=today)
    second = detect_overstays(today=today)

    assert OverstayRecord.objects.filter(booking=booking).count() == 1
    assert [result.created for result in second] == [False]
    assert OverstayHistoryEntry.objects.filter(record__booking=booking).count() == 1


def test_later_scan_refreshes_and_advances_grace_record(booking_factory, today):
    booking = booking_factory(end_date=today - timedelta(days=7))
    first_day = today - timedelta(days=5)

    detect_overstays(today=first_day)
    record = OverstayRecord.objects.get(booking=booking)
    assert record.status == OverstayRecord.Status.GRACE_PERIOD

    detect_overstays(today=today)
    record.refresh_from_db()
    assert record.status == OverstayRecord.Status.PENDING_REVIEW
    assert record.days_overdue == 7
    assert record.calculated_penalty_cents == 2200 * 4

    latest = record.history.order_by("-id").first()
    assert latest.previous_status == OverstayRecord.Status.GRACE_PERIOD
    assert latest.new_status == OverstayRecord.Status.PENDING_REVIEW
    assert latest.description == "Days overdue: 7"


def test_pending_review_refresh_updates_amount_without_history(booking_factory, today):
    booking = booking_factory(end_date=today - timedelta(days=6))

    detect_overstays(today=today - timedelta(days=1))
    detect_overstays(today=today)

    record = OverstayRecord.objects.get(booking=booking)
    assert record.calculated_penalty_cents == 2200 * 3
    assert record.history.count() == 1


def test_scan_skips_bookings_with_checkout_under_way(booking_factory, today):
    booking_factory(
        end_date=today - timedelta(days=5),
        checkout_status=Booking.CheckoutStatus.CHECKOUT_REQUESTED,
    )

    assert detect_overstays(today=today) == []
    assert OverstayRecord.objects.count() == 0


def test_scan_ignores_inactive_and_current_bookings(booking_factory, today):
    booking_factory(end_date=today - timedelta(days=5), status=Booking.Status.COMPLETED)
    booking_factory(end_date=today - timedelta(days=5), status=Booking.Status.CANCELED)
    booking_factory(end_date=today)

    assert detect_overstays(today=today) == []


def test_closed_record_is_not_reopened(record_factory, booking_factory, today):
    booking = booking_factory(end_date=today - timedelta(days=5))
    record_factory(booking=booking, status=OverstayRecord.Status.PENALTY_WAIVED, final_penalty_cents=0)

    assert detect_overstays(today=today) == []
    assert OverstayRecord.objects.filter(booking=booking).count() == 1


@pytest.mark.parametrize(
    "status",
    [
        OverstayRecord.Status.CHARGE_SUCCEEDED,
        OverstayRecord.Status.RESOLVED,
        OverstayRecord.Status.ESCALATED,
    ],
)
def test_settled_record_is_left_untouched_by_later_scans(record_factory, booking_factory, today, status):
    booking = booking_factory(end_date=today - timedelta(days=5))
    record = record_factory(
        booking=booking,
        status=status,
        days_overdue=4,
        calculated_penalty_cents=2200,
        final_penalty_cents=2200,
    )

    assert detect_overstays(today=today) == []
    assert detect_overstays(today=today + timedelta(days=3)) == []

    record.refresh_from_db()
    assert record.status == status
    assert record.days_overdue == 4
    assert record.calculated_penalty_cents == 2200
    assert OverstayRecord.objects.filter(booking=booking).count() == 1
    assert not record.history.exists()


def test_charge_failed_record_keeps_its_status_on_refresh(record_factory, booking_factory, today):
    booking = booking_factory(end_date=today - timedelta(days=6))
    record = record_factory(booking=booking, status=OverstayRecord.Status.CHARGE_FAILED, days_overdue=5)

    detect_overstays(today=today)

    record.refresh_from_db()
    assert record.status == OverstayRecord.Status.CHARGE_FAILED
    assert record.days_overdue == 6
    assert record.calculated_penalty_cents == 2200 * 3


def test_listing_policy_overrides_apply(listing, booking_factory, today):
    listing.overstay_grace_period_days = 0
    listing.overstay_penalty_rate = Decimal("0.50")
    listing.save()
    booking = booking_factory(end_date=today - timedelta(days=5))

    detect_overstays(today=today)

    record = OverstayRecord.objects.get(booking=booking)
    assert record.status == OverstayRecord.Status.PENDING_REVIEW
    assert record.calculated_penalty_cents == 3000 * 5


def test_scan_continues_after_a_failing_booking(booking_factory, today, monkeypatch):
    from overstays.services import detection

    broken = booking_factory(end_date=today - timedelta(days=5))
    healthy = booking_factory(end_date=today - timedelta(days=4))
    original = detection._process_booking

    def flaky(booking, *args):
        if booking.pk == broken.pk:
            raise RuntimeError("boom")
        return original(booking, *args)

    monkeypatch.setattr(detection, "_process_booking", flaky)

    results = detect_overstays(today=today)

    assert [result.booking_id for result in results] == [healthy.pk]


def test_scan_notifies_renter_and_manager(
    booking_factory, today, renter_user, manager_user, django_capture_on_commit_callbacks
):
    booking = booking_factory(end_date=today - timedelta(days=5))

    with django_capture_on_commit_callbacks(execute=True):
        detect_overstays(today=today)

    recipients = sorted(message.to[0] for message in mail.outbox)
    assert recipients == sorted([renter_user.email, manager_user.email])

    record = OverstayRecord.objects.get(booking=booking)
    assert record.renter_warning_sent_at is not None
    assert record.manager_notified_at is not None
    kinds = {
        entry.metadata["kind"]
        for entry in record.history.filter(event_type=OverstayHistoryEntry.EventType.NOTIFICATION_SENT)
    }
    assert kinds == {"renter_warning", "manager_alert"}


def test_grace_record_only_warns_renter(booking_factory, today, renter_user, django_capture_on_commit_callbacks):
    booking_factory(end_date=today - timedelta(days=1))

    with django_capture_on_commit_callbacks(execute=True):
        detect_overstays(today=today)

    assert [message.to for message in mail.outbox] == [[renter_user.email]]
