"""
Daily overstay scan.

Finds active bookings whose end date has passed without a checkout, computes
the penalty ceiling under the effective policy and opens or refreshes one
OverstayRecord per booking and end date.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from bookings.models import Booking
from notifications import tasks as notification_tasks
from overstays.config import EffectivePenaltyConfig, platform_defaults, resolve_penalty_config
from overstays.history import EventSource, EventType, record_history
from overstays.models import OverstayRecord
from overstays.notify import notify_after_commit
from overstays.transitions import Action, transition
from payments.tax import round_cents

logger = logging.getLogger(__name__)

Status = OverstayRecord.Status


@dataclass(frozen=True)
class OverstayComputation:
    days_overdue: int
    grace_period_ends_at: date
    is_in_grace_period: bool
    penalty_days: int
    daily_penalty_cents: int
    calculated_penalty_cents: int

    @property
    def status(self) -> str:
        return Status.GRACE_PERIOD if self.is_in_grace_period else Status.PENDING_REVIEW


@dataclass(frozen=True)
class OverstayDetectionResult:
    booking_id: int
    record_id: int
    days_overdue: int
    calculated_penalty_cents: int
    status: str
    created: bool


def compute_penalty(
    *,
    end_date: date,
    today: date,
    daily_rate_cents: int,
    config: EffectivePenaltyConfig,
) -> OverstayComputation:
    """
    Pure penalty arithmetic for one overdue booking.

    The daily penalty is the rental rate marked up by ``penalty_rate`` and
    rounded half-up to a cent. Nothing accrues until the grace period is over;
    after that every day past grace counts, up to ``max_penalty_days``.
    """
    days_overdue = max((today - end_date).days, 0)
    grace_period_ends_at = end_date + timedelta(days=config.grace_period_days)
    is_in_grace_period = today < grace_period_ends_at
    if is_in_grace_period:
        penalty_days = 0
    else:
        penalty_days = min(max(days_overdue - config.grace_period_days, 0), config.max_penalty_days)
    daily_penalty_cents = round_cents(
        Decimal(int(daily_rate_cents or 0)) * (Decimal("1") + config.penalty_rate)
    )
    return OverstayComputation(
        days_overdue=days_overdue,
        grace_period_ends_at=grace_period_ends_at,
        is_in_grace_period=is_in_grace_period,
        penalty_days=penalty_days,
        daily_penalty_cents=daily_penalty_cents,
        calculated_penalty_cents=daily_penalty_cents * penalty_days,
    )


def idempotency_key_for(booking: Booking) -> str:
    return f"booking_{booking.pk}_overstay_{booking.end_date.isoformat()}"


def overdue_bookings(today: date):
    """Active bookings past their end date with no checkout under way."""
    return (
        Booking.objects.select_related("listing", "listing__location", "renter")
        .filter(status=Booking.Status.CONFIRMED, end_date__lt=today)
        .exclude(checkout_status__in=list(Booking.CHECKOUT_IN_PROGRESS))
        .order_by("end_date", "id")
    )


def _refresh_record(
    record: OverstayRecord,
    computation: OverstayComputation,
    daily_rate_cents: int,
    config: EffectivePenaltyConfig,
) -> Optional[str]:
    """Update measurements in place; return the previous status when it advanced."""
    transition(record, Action.REFRESH)
    record.days_overdue = computation.days_overdue
    record.calculated_penalty_cents = computation.calculated_penalty_cents
    record.daily_rate_cents = daily_rate_cents
    record.penalty_rate = config.penalty_rate
    record.grace_period_ends_at = computation.grace_period_ends_at

    previous = None
    if record.status in (Status.DETECTED, Status.GRACE_PERIOD) and not computation.is_in_grace_period:
        previous = transition(record, Action.FLAG_FOR_REVIEW)
    elif record.status == Status.DETECTED:
        previous = transition(record, Action.ENTER_GRACE)
    record.save()
    return previous


def _process_booking(booking: Booking, today: date, platform: EffectivePenaltyConfig):
    config = resolve_penalty_config(booking.listing, platform=platform)
    daily_rate_cents = int(booking.listing.daily_rate_cents or 0)
    computation = compute_penalty(
        end_date=booking.end_date,
        today=today,
        daily_rate_cents=daily_rate_cents,
        config=config,
    )
    key = idempotency_key_for(booking)

    with transaction.atomic():
        record = (
            OverstayRecord.objects.select_for_update()
            .filter(booking=booking, status__in=list(OverstayRecord.OPEN_STATUSES))
            .order_by("-detected_at", "-id")
            .first()
        )
        if record is not None:
            previous = _refresh_record(record, computation, daily_rate_cents, config)
            if previous is not None:
                record_history(
                    record,
                    previous_status=previous,
                    event_type=EventType.STATUS_CHANGE,
                    event_source=EventSource.CRON,
                    description=f"Days overdue: {computation.days_overdue}",
                    metadata={"calculated_penalty_cents": computation.calculated_penalty_cents},
                )
                if record.status == Status.PENDING_REVIEW:
                    notify_after_commit(
                        notification_tasks.send_overstay_manager_alert_email, record.pk
                    )
            return OverstayDetectionResult(
                booking_id=booking.pk,
                record_id=record.pk,
                days_overdue=record.days_overdue,
                calculated_penalty_cents=record.calculated_penalty_cents,
                status=record.status,
                created=False,
            )

        # This end date was already handled and closed; never reopen it.
        if OverstayRecord.objects.filter(idempotency_key=key).exists():
            return None

        try:
            with transaction.atomic():
                record = OverstayRecord.objects.create(
                    booking=booking,
                    idempotency_key=key,
                    end_date=booking.end_date,
                    days_overdue=computation.days_overdue,
                    grace_period_ends_at=computation.grace_period_ends_at,
                    daily_rate_cents=daily_rate_cents,
                    penalty_rate=config.penalty_rate,
                    calculated_penalty_cents=computation.calculated_penalty_cents,
                    status=computation.status,
                    detected_at=timezone.now(),
                )
        except IntegrityError:
            logger.info(
                "overstays: record for booking %s created concurrently; skipping",
                booking.pk,
            )
            return None

        record_history(
            record,
            previous_status=None,
            event_type=EventType.STATUS_CHANGE,
            event_source=EventSource.CRON,
            description=f"Overstay detected. Days overdue: {computation.days_overdue}",
            metadata={
                "calculated_penalty_cents": computation.calculated_penalty_cents,
                "penalty_days": computation.penalty_days,
                "policy": config.as_dict(),
            },
        )
        notify_after_commit(notification_tasks.send_overstay_detected_email, record.pk)
        if record.status == Status.PENDING_REVIEW:
            notify_after_commit(notification_tasks.send_overstay_manager_alert_email, record.pk)

    return OverstayDetectionResult(
        booking_id=booking.pk,
        record_id=record.pk,
        days_overdue=record.days_overdue,
        calculated_penalty_cents=record.calculated_penalty_cents,
        status=record.status,
        created=True,
    )


def detect_overstays(today: Optional[date] = None) -> list[OverstayDetectionResult]:
    """
    Scan every overdue booking once.

    Safe to run repeatedly for the same day: records are refreshed, never
    duplicated. A failure on one booking is logged and the scan moves on.
    """
    today = today or timezone.localdate()
    platform = platform_defaults()
    results: list[OverstayDetectionResult] = []
    for booking in overdue_bookings(today):
        try:
            result = _process_booking(booking, today, platform)
        except Exception:
            logger.exception("overstays: detection failed for booking %s", booking.pk)
            continue
        if result is not None:
            results.append(result)

    logger.info(
        "overstays: detection finished",
        extra={
            "today": today.isoformat(),
            "created": sum(1 for result in results if result.created),
            "updated": sum(1 for result in results if not result.created),
        },
    )
    return results
