"""Overstay penalty records and their append-only audit history."""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class OverstayRecord(models.Model):
    """One detected overdue period for a storage booking."""

    class Status(models.TextChoices):
        DETECTED = "detected", "Detected"
        GRACE_PERIOD = "grace_period", "Grace period"
        PENDING_REVIEW = "pending_review", "Pending review"
        PENALTY_APPROVED = "penalty_approved", "Penalty approved"
        PENALTY_WAIVED = "penalty_waived", "Penalty waived"
        CHARGE_PENDING = "charge_pending", "Charge pending"
        CHARGE_SUCCEEDED = "charge_succeeded", "Charge succeeded"
        CHARGE_FAILED = "charge_failed", "Charge failed"
        ESCALATED = "escalated", "Escalated"
        RESOLVED = "resolved", "Resolved"

    class ResolutionType(models.TextChoices):
        PAID = "paid", "Paid"
        WAIVED = "waived", "Waived"
        EXTENDED = "extended", "Extended"
        REMOVED = "removed", "Removed"
        ESCALATED_COLLECTION = "escalated_collection", "Escalated collection"
        REFUNDED = "refunded", "Refunded"

    # The detector keeps refreshing records in these statuses.
    OPEN_STATUSES = frozenset(
        {
            Status.DETECTED,
            Status.GRACE_PERIOD,
            Status.PENDING_REVIEW,
            Status.CHARGE_FAILED,
        }
    )
    # A renter with a record in any of these still owes money or a decision is pending.
    UNPAID_STATUSES = frozenset(
        {
            Status.DETECTED,
            Status.GRACE_PERIOD,
            Status.PENDING_REVIEW,
            Status.PENALTY_APPROVED,
            Status.CHARGE_PENDING,
            Status.CHARGE_FAILED,
            Status.ESCALATED,
        }
    )

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="overstay_records",
    )
    idempotency_key = models.CharField(max_length=128, unique=True)

    end_date = models.DateField()
    days_overdue = models.PositiveIntegerField(default=0)
    grace_period_ends_at = models.DateField()
    daily_rate_cents = models.PositiveIntegerField(default=0)
    penalty_rate = models.DecimalField(max_digits=5, decimal_places=4)
    calculated_penalty_cents = models.PositiveIntegerField(default=0)
    final_penalty_cents = models.PositiveIntegerField(null=True, blank=True)

    status = models.CharField(max_length=24, choices=Status.choices, default=Status.DETECTED)
    detected_at = models.DateTimeField(default=timezone.now)

    penalty_approved_at = models.DateTimeField(null=True, blank=True)
    penalty_approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="overstay_decisions",
    )
    penalty_waived = models.BooleanField(default=False)
    waive_reason = models.TextField(blank=True, default="")
    manager_notes = models.TextField(blank=True, default="")

    charge_attempted_at = models.DateTimeField(null=True, blank=True)
    charge_succeeded_at = models.DateTimeField(null=True, blank=True)
    charge_failed_at = models.DateTimeField(null=True, blank=True)
    charge_failure_reason = models.TextField(blank=True, default="")
    charged_amount_cents = models.PositiveIntegerField(
        default=0,
        help_text="Amount actually collected, tax included.",
    )

    payment_intent_id = models.CharField(max_length=255, blank=True, default="")
    charge_id = models.CharField(max_length=255, blank=True, default="")
    checkout_session_id = models.CharField(max_length=255, blank=True, default="")
    refund_id = models.CharField(max_length=255, blank=True, default="")
    refunded_amount_cents = models.PositiveIntegerField(default=0)
    refunded_at = models.DateTimeField(null=True, blank=True)
    # Set before the gateway refund call and cleared once its outcome is recorded.
    pending_refund_cents = models.PositiveIntegerField(default=0)
    pending_refund_key = models.CharField(max_length=255, blank=True, default="")

    resolved_at = models.DateTimeField(null=True, blank=True)
    resolution_type = models.CharField(
        max_length=32,
        choices=ResolutionType.choices,
        blank=True,
        default="",
    )
    resolution_notes = models.TextField(blank=True, default="")

    renter_warning_sent_at = models.DateTimeField(null=True, blank=True)
    manager_notified_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-detected_at", "-id"]
        indexes = [
            models.Index(fields=["status", "detected_at"], name="overstay_status_idx"),
            models.Index(fields=["booking", "status"], name="overstay_booking_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["booking"],
                condition=Q(
                    status__in=["detected", "grace_period", "pending_review", "charge_failed"]
                ),
                name="overstay_one_open_per_booking",
            ),
        ]

    def __str__(self) -> str:
        return f"Overstay #{self.pk} booking {self.booking_id} ({self.status})"

    @property
    def location(self):
        return self.booking.listing.location

    @property
    def renter(self):
        return self.booking.renter

    @property
    def penalty_amount_cents(self) -> int:
        """Amount the renter owes: the manager's figure once decided, else the ceiling."""
        if self.final_penalty_cents is not None:
            return self.final_penalty_cents
        return self.calculated_penalty_cents

    @property
    def collected_amount_cents(self) -> int:
        return self.charged_amount_cents or self.final_penalty_cents or self.calculated_penalty_cents

    @property
    def refundable_cents(self) -> int:
        if self.status != self.Status.CHARGE_SUCCEEDED:
            return 0
        return max(self.collected_amount_cents - self.refunded_amount_cents, 0)

    @property
    def is_paid(self) -> bool:
        return self.charge_succeeded_at is not None

    @property
    def is_resolved(self) -> bool:
        return self.status in {
            self.Status.RESOLVED,
            self.Status.PENALTY_WAIVED,
            self.Status.CHARGE_SUCCEEDED,
        }


class HistoryImmutableError(Exception):
    """Raised on any attempt to rewrite or remove an audit entry."""


class OverstayHistoryEntry(models.Model):
    """Append-only audit row; the sole source for reconstructing a record's past."""

    class EventType(models.TextChoices):
        STATUS_CHANGE = "status_change", "Status change"
        PENALTY_APPROVED = "penalty_approved", "Penalty approved"
        PENALTY_WAIVED = "penalty_waived", "Penalty waived"
        CHARGE_ATTEMPT = "charge_attempt", "Charge attempt"
        AUTO_ESCALATION = "auto_escalation", "Auto escalation"
        NOTIFICATION_SENT = "notification_sent", "Notification sent"
        RESOLUTION = "resolution", "Resolution"
        REFUND = "refund", "Refund"

    class EventSource(models.TextChoices):
        CRON = "cron", "Cron"
        MANAGER = "manager", "Manager"
        SYSTEM = "system", "System"
        PAYMENT_WEBHOOK = "payment_webhook", "Payment webhook"

    record = models.ForeignKey(
        OverstayRecord,
        on_delete=models.PROTECT,
        related_name="history",
    )
    previous_status = models.CharField(
        max_length=24,
        choices=OverstayRecord.Status.choices,
        blank=True,
        null=True,
    )
    new_status = models.CharField(max_length=24, choices=OverstayRecord.Status.choices)
    event_type = models.CharField(max_length=32, choices=EventType.choices)
    event_source = models.CharField(max_length=24, choices=EventSource.choices)
    description = models.TextField(blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="overstay_history_entries",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["record", "created_at"], name="overstay_hist_record_idx"),
        ]
        verbose_name_plural = "overstay history entries"

    def __str__(self) -> str:
        return f"{self.event_type}: {self.previous_status or '-'} -> {self.new_status}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise HistoryImmutableError("Overstay history entries cannot be modified.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise HistoryImmutableError("Overstay history entries cannot be deleted.")
