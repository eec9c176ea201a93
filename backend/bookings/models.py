"""Database models for storage bookings."""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from listings.models import Listing


class Booking(models.Model):
    """Represents a storage rental of a listing for a date range."""

    class Status(models.TextChoices):
        REQUESTED = "requested", "requested"
        CONFIRMED = "confirmed", "confirmed"
        CANCELED = "canceled", "canceled"
        COMPLETED = "completed", "completed"

    class CheckoutStatus(models.TextChoices):
        NONE = "", "none"
        CHECKOUT_REQUESTED = "checkout_requested", "checkout requested"
        CHECKOUT_APPROVED = "checkout_approved", "checkout approved"
        COMPLETED = "completed", "completed"
        CHECKOUT_CLAIM_FILED = "checkout_claim_filed", "checkout claim filed"

    # A manager is inspecting the unit; overstay penalties must not accrue meanwhile.
    CHECKOUT_IN_PROGRESS = frozenset(
        {
            CheckoutStatus.CHECKOUT_REQUESTED,
            CheckoutStatus.CHECKOUT_APPROVED,
            CheckoutStatus.COMPLETED,
            CheckoutStatus.CHECKOUT_CLAIM_FILED,
        }
    )

    listing = models.ForeignKey(
        Listing,
        related_name="bookings",
        on_delete=models.CASCADE,
    )
    renter = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_renter",
        on_delete=models.CASCADE,
    )
    start_date = models.DateField()
    end_date = models.DateField(help_text="Last contracted day of the rental.")
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.REQUESTED,
    )
    checkout_status = models.CharField(
        max_length=32,
        choices=CheckoutStatus.choices,
        default=CheckoutStatus.NONE,
        blank=True,
    )
    renter_stripe_customer_id = models.CharField(max_length=120, blank=True, default="")
    renter_stripe_payment_method_id = models.CharField(max_length=120, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["listing", "start_date", "end_date"], name="booking_listing_dates_idx"),
            models.Index(fields=["renter", "status"], name="booking_renter_status_idx"),
            models.Index(fields=["status", "end_date"], name="booking_status_end_idx"),
        ]

    def __str__(self) -> str:
        """Return a human-readable representation."""
        return f"Booking #{self.pk} for {self.listing_id} ({self.status})"

    @property
    def days(self) -> int:
        """Return the count of booked days."""
        if not self.start_date or not self.end_date:
            return 0
        return (self.end_date - self.start_date).days

    def is_terminal(self) -> bool:
        """Return True if the booking reached a terminal state."""
        return self.status in {
            self.Status.CANCELED,
            self.Status.COMPLETED,
        }

    def checkout_in_progress(self) -> bool:
        return self.checkout_status in self.CHECKOUT_IN_PROGRESS

    def ended_before(self, today=None) -> bool:
        today = today or timezone.localdate()
        return bool(self.end_date and self.end_date < today)
