from django.conf import settings
from django.db import models


class PaymentTransaction(models.Model):
    """Reconciled billing entry for money collected outside the booking checkout."""

    class Kind(models.TextChoices):
        OVERSTAY_PENALTY = "overstay_penalty", "Overstay penalty"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SUCCEEDED = "succeeded", "Succeeded"
        FAILED = "failed", "Failed"
        PARTIALLY_REFUNDED = "partially_refunded", "Partially refunded"
        REFUNDED = "refunded", "Refunded"

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="payment_transactions",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payment_transactions",
    )
    manager = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="managed_payment_transactions",
    )
    kind = models.CharField(max_length=32, choices=Kind.choices)
    status = models.CharField(max_length=24, choices=Status.choices, default=Status.PENDING)
    currency = models.CharField(max_length=8, default="cad")
    amount_cents = models.PositiveIntegerField(help_text="Total charged, tax included.")
    base_amount_cents = models.PositiveIntegerField(default=0)
    tax_amount_cents = models.PositiveIntegerField(default=0)
    service_fee_cents = models.PositiveIntegerField(default=0)
    manager_revenue_cents = models.IntegerField(default=0)
    payment_intent_id = models.CharField(max_length=255, blank=True, default="")
    charge_id = models.CharField(max_length=255, blank=True, default="")
    refund_id = models.CharField(max_length=255, blank=True, default="")
    refund_amount_cents = models.PositiveIntegerField(default=0)
    refunded_at = models.DateTimeField(null=True, blank=True)
    stripe_processing_fee_cents = models.IntegerField(null=True, blank=True)
    stripe_net_amount_cents = models.IntegerField(null=True, blank=True)
    stripe_platform_fee_cents = models.IntegerField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["payment_intent_id"], name="paytx_intent_idx"),
            models.Index(fields=["booking", "kind"], name="paytx_booking_kind_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.kind} {self.amount_cents} {self.currency} ({self.status})"


class OwnerPayoutAccount(models.Model):
    """Stripe Connect Express account tracking for location managers."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="payout_account",
    )
    stripe_account_id = models.CharField(max_length=255)
    payouts_enabled = models.BooleanField(default=False)
    charges_enabled = models.BooleanField(default=False)
    last_synced_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-last_synced_at", "user_id"]

    def __str__(self) -> str:
        return f"{self.user} - {self.stripe_account_id}"

    @property
    def can_receive_destination_charges(self) -> bool:
        return bool(self.stripe_account_id and self.charges_enabled)
