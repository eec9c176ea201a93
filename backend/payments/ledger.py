from __future__ import annotations

import logging
from typing import Optional

from django.utils import timezone

from .gateway import FeeBreakdown
from .models import PaymentTransaction

logger = logging.getLogger(__name__)


def record_payment_transaction(
    *,
    booking,
    user,
    manager=None,
    kind: str = PaymentTransaction.Kind.OVERSTAY_PENALTY,
    amount_cents: int,
    base_amount_cents: int,
    tax_amount_cents: int = 0,
    service_fee_cents: int = 0,
    payment_intent_id: str = "",
    charge_id: str = "",
    currency: str = "cad",
    status: str = PaymentTransaction.Status.SUCCEEDED,
    metadata: Optional[dict] = None,
) -> PaymentTransaction:
    """
    Create (or return the existing) billing entry for a collected payment.

    Keyed on the PaymentIntent id so webhook replays do not duplicate rows.
    """
    defaults = {
        "booking": booking,
        "user": user,
        "manager": manager,
        "amount_cents": amount_cents,
        "base_amount_cents": base_amount_cents,
        "tax_amount_cents": tax_amount_cents,
        "service_fee_cents": service_fee_cents,
        "manager_revenue_cents": amount_cents - service_fee_cents,
        "charge_id": charge_id,
        "currency": currency,
        "status": status,
        "metadata": metadata or {},
        "paid_at": timezone.now() if status == PaymentTransaction.Status.SUCCEEDED else None,
    }
    if not payment_intent_id:
        return PaymentTransaction.objects.create(kind=kind, **defaults)
    txn, _ = PaymentTransaction.objects.get_or_create(
        kind=kind,
        payment_intent_id=payment_intent_id,
        defaults=defaults,
    )
    return txn


def sync_stripe_fees(txn: PaymentTransaction, breakdown: Optional[FeeBreakdown]) -> PaymentTransaction:
    """Store the settled Stripe fee figures on a billing entry."""
    if breakdown is None:
        return txn
    txn.stripe_processing_fee_cents = breakdown.processing_fee_cents
    txn.stripe_net_amount_cents = breakdown.net_amount_cents
    txn.stripe_platform_fee_cents = breakdown.platform_fee_cents
    txn.last_synced_at = timezone.now()
    txn.save(
        update_fields=[
            "stripe_processing_fee_cents",
            "stripe_net_amount_cents",
            "stripe_platform_fee_cents",
            "last_synced_at",
            "updated_at",
        ]
    )
    return txn


def apply_refund(
    *,
    payment_intent_id: str,
    refund_amount_cents: int,
    refund_id: str,
) -> Optional[PaymentTransaction]:
    """Mark the billing entry for ``payment_intent_id`` as (partially) refunded."""
    if not payment_intent_id:
        return None
    txn = (
        PaymentTransaction.objects.filter(payment_intent_id=payment_intent_id)
        .order_by("-created_at")
        .first()
    )
    if txn is None:
        logger.info(
            "ledger: no billing entry to refund",
            extra={"payment_intent_id": payment_intent_id},
        )
        return None

    txn.refund_amount_cents = min(txn.amount_cents, txn.refund_amount_cents + refund_amount_cents)
    txn.refund_id = refund_id
    txn.refunded_at = timezone.now()
    txn.status = (
        PaymentTransaction.Status.REFUNDED
        if txn.refund_amount_cents >= txn.amount_cents
        else PaymentTransaction.Status.PARTIALLY_REFUNDED
    )
    txn.save(
        update_fields=["refund_amount_cents", "refund_id", "refunded_at", "status", "updated_at"]
    )
    return txn
