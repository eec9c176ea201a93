from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Tuple

from django.conf import settings

_ONE = Decimal("1")


def round_cents(amount: Decimal) -> int:
    """Round a fractional cent amount half-up to a whole cent."""
    return int(amount.quantize(_ONE, rounding=ROUND_HALF_UP))


def compute_tax_cents(base_cents: int, rate_percent: Decimal | int | str | None) -> int:
    """Tax on ``base_cents`` at a percentage rate, e.g. 5 == 5%."""
    if not base_cents or base_cents <= 0 or rate_percent in (None, ""):
        return 0
    rate = Decimal(str(rate_percent))
    if rate <= 0:
        return 0
    return round_cents(Decimal(base_cents) * rate / Decimal("100"))


def add_tax(base_cents: int, rate_percent: Decimal | int | str | None) -> Tuple[int, int]:
    """Return (tax_cents, total_cents)."""
    tax = compute_tax_cents(base_cents, rate_percent)
    return tax, base_cents + tax


def processing_fee_cents(total_cents: int) -> int:
    """
    Stripe's card processing cost for a charge of ``total_cents``.

    Used as the application fee on destination charges so the platform breaks
    even on penalty collection.
    """
    if total_cents <= 0:
        return 0
    rate = Decimal(str(getattr(settings, "STRIPE_PROCESSING_FEE_RATE", "0.029")))
    fixed = int(getattr(settings, "STRIPE_PROCESSING_FEE_FIXED_CENTS", 30))
    return round_cents(Decimal(total_cents) * rate + Decimal(fixed))
