"""Payment gateway contract shared by the Stripe client and test doubles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class OffSessionCharge:
    status: str
    payment_intent_id: str
    charge_id: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


@dataclass(frozen=True)
class FeeBreakdown:
    amount_cents: int
    processing_fee_cents: int
    net_amount_cents: int
    platform_fee_cents: int = 0


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount_cents: int
    status: str = "succeeded"
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


class PaymentGateway(Protocol):
    def create_off_session_charge(
        self,
        *,
        amount_cents: int,
        customer_id: str,
        payment_method_id: str,
        idempotency_key: str,
        metadata: dict[str, str],
        destination_account: Optional[str] = None,
        platform_fee_cents: Optional[int] = None,
        description: str = "",
        statement_descriptor_suffix: str = "",
    ) -> OffSessionCharge: ...

    def create_checkout_session(
        self,
        *,
        amount_cents: int,
        product_name: str,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        customer_email: Optional[str] = None,
        destination_account: Optional[str] = None,
        platform_fee_cents: Optional[int] = None,
        expires_at: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession: ...

    def refund(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> RefundResult: ...

    def get_fee_breakdown(
        self,
        payment_intent_id: str,
        *,
        stripe_account: Optional[str] = None,
    ) -> Optional[FeeBreakdown]: ...


_gateway: Optional[PaymentGateway] = None


def configure_payment_gateway(gateway: Optional[PaymentGateway] = None) -> PaymentGateway:
    """
    Install the process-wide gateway built at startup.

    Called once from PaymentsConfig.ready(); tests call it with a fake.
    """
    global _gateway
    if gateway is None:
        from payments.stripe_api import StripeGateway

        gateway = StripeGateway.from_settings()
    _gateway = gateway
    return gateway


def get_payment_gateway() -> PaymentGateway:
    """Return the gateway HTTP handlers and tasks pass into the overstay services."""
    if _gateway is None:
        return configure_payment_gateway()
    return _gateway
