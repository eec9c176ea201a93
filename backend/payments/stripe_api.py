"""Stripe client used for overstay penalty collection."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.response import Response

from payments.gateway import CheckoutSession, FeeBreakdown, OffSessionCharge, RefundResult

logger = logging.getLogger(__name__)


class StripeGatewayError(Exception):
    """Base class for mapped Stripe failures; carries the Stripe error code."""

    def __init__(self, message: str = "", *, code: str = ""):
        super().__init__(message)
        self.code = code or ""


class StripeConfigurationError(StripeGatewayError):
    """Stripe is not configured correctly in the environment."""


class StripeTransientError(StripeGatewayError):
    """Temporary Stripe/API issue that should be retried."""


class StripePaymentError(StripeGatewayError):
    """Permanent payment failure for a charge or refund."""


def _to_cents(amount: Decimal) -> int:
    """Convert Decimal dollars to integer cents, rounding to the nearest cent."""
    cents = (amount * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def _get_frontend_origin() -> str:
    """Return the configured frontend origin or a local fallback."""
    configured = (getattr(settings, "FRONTEND_ORIGIN", "") or "").strip()
    base = configured or "http://localhost:5173"
    return base.rstrip("/") or base


def _error_code(exc: stripe.StripeError) -> str:
    code = getattr(exc, "code", None) or ""
    if not code:
        error = getattr(exc, "error", None)
        code = getattr(error, "code", None) or ""
    return str(code)


def _handle_stripe_error(exc: stripe.StripeError) -> None:
    """Map Stripe SDK errors onto internal exception types."""
    code = _error_code(exc)
    if isinstance(exc, stripe.CardError):
        message = exc.user_message or "Your card was declined."
        raise StripePaymentError(message, code=code) from exc
    if isinstance(
        exc,
        (
            stripe.RateLimitError,
            stripe.APIConnectionError,
            stripe.APIError,
        ),
    ):
        raise StripeTransientError("Temporary Stripe error, please retry.", code=code) from exc
    if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
        raise StripeConfigurationError(
            "Stripe credentials are invalid or unauthorized.", code=code
        ) from exc
    if isinstance(exc, stripe.InvalidRequestError):
        raise StripePaymentError(exc.user_message or "Invalid payment request.", code=code) from exc
    raise StripePaymentError(exc.user_message or "Stripe payment failure.", code=code) from exc


def _value(obj: Any, field: str, default: Any = None) -> Any:
    """Safely fetch a field from a Stripe object or dict payload."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(field, default)
    value = getattr(obj, field, None)
    if value is None and hasattr(obj, "get"):
        value = obj.get(field, default)
    return default if value is None else value


def _object_id(obj: Any) -> str:
    if isinstance(obj, str):
        return obj
    return _value(obj, "id", "") or ""


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK.

    One instance is built at process start with the configured key and passed
    explicitly to the overstay services, so nothing touches ``stripe.api_key``.
    """

    def __init__(self, *, api_key: str, currency: str = "cad", env: str = "dev"):
        self.api_key = api_key
        self.currency = currency
        self.env = env

    @classmethod
    def from_settings(cls) -> "StripeGateway":
        return cls(
            api_key=getattr(settings, "STRIPE_SECRET_KEY", "") or "",
            currency=getattr(settings, "STRIPE_CURRENCY", "cad") or "cad",
            env=getattr(settings, "STRIPE_ENV", "dev") or "dev",
        )

    def _require_key(self) -> str:
        if not self.api_key:
            raise StripeConfigurationError("Stripe secret key not configured.")
        return self.api_key

    def _metadata(self, metadata: Optional[dict[str, str]]) -> dict[str, str]:
        merged = {"env": self.env}
        merged.update({key: str(value) for key, value in (metadata or {}).items()})
        return merged

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
    ) -> OffSessionCharge:
        """Create and confirm a PaymentIntent without the customer present."""
        if amount_cents <= 0:
            raise StripePaymentError("Charge amount must be greater than zero.")
        api_key = self._require_key()

        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "customer": customer_id,
            "payment_method": payment_method_id,
            "off_session": True,
            "confirm": True,
            "metadata": self._metadata(metadata),
        }
        if description:
            params["description"] = description
        if statement_descriptor_suffix:
            params["statement_descriptor_suffix"] = statement_descriptor_suffix
        if destination_account:
            params["transfer_data"] = {"destination": destination_account}
            if platform_fee_cents and platform_fee_cents > 0:
                params["application_fee_amount"] = platform_fee_cents

        try:
            intent = stripe.PaymentIntent.create(
                api_key=api_key,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)

        return OffSessionCharge(
            status=_value(intent, "status", ""),
            payment_intent_id=_object_id(intent),
            charge_id=_object_id(_value(intent, "latest_charge", "")),
        )

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
    ) -> CheckoutSession:
        """Create a hosted Checkout session the renter completes themselves."""
        if amount_cents <= 0:
            raise StripePaymentError("Checkout amount must be greater than zero.")
        api_key = self._require_key()
        session_metadata = self._metadata(metadata)

        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": session_metadata,
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": amount_cents,
                        "product_data": {
                            "name": product_name,
                            "description": description,
                        },
                    },
                    "quantity": 1,
                }
            ],
        }
        if customer_email:
            params["customer_email"] = customer_email
        if expires_at:
            params["expires_at"] = expires_at
        payment_intent_data: dict[str, Any] = {"metadata": session_metadata}
        if destination_account:
            payment_intent_data["transfer_data"] = {"destination": destination_account}
            if platform_fee_cents and platform_fee_cents > 0:
                payment_intent_data["application_fee_amount"] = platform_fee_cents
        params["payment_intent_data"] = payment_intent_data

        extra: dict[str, Any] = {}
        if idempotency_key:
            extra["idempotency_key"] = idempotency_key
        try:
            session = stripe.checkout.Session.create(api_key=api_key, **extra, **params)
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)

        session_id = _object_id(session)
        session_url = _value(session, "url", "")
        if not session_id or not session_url:
            raise StripeConfigurationError("Stripe did not return a checkout session URL.")
        return CheckoutSession(session_id=session_id, url=session_url)

    def refund(
        self,
        *,
        payment_intent_id: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> RefundResult:
        """Refund part or all of a PaymentIntent."""
        if amount_cents <= 0:
            raise StripePaymentError("Refund amount must be greater than zero.")
        api_key = self._require_key()
        try:
            refund = stripe.Refund.create(
                api_key=api_key,
                payment_intent=payment_intent_id,
                amount=amount_cents,
                reason=reason,
                metadata=self._metadata(metadata),
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)

        return RefundResult(
            refund_id=_object_id(refund),
            amount_cents=int(_value(refund, "amount", amount_cents) or amount_cents),
            status=_value(refund, "status", "succeeded"),
        )

    def get_fee_breakdown(
        self,
        payment_intent_id: str,
        *,
        stripe_account: Optional[str] = None,
    ) -> Optional[FeeBreakdown]:
        """
        Read the actual processing fee from the charge's balance transaction.

        Returns None when Stripe has not settled the balance transaction yet.
        """
        api_key = self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment_intent_id,
                api_key=api_key,
                expand=["latest_charge.balance_transaction"],
            )
        except stripe.StripeError as exc:
            _handle_stripe_error(exc)

        charge = _value(intent, "latest_charge")
        balance_txn = _value(charge, "balance_transaction")
        if not balance_txn or isinstance(balance_txn, str):
            logger.info(
                "stripe: balance transaction not expanded yet",
                extra={"payment_intent_id": payment_intent_id, "stripe_account": stripe_account},
            )
            return None

        return FeeBreakdown(
            amount_cents=int(_value(balance_txn, "amount", 0) or 0),
            processing_fee_cents=int(_value(balance_txn, "fee", 0) or 0),
            net_amount_cents=int(_value(balance_txn, "net", 0) or 0),
            platform_fee_cents=int(_value(intent, "application_fee_amount", 0) or 0),
        )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([])
def stripe_webhook(request):
    """Handle Stripe webhook callbacks for overstay penalty checkouts."""
    payload = request.body
    sig_header = request.META.get("HTTP_STRIPE_SIGNATURE", "")
    endpoint_secret = getattr(settings, "STRIPE_WEBHOOK_SECRET", "")

    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=endpoint_secret,
        )
    except ValueError:
        return Response(status=status.HTTP_400_BAD_REQUEST)
    except stripe.SignatureVerificationError:
        return Response(status=status.HTTP_400_BAD_REQUEST)

    event_type = event.get("type")
    data_object = event.get("data", {}).get("object", {}) or {}
    metadata = data_object.get("metadata") or {}

    if event_type == "checkout.session.completed":
        if metadata.get("kind") != "overstay_penalty":
            return Response(status=status.HTTP_200_OK)
        if data_object.get("payment_status") not in (None, "paid"):
            logger.info(
                "stripe_webhook: overstay checkout completed without payment",
                extra={"session_id": data_object.get("id")},
            )
            return Response(status=status.HTTP_200_OK)

        from overstays.services.escalation import complete_checkout_payment

        result = complete_checkout_payment(data_object)
        if not result.success:
            logger.warning(
                "stripe_webhook: overstay checkout not applied",
                extra={"session_id": data_object.get("id"), "error": result.error},
            )

    return Response(status=status.HTTP_200_OK)
