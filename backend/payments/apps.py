"""App configuration for payments."""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"

    def ready(self) -> None:
        """Build the Stripe client once per process."""
        from payments.gateway import configure_payment_gateway

        configure_payment_gateway()
