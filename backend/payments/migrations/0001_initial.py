import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="OwnerPayoutAccount",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("stripe_account_id", models.CharField(max_length=255)),
                ("payouts_enabled", models.BooleanField(default=False)),
                ("charges_enabled", models.BooleanField(default=False)),
                ("last_synced_at", models.DateTimeField(blank=True, null=True)),
                (
                    "user",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payout_account",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-last_synced_at", "user_id"],
            },
        ),
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[("overstay_penalty", "Overstay penalty")], max_length=32
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("partially_refunded", "Partially refunded"),
                            ("refunded", "Refunded"),
                        ],
                        default="pending",
                        max_length=24,
                    ),
                ),
                ("currency", models.CharField(default="cad", max_length=8)),
                (
                    "amount_cents",
                    models.PositiveIntegerField(help_text="Total charged, tax included."),
                ),
                ("base_amount_cents", models.PositiveIntegerField(default=0)),
                ("tax_amount_cents", models.PositiveIntegerField(default=0)),
                ("service_fee_cents", models.PositiveIntegerField(default=0)),
                ("manager_revenue_cents", models.IntegerField(default=0)),
                ("payment_intent_id", models.CharField(blank=True, default="", max_length=255)),
                ("charge_id", models.CharField(blank=True, default="", max_length=255)),
                ("refund_id", models.CharField(blank=True, default="", max_length=255)),
                ("refund_amount_cents", models.PositiveIntegerField(default=0)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("stripe_processing_fee_cents", models.IntegerField(blank=True, null=True)),
                ("stripe_net_amount_cents", models.IntegerField(blank=True, null=True)),
                ("stripe_platform_fee_cents", models.IntegerField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("last_synced_at", models.DateTimeField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_transactions",
                        to="bookings.booking",
                    ),
                ),
                (
                    "manager",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="managed_payment_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="payment_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="paymenttransaction",
            index=models.Index(fields=["payment_intent_id"], name="paytx_intent_idx"),
        ),
        migrations.AddIndex(
            model_name="paymenttransaction",
            index=models.Index(fields=["booking", "kind"], name="paytx_booking_kind_idx"),
        ),
    ]
