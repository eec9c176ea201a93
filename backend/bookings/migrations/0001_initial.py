import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("listings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("start_date", models.DateField()),
                ("end_date", models.DateField(help_text="Last contracted day of the rental.")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("requested", "requested"),
                            ("confirmed", "confirmed"),
                            ("canceled", "canceled"),
                            ("completed", "completed"),
                        ],
                        default="requested",
                        max_length=16,
                    ),
                ),
                (
                    "checkout_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("", "none"),
                            ("checkout_requested", "checkout requested"),
                            ("checkout_approved", "checkout approved"),
                            ("completed", "completed"),
                            ("checkout_claim_filed", "checkout claim filed"),
                        ],
                        default="",
                        max_length=32,
                    ),
                ),
                (
                    "renter_stripe_customer_id",
                    models.CharField(blank=True, default="", max_length=120),
                ),
                (
                    "renter_stripe_payment_method_id",
                    models.CharField(blank=True, default="", max_length=120),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "listing",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings",
                        to="listings.listing",
                    ),
                ),
                (
                    "renter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="bookings_as_renter",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="booking",
            index=models.Index(
                fields=["listing", "start_date", "end_date"], name="booking_listing_dates_idx"
            ),
        ),
        migrations.AddIndex(
            model_name="booking",
            index=models.Index(fields=["renter", "status"], name="booking_renter_status_idx"),
        ),
        migrations.AddIndex(
            model_name="booking",
            index=models.Index(fields=["status", "end_date"], name="booking_status_end_idx"),
        ),
    ]
