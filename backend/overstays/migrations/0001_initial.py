import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

STATUS_CHOICES = [
    ("detected", "Detected"),
    ("grace_period", "Grace period"),
    ("pending_review", "Pending review"),
    ("penalty_approved", "Penalty approved"),
    ("penalty_waived", "Penalty waived"),
    ("charge_pending", "Charge pending"),
    ("charge_succeeded", "Charge succeeded"),
    ("charge_failed", "Charge failed"),
    ("escalated", "Escalated"),
    ("resolved", "Resolved"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="OverstayRecord",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("idempotency_key", models.CharField(max_length=128, unique=True)),
                ("end_date", models.DateField()),
                ("days_overdue", models.PositiveIntegerField(default=0)),
                ("grace_period_ends_at", models.DateField()),
                ("daily_rate_cents", models.PositiveIntegerField(default=0)),
                ("penalty_rate", models.DecimalField(decimal_places=4, max_digits=5)),
                ("calculated_penalty_cents", models.PositiveIntegerField(default=0)),
                ("final_penalty_cents", models.PositiveIntegerField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(choices=STATUS_CHOICES, default="detected", max_length=24),
                ),
                ("detected_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("penalty_approved_at", models.DateTimeField(blank=True, null=True)),
                ("penalty_waived", models.BooleanField(default=False)),
                ("waive_reason", models.TextField(blank=True, default="")),
                ("manager_notes", models.TextField(blank=True, default="")),
                ("charge_attempted_at", models.DateTimeField(blank=True, null=True)),
                ("charge_succeeded_at", models.DateTimeField(blank=True, null=True)),
                ("charge_failed_at", models.DateTimeField(blank=True, null=True)),
                ("charge_failure_reason", models.TextField(blank=True, default="")),
                (
                    "charged_amount_cents",
                    models.PositiveIntegerField(
                        default=0, help_text="Amount actually collected, tax included."
                    ),
                ),
                ("payment_intent_id", models.CharField(blank=True, default="", max_length=255)),
                ("charge_id", models.CharField(blank=True, default="", max_length=255)),
                ("checkout_session_id", models.CharField(blank=True, default="", max_length=255)),
                ("refund_id", models.CharField(blank=True, default="", max_length=255)),
                ("refunded_amount_cents", models.PositiveIntegerField(default=0)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                (
                    "resolution_type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("paid", "Paid"),
                            ("waived", "Waived"),
                            ("extended", "Extended"),
                            ("removed", "Removed"),
                            ("escalated_collection", "Escalated collection"),
                            ("refunded", "Refunded"),
                        ],
                        default="",
                        max_length=32,
                    ),
                ),
                ("resolution_notes", models.TextField(blank=True, default="")),
                ("renter_warning_sent_at", models.DateTimeField(blank=True, null=True)),
                ("manager_notified_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="overstay_records",
                        to="bookings.booking",
                    ),
                ),
                (
                    "penalty_approved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="overstay_decisions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-detected_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="OverstayHistoryEntry",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "previous_status",
                    models.CharField(
                        blank=True, choices=STATUS_CHOICES, max_length=24, null=True
                    ),
                ),
                ("new_status", models.CharField(choices=STATUS_CHOICES, max_length=24)),
                (
                    "event_type",
                    models.CharField(
                        choices=[
                            ("status_change", "Status change"),
                            ("penalty_approved", "Penalty approved"),
                            ("penalty_waived", "Penalty waived"),
                            ("charge_attempt", "Charge attempt"),
                            ("auto_escalation", "Auto escalation"),
                            ("notification_sent", "Notification sent"),
                            ("resolution", "Resolution"),
                            ("refund", "Refund"),
                        ],
                        max_length=32,
                    ),
                ),
                (
                    "event_source",
                    models.CharField(
                        choices=[
                            ("cron", "Cron"),
                            ("manager", "Manager"),
                            ("system", "System"),
                            ("payment_webhook", "Payment webhook"),
                        ],
                        max_length=24,
                    ),
                ),
                ("description", models.TextField(blank=True, default="")),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="overstay_history_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "record",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="history",
                        to="overstays.overstayrecord",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at", "-id"],
                "verbose_name_plural": "overstay history entries",
            },
        ),
        migrations.AddIndex(
            model_name="overstayrecord",
            index=models.Index(fields=["status", "detected_at"], name="overstay_status_idx"),
        ),
        migrations.AddIndex(
            model_name="overstayrecord",
            index=models.Index(fields=["booking", "status"], name="overstay_booking_status_idx"),
        ),
        migrations.AddConstraint(
            model_name="overstayrecord",
            constraint=models.UniqueConstraint(
                condition=models.Q(
                    status__in=["detected", "grace_period", "pending_review", "charge_failed"]
                ),
                fields=("booking",),
                name="overstay_one_open_per_booking",
            ),
        ),
        migrations.AddIndex(
            model_name="overstayhistoryentry",
            index=models.Index(fields=["record", "created_at"], name="overstay_hist_record_idx"),
        ),
    ]
