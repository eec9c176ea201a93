import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


def _overstay_fields():
    return [
        ("overstay_grace_period_days", models.PositiveIntegerField(blank=True, null=True)),
        (
            "overstay_penalty_rate",
            models.DecimalField(
                blank=True,
                decimal_places=4,
                help_text="Daily surcharge on top of the rental rate, e.g. 0.10 == 10%.",
                max_digits=5,
                null=True,
                validators=[
                    django.core.validators.MinValueValidator(0),
                    django.core.validators.MaxValueValidator(1),
                ],
            ),
        ),
        ("overstay_max_penalty_days", models.PositiveIntegerField(blank=True, null=True)),
        ("overstay_policy_text", models.TextField(blank=True, default="")),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Location",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                *_overstay_fields(),
                ("name", models.CharField(max_length=140)),
                ("city", models.CharField(default="Edmonton", max_length=60)),
                (
                    "tax_rate_percent",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        max_digits=5,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "manager",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="managed_locations",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Listing",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                *_overstay_fields(),
                ("title", models.CharField(max_length=140)),
                ("description", models.TextField(blank=True)),
                ("daily_rate_cents", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
                ("slug", models.SlugField(blank=True, max_length=180, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "location",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="listings",
                        to="listings.location",
                    ),
                ),
            ],
        ),
    ]
