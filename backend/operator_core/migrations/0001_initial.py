import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="OperatorAuditEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                ("action", models.CharField(max_length=128)),
                (
                    "entity_type",
                    models.CharField(
                        choices=[
                            ("booking", "Booking"),
                            ("overstay_record", "Overstay record"),
                            ("db_setting", "DB setting"),
                        ],
                        max_length=64,
                    ),
                ),
                ("entity_id", models.CharField(max_length=64)),
                ("reason", models.TextField()),
                ("before_json", models.JSONField(blank=True, null=True)),
                ("after_json", models.JSONField(blank=True, null=True)),
                ("meta_json", models.JSONField(blank=True, null=True)),
                ("ip", models.CharField(blank=True, max_length=45)),
                ("user_agent", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "actor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="operator_audit_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddIndex(
            model_name="operatorauditevent",
            index=models.Index(
                fields=["entity_type", "entity_id", "created_at"], name="opaudit_entity_idx"
            ),
        ),
        migrations.AddIndex(
            model_name="operatorauditevent",
            index=models.Index(fields=["actor", "created_at"], name="opaudit_actor_idx"),
        ),
    ]
