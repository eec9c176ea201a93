from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("overstays", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="overstayrecord",
            name="pending_refund_cents",
            field=models.PositiveIntegerField(default=0),
        ),
        migrations.AddField(
            model_name="overstayrecord",
            name="pending_refund_key",
            field=models.CharField(blank=True, default="", max_length=255),
        ),
    ]
