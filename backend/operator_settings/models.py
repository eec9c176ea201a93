from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


class DbSettingQuerySet(models.QuerySet):
    def effective(self, now=None):
        """Rows already in force, newest version of each key first."""
        now = now or timezone.now()
        return self.filter(Q(effective_at__isnull=True) | Q(effective_at__lte=now)).order_by(
            "key", F("effective_at").desc(nulls_last=True), "-updated_at", "-id"
        )

    def current(self, key: str, now=None):
        return self.filter(key=key).effective(now).first()


class DbSetting(models.Model):
    """
    Versioned runtime setting. Saving a changed row inserts a new version,
    so the full history of a key stays queryable.

    The overstay policy platform tier lives here under the
    ``OVERSTAY_*`` keys.
    """

    class ValueType(models.TextChoices):
        BOOL = "bool", "bool"
        INT = "int", "int"
        DECIMAL = "decimal", "decimal"
        STR = "str", "str"
        JSON = "json", "json"

    VERSIONED_FIELDS = ("key", "value_json", "value_type", "description", "effective_at")

    key = models.CharField(max_length=128, db_index=True)
    value_json = models.JSONField()
    value_type = models.CharField(max_length=16, choices=ValueType.choices)
    description = models.TextField(blank=True, default="")
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="operator_db_settings_updated",
    )
    updated_at = models.DateTimeField(auto_now=True)
    effective_at = models.DateTimeField(null=True, blank=True, db_index=True)

    objects = DbSettingQuerySet.as_manager()

    class Meta:
        indexes = [
            models.Index(
                fields=["key", "effective_at", "updated_at"], name="opset_db_key_eff_upd_idx"
            ),
        ]
        ordering = ["-updated_at"]

    def __str__(self) -> str:
        return f"{self.key} ({self.value_type})"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            using = kwargs.get("using") or self._state.db
            existing = type(self).objects.using(using).filter(pk=self.pk).first()
            if existing is not None:
                if all(getattr(existing, f) == getattr(self, f) for f in self.VERSIONED_FIELDS):
                    return
                # new version row; the old one stays as history
                self.pk = None
                self._state.adding = True
                kwargs.pop("force_update", None)
                kwargs.pop("update_fields", None)
                kwargs["force_insert"] = True
        super().save(*args, **kwargs)
