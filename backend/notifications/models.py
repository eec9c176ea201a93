from django.conf import settings
from django.db import models


class NotificationLog(models.Model):
    """One row per delivery attempt, sent or failed."""

    class Channel(models.TextChoices):
        EMAIL = "email", "Email"
        IN_APP = "in_app", "In-app"

    class Status(models.TextChoices):
        SENT = "sent", "Sent"
        FAILED = "failed", "Failed"

    channel = models.CharField(max_length=8, choices=Channel.choices)
    type = models.CharField(max_length=128)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notification_logs",
    )
    to_address = models.CharField(max_length=254, blank=True, default="")
    booking_id = models.IntegerField(null=True, blank=True)
    overstay_record_id = models.IntegerField(null=True, blank=True)
    status = models.CharField(max_length=8, choices=Status.choices)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["overstay_record_id", "created_at"], name="notiflog_overstay_idx"),
            models.Index(fields=["type", "status"], name="notiflog_type_status_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.channel}:{self.type} ({self.status})"


class Notification(models.Model):
    """In-app notification shown in the renter or manager dashboard."""

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    type = models.CharField(max_length=64)
    title = models.CharField(max_length=200)
    message = models.TextField(blank=True)
    data = models.JSONField(default=dict, blank=True)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["user", "read_at"], name="notification_user_read_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.type} -> {self.user_id}"
