from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Primary user object: renters, location managers, and operations staff."""

    phone = models.CharField(
        max_length=32,
        unique=True,
        null=True,
        blank=True,
        help_text="Optional E.164 formatted phone number.",
    )
    email_verified = models.BooleanField(default=False)
    can_rent = models.BooleanField(default=True)
    can_list = models.BooleanField(default=True)
    stripe_customer_id = models.CharField(
        max_length=120,
        blank=True,
        default="",
        help_text="Stripe Customer ID for renter payments.",
    )

    def is_owner(self) -> bool:
        return bool(self.can_list)

    def is_renter(self) -> bool:
        return bool(self.can_rent)

    def manages_location(self, location) -> bool:
        """Return True when this user runs the given storage location."""
        if location is None:
            return False
        return location.manager_id == self.pk
