from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils.text import slugify


class OverstayPolicyFields(models.Model):
    """Optional overstay overrides; NULL means inherit from the next tier up."""

    overstay_grace_period_days = models.PositiveIntegerField(null=True, blank=True)
    overstay_penalty_rate = models.DecimalField(
        max_digits=5,
        decimal_places=4,
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(1)],
        help_text="Daily surcharge on top of the rental rate, e.g. 0.10 == 10%.",
    )
    overstay_max_penalty_days = models.PositiveIntegerField(null=True, blank=True)
    overstay_policy_text = models.TextField(blank=True, default="")

    class Meta:
        abstract = True


class Location(OverstayPolicyFields):
    """A physical storage site run by a single manager."""

    name = models.CharField(max_length=140)
    manager = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="managed_locations",
    )
    city = models.CharField(max_length=60, default="Edmonton")
    tax_rate_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Listing(OverstayPolicyFields):
    """A rentable storage unit at a location."""

    location = models.ForeignKey(
        Location,
        on_delete=models.CASCADE,
        related_name="listings",
    )
    title = models.CharField(max_length=140)
    description = models.TextField(blank=True)
    daily_rate_cents = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    slug = models.SlugField(max_length=180, unique=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def clean(self):
        if not self.title or len(self.title.strip()) < 3:
            raise ValidationError("Title too short")
        if self.daily_rate_cents and self.daily_rate_cents > 1_000_000:
            raise ValidationError("Unreasonable price")

    def save(self, *args, **kwargs):
        if not self.slug:
            base = slugify(self.title)[:120] or "listing"
            count = type(self).objects.count() + 1
            self.slug = f"{base}-{self.location_id or 'l'}-{count}"
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.title} ({self.slug})"
