from django.contrib import admin

from .models import Listing, Location


@admin.register(Location)
class LocationAdmin(admin.ModelAdmin):
    list_display = ("name", "city", "manager", "tax_rate_percent", "overstay_grace_period_days")
    search_fields = ("name", "city", "manager__email")
    raw_id_fields = ("manager",)


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ("title", "location", "daily_rate_cents", "is_active", "overstay_penalty_rate")
    list_filter = ("is_active", "location")
    search_fields = ("title",)
    prepopulated_fields = {"slug": ("title",)}
