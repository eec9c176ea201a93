from django.contrib import admin

from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "listing", "renter", "start_date", "end_date", "status", "checkout_status")
    list_filter = ("status", "checkout_status")
    search_fields = ("renter__email", "listing__title")
    raw_id_fields = ("listing", "renter")
