from django.contrib import admin

from .models import OverstayHistoryEntry, OverstayRecord


class OverstayHistoryInline(admin.TabularInline):
    model = OverstayHistoryEntry
    extra = 0
    can_delete = False
    fields = (
        "created_at",
        "previous_status",
        "new_status",
        "event_type",
        "event_source",
        "description",
        "created_by",
    )
    readonly_fields = fields
    ordering = ("-created_at",)

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(OverstayRecord)
class OverstayRecordAdmin(admin.ModelAdmin):
    """Read-only view; all changes go through the overstay services."""

    list_display = (
        "id",
        "booking",
        "status",
        "days_overdue",
        "calculated_penalty_cents",
        "final_penalty_cents",
        "detected_at",
    )
    list_filter = ("status", "resolution_type")
    search_fields = ("idempotency_key", "payment_intent_id", "booking__renter__email")
    date_hierarchy = "detected_at"
    raw_id_fields = ("booking", "penalty_approved_by")
    inlines = [OverstayHistoryInline]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
