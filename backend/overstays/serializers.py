from __future__ import annotations

from rest_framework import serializers

from overstays.models import OverstayHistoryEntry, OverstayRecord


class OverstayHistoryEntrySerializer(serializers.ModelSerializer):
    created_by_id = serializers.IntegerField(read_only=True)
    created_by_name = serializers.SerializerMethodField()

    class Meta:
        model = OverstayHistoryEntry
        fields = [
            "id",
            "previous_status",
            "new_status",
            "event_type",
            "event_source",
            "description",
            "metadata",
            "created_by_id",
            "created_by_name",
            "created_at",
        ]
        read_only_fields = fields

    def get_created_by_name(self, obj: OverstayHistoryEntry) -> str | None:
        user = obj.created_by
        if user is None:
            return None
        return (user.get_full_name() or "").strip() or user.get_username()


class OverstayRecordSerializer(serializers.ModelSerializer):
    booking_id = serializers.IntegerField(read_only=True)
    renter_id = serializers.IntegerField(source="booking.renter_id", read_only=True)
    renter_email = serializers.EmailField(source="booking.renter.email", read_only=True)
    listing_id = serializers.IntegerField(source="booking.listing_id", read_only=True)
    listing_title = serializers.CharField(source="booking.listing.title", read_only=True)
    location_id = serializers.IntegerField(source="booking.listing.location_id", read_only=True)
    location_name = serializers.CharField(source="booking.listing.location.name", read_only=True)
    penalty_amount_cents = serializers.IntegerField(read_only=True)
    refundable_cents = serializers.IntegerField(read_only=True)
    penalty_approved_by_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = OverstayRecord
        fields = [
            "id",
            "booking_id",
            "renter_id",
            "renter_email",
            "listing_id",
            "listing_title",
            "location_id",
            "location_name",
            "status",
            "end_date",
            "days_overdue",
            "grace_period_ends_at",
            "daily_rate_cents",
            "penalty_rate",
            "calculated_penalty_cents",
            "final_penalty_cents",
            "penalty_amount_cents",
            "detected_at",
            "penalty_approved_at",
            "penalty_approved_by_id",
            "penalty_waived",
            "waive_reason",
            "manager_notes",
            "charge_attempted_at",
            "charge_succeeded_at",
            "charge_failed_at",
            "charge_failure_reason",
            "charged_amount_cents",
            "payment_intent_id",
            "refunded_amount_cents",
            "refundable_cents",
            "refunded_at",
            "resolved_at",
            "resolution_type",
            "resolution_notes",
            "renter_warning_sent_at",
            "manager_notified_at",
            "updated_at",
        ]
        read_only_fields = fields


class OverstayRecordDetailSerializer(OverstayRecordSerializer):
    history = OverstayHistoryEntrySerializer(many=True, read_only=True)

    class Meta(OverstayRecordSerializer.Meta):
        fields = OverstayRecordSerializer.Meta.fields + ["history"]
        read_only_fields = fields


class RenterOverstaySerializer(serializers.ModelSerializer):
    """What a renter sees about their own penalty; no internal notes."""

    booking_id = serializers.IntegerField(read_only=True)
    listing_title = serializers.CharField(source="booking.listing.title", read_only=True)
    location_name = serializers.CharField(source="booking.listing.location.name", read_only=True)
    penalty_amount_cents = serializers.IntegerField(read_only=True)
    can_pay = serializers.SerializerMethodField()

    class Meta:
        model = OverstayRecord
        fields = [
            "id",
            "booking_id",
            "listing_title",
            "location_name",
            "status",
            "end_date",
            "days_overdue",
            "grace_period_ends_at",
            "calculated_penalty_cents",
            "final_penalty_cents",
            "penalty_amount_cents",
            "charged_amount_cents",
            "refunded_amount_cents",
            "resolution_type",
            "detected_at",
            "resolved_at",
            "can_pay",
        ]
        read_only_fields = fields

    def get_can_pay(self, obj: OverstayRecord) -> bool:
        from overstays.transitions import Action, can_transition

        return can_transition(obj.status, Action.CHECKOUT_PAID)


class DecisionSerializer(serializers.Serializer):
    final_penalty_cents = serializers.IntegerField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class WaiveSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ResolveSerializer(serializers.Serializer):
    resolution_type = serializers.ChoiceField(choices=["extended", "removed", "escalated"])
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class RefundSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=False, trim_whitespace=True)
    amount_cents = serializers.IntegerField(required=False, allow_null=True)
