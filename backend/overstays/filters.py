import django_filters

from overstays.models import OverstayRecord


class OverstayRecordFilter(django_filters.FilterSet):
    status = django_filters.MultipleChoiceFilter(choices=OverstayRecord.Status.choices)
    location = django_filters.NumberFilter(field_name="booking__listing__location_id")
    listing = django_filters.NumberFilter(field_name="booking__listing_id")
    booking = django_filters.NumberFilter(field_name="booking_id")
    detected_after = django_filters.IsoDateTimeFilter(field_name="detected_at", lookup_expr="gte")
    detected_before = django_filters.IsoDateTimeFilter(field_name="detected_at", lookup_expr="lte")

    class Meta:
        model = OverstayRecord
        fields = ["status", "location", "listing", "booking"]
