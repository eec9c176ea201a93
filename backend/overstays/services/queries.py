"""Read-side helpers for the manager dashboard and renter account pages."""

from __future__ import annotations

from django.db.models import Count, F, Q, QuerySet, Sum

from overstays.models import OverstayRecord

Status = OverstayRecord.Status

RECORD_RELATED = (
    "booking",
    "booking__renter",
    "booking__listing",
    "booking__listing__location",
    "penalty_approved_by",
)

REVIEW_STATUSES = (Status.PENDING_REVIEW, Status.CHARGE_FAILED)


def all_records() -> QuerySet:
    return OverstayRecord.objects.select_related(*RECORD_RELATED)


def managed_records(user, *, include_all: bool = False) -> QuerySet:
    """
    Records a user may act on: everything for staff, their own locations for managers.

    Without ``include_all`` only records still needing attention are returned.
    """
    queryset = all_records()
    if not getattr(user, "is_staff", False):
        queryset = queryset.filter(booking__listing__location__manager=user)
    if not include_all:
        queryset = queryset.filter(
            status__in=[
                Status.GRACE_PERIOD,
                Status.PENDING_REVIEW,
                Status.CHARGE_FAILED,
                Status.ESCALATED,
            ]
        )
    return queryset.order_by("-detected_at", "-id")


def pending_reviews(user=None) -> QuerySet:
    queryset = all_records() if user is None else managed_records(user, include_all=True)
    return queryset.filter(status__in=REVIEW_STATUSES).order_by("detected_at", "id")


def escalated_records() -> QuerySet:
    return all_records().filter(status=Status.ESCALATED).order_by("charge_failed_at", "id")


def overstay_stats(queryset: QuerySet | None = None) -> dict:
    """Counts per status plus collected and waived totals in cents."""
    queryset = all_records() if queryset is None else queryset
    counts = {
        row["status"]: row["total"]
        for row in queryset.order_by().values("status").annotate(total=Count("id"))
    }
    totals = queryset.order_by().aggregate(
        collected=Sum(
            F("charged_amount_cents") - F("refunded_amount_cents"),
            filter=Q(charge_succeeded_at__isnull=False),
        ),
        waived=Sum("calculated_penalty_cents", filter=Q(status=Status.PENALTY_WAIVED)),
    )
    return {
        "total": sum(counts.values()),
        "by_status": {status: counts.get(status, 0) for status in Status.values},
        "pending_review": counts.get(Status.PENDING_REVIEW, 0),
        "escalated": counts.get(Status.ESCALATED, 0),
        "total_collected_cents": totals["collected"] or 0,
        "total_waived_cents": totals["waived"] or 0,
    }


def renter_penalties(renter) -> QuerySet:
    return all_records().filter(booking__renter=renter).order_by("-detected_at", "-id")


def renter_unpaid_penalties(renter) -> QuerySet:
    return renter_penalties(renter).filter(status__in=list(OverstayRecord.UNPAID_STATUSES))


def has_unpaid_penalties(renter) -> bool:
    """True blocks the renter from starting new bookings."""
    return renter_unpaid_penalties(renter).exists()
