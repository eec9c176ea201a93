"""Helpers for appending to the overstay audit ledger."""

from __future__ import annotations

import logging
from typing import Any, Optional

from django.db import transaction
from django.utils import timezone

from overstays.models import OverstayHistoryEntry, OverstayRecord

logger = logging.getLogger(__name__)

EventType = OverstayHistoryEntry.EventType
EventSource = OverstayHistoryEntry.EventSource


def record_history(
    record: OverstayRecord,
    *,
    previous_status: Optional[str],
    event_type: str,
    event_source: str,
    description: str = "",
    metadata: Optional[dict[str, Any]] = None,
    created_by=None,
    new_status: Optional[str] = None,
) -> OverstayHistoryEntry:
    return OverstayHistoryEntry.objects.create(
        record=record,
        previous_status=previous_status,
        new_status=new_status or record.status,
        event_type=event_type,
        event_source=event_source,
        description=description,
        metadata=metadata or {},
        created_by=created_by,
    )


def history_for(record_or_id) -> list[OverstayHistoryEntry]:
    """Newest first."""
    record_id = getattr(record_or_id, "pk", record_or_id)
    return list(
        OverstayHistoryEntry.objects.filter(record_id=record_id)
        .select_related("created_by")
        .order_by("-created_at", "-id")
    )


_NOTIFICATION_TIMESTAMPS = {
    "renter_warning": "renter_warning_sent_at",
    "manager_alert": "manager_notified_at",
}


def record_notification_sent(
    record_id: int,
    *,
    kind: str,
    recipient_id: Optional[int] = None,
    channel: str = "email",
    extra: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Note a delivered notification on the record's history.

    Called from the notification tasks once the email went out. Returns False
    when the record no longer exists.
    """
    with transaction.atomic():
        record = OverstayRecord.objects.select_for_update().filter(pk=record_id).first()
        if record is None:
            logger.info("overstay notification for missing record", extra={"record_id": record_id})
            return False

        timestamp_field = _NOTIFICATION_TIMESTAMPS.get(kind)
        if timestamp_field:
            setattr(record, timestamp_field, timezone.now())
            record.save(update_fields=[timestamp_field, "updated_at"])

        metadata = {"kind": kind, "channel": channel}
        if recipient_id is not None:
            metadata["recipient_id"] = recipient_id
        if extra:
            metadata.update(extra)
        record_history(
            record,
            previous_status=record.status,
            event_type=EventType.NOTIFICATION_SENT,
            event_source=EventSource.SYSTEM,
            description=f"Notification sent: {kind.replace('_', ' ')}",
            metadata=metadata,
        )
    return True
