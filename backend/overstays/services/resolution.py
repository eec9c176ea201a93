"""Manual closure of an overstay outside the charge path."""

from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from overstays.exceptions import (
    OverstayError,
    OverstayValidationError,
    ResourceMissingError,
    ServiceResult,
)
from overstays.history import EventSource, EventType, record_history
from overstays.models import OverstayRecord
from overstays.transitions import Action, transition

logger = logging.getLogger(__name__)

ResolutionType = OverstayRecord.ResolutionType

RESOLVE_CONFLICT = "Cannot resolve record in status: {status}"
MANUAL_RESOLUTIONS = {
    "extended": (Action.RESOLVE, ResolutionType.EXTENDED),
    "removed": (Action.RESOLVE, ResolutionType.REMOVED),
    "escalated": (Action.MANUAL_ESCALATE, ResolutionType.ESCALATED_COLLECTION),
}


def resolve_overstay(record_id: int, *, resolution_type: str, notes: str = "", resolved_by=None) -> ServiceResult:
    """
    Close a record by hand: the booking was extended, the goods were removed,
    or the debt goes to collections (which leaves it ``escalated``).
    """
    try:
        action, resolution = MANUAL_RESOLUTIONS.get(resolution_type, (None, None))
        if action is None:
            raise OverstayValidationError(f"Invalid resolution type: {resolution_type or 'missing'}")
        with transaction.atomic():
            record = OverstayRecord.objects.select_for_update().filter(pk=record_id).first()
            if record is None:
                raise ResourceMissingError("Overstay record not found")
            previous = transition(record, action, conflict_message=RESOLVE_CONFLICT)
            record.resolution_type = resolution
            record.resolution_notes = notes or ""
            if record.status == OverstayRecord.Status.RESOLVED:
                record.resolved_at = timezone.now()
            record.save()
            record_history(
                record,
                previous_status=previous,
                event_type=EventType.RESOLUTION,
                event_source=EventSource.MANAGER,
                description=f"Resolved as {resolution_type}" + (f": {notes}" if notes else ""),
                metadata={"resolution_type": resolution, "notes": notes or ""},
                created_by=resolved_by,
            )
    except OverstayError as exc:
        return ServiceResult.from_exception(exc)

    logger.info(
        "overstays: record resolved manually",
        extra={"record_id": record.pk, "resolution_type": resolution_type},
    )
    return ServiceResult.ok(record_id=record.pk, status=record.status, resolution_type=resolution)
