from __future__ import annotations

import logging

from celery import shared_task

from payments.gateway import get_payment_gateway

logger = logging.getLogger(__name__)


@shared_task(name="overstays.detect_overstays")
def detect_overstays_task() -> dict:
    """Nightly scan; scheduled through CELERY_BEAT_SCHEDULE."""
    from overstays.services.detection import detect_overstays

    results = detect_overstays()
    summary = {
        "created": sum(1 for result in results if result.created),
        "updated": sum(1 for result in results if not result.created),
    }
    logger.info("overstays: nightly scan complete", extra=summary)
    return summary


@shared_task(name="overstays.charge_approved_penalty")
def charge_approved_penalty_task(record_id: int) -> dict:
    """Charge a penalty outside the request cycle, e.g. when re-driving a stuck record."""
    from overstays.services.charging import charge_penalty

    result = charge_penalty(record_id, gateway=get_payment_gateway())
    if not result.success:
        logger.warning(
            "overstays: queued charge did not succeed",
            extra={"record_id": record_id, "error": result.error},
        )
    return result.as_payload()


@shared_task(name="overstays.recover_stuck_charges")
def recover_stuck_charges_task(stale_minutes: int | None = None) -> int:
    """Re-drive records a crashed worker left in ``charge_pending``."""
    from datetime import timedelta

    from django.utils import timezone

    from overstays.models import OverstayRecord
    from overstays.services.charging import STALE_CHARGE_MINUTES

    cutoff = timezone.now() - timedelta(minutes=stale_minutes or STALE_CHARGE_MINUTES)
    stuck_ids = list(
        OverstayRecord.objects.filter(
            status=OverstayRecord.Status.CHARGE_PENDING,
            charge_attempted_at__lt=cutoff,
        ).values_list("id", flat=True)
    )
    for record_id in stuck_ids:
        try:
            charge_approved_penalty_task.delay(record_id)
        except Exception:
            logger.info("overstays: could not queue stuck charge %s", record_id, exc_info=True)
    return len(stuck_ids)
