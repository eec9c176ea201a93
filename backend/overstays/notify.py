"""Queue overstay notifications once the surrounding transaction commits."""

from __future__ import annotations

import logging
from functools import partial

from django.db import transaction

logger = logging.getLogger(__name__)


def _safe_notify(task, *args):
    """Queue a Celery task without failing the caller if the broker is unavailable."""
    try:
        task.delay(*args)
    except Exception:
        logger.info("notifications task %s could not be queued", task.__name__, exc_info=True)


def notify_after_commit(task, *args) -> None:
    transaction.on_commit(partial(_safe_notify, task, *args))
