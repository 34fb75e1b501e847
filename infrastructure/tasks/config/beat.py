"""Celery beat schedule configuration.

Entries follow the layout of the Celery docs so new periodic jobs can be
added by copying an existing block.
"""
from __future__ import annotations

from core.settings import payment_settings

CELERY_BEAT_SCHEDULE = {
    "idempotency-cleanup-expired": {
        "task": "idempotency.cleanup_expired",
        "schedule": payment_settings.idempotency.cleanup_interval_seconds,
        "options": {"queue": "maintenance"},
    },
}
