"""Celery application for background maintenance of the reconciliation core"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


TASK_PACKAGES = ("infrastructure.tasks.tasks",)

# maintenance jobs never share a queue with anything latency sensitive
MAINTENANCE_QUEUE = "maintenance"


def _broker_url() -> str | None:
    return settings.redis.url or os.getenv("CELERY_BROKER_URL")


celery_app = Celery("payment_reconciliation")

celery_app.conf.update(
    broker_url=_broker_url(),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # cleanup is idempotent, so a lost worker may safely redeliver
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_queues=(
        Queue("default"),
        Queue(MAINTENANCE_QUEUE),
    ),
    task_routes={
        "idempotency.*": {"queue": MAINTENANCE_QUEUE},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = TASK_PACKAGES

if (settings.ENVIRONMENT or "production").lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=TASK_PACKAGES)


logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        queues=[q.name for q in sender.conf.task_queues],
        eager=bool(sender.conf.task_always_eager),
    )
