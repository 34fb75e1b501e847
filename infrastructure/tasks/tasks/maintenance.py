"""Periodic maintenance tasks: idempotency key expiry."""
from __future__ import annotations

import asyncio

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from core.settings import payment_settings

logger = get_logger(__name__)


async def _cleanup_expired_keys() -> int:
    from infrastructure.database import AsyncSessionLocal
    from infrastructure.repositories.idempotency_store import SQLAlchemyIdempotencyStore

    store = SQLAlchemyIdempotencyStore(AsyncSessionLocal)
    return await store.cleanup_expired()


@shared_task(
    name="idempotency.cleanup_expired",
    bind=True,
    base=BaseTask,
    max_retries=3,
    default_retry_delay=30,
)
def cleanup_expired_idempotency_keys(self) -> dict:
    """Delete expired idempotency records from the database store."""
    if payment_settings.idempotency.backend != "database":
        # redis keys carry their own TTL
        return {"removed": 0, "skipped": True}
    try:
        removed = asyncio.run(_cleanup_expired_keys())
    except Exception as exc:  # pragma: no cover
        logger.error("idempotency_cleanup_failed", error=str(exc))
        raise self.retry(exc=exc)
    return {"removed": removed, "skipped": False}
