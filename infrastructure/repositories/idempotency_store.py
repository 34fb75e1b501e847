"""
Database-backed idempotency store.

Atomicity comes from the unique index on ``idempotency_keys.key``: of any
number of concurrent inserts exactly one succeeds, the others hit
IntegrityError and read the winner's row. Every call runs in its own short
transaction, independent of the business unit of work.
"""
from datetime import timedelta
from typing import Any, Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.clock import Clock, ensure_utc, utcnow
from domain.common.exceptions import IdempotencyStoreUnavailableException
from domain.idempotency.entity import ClaimResult, IdempotencyRecord, IdempotencyStatus
from domain.idempotency.store import IdempotencyStore
from infrastructure.models.idempotency import IdempotencyKeyModel


logger = get_logger(__name__)


class SQLAlchemyIdempotencyStore(IdempotencyStore):

    def __init__(self, session_factory: Callable[[], AsyncSession], *, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    @staticmethod
    def _to_record(model: IdempotencyKeyModel) -> IdempotencyRecord:
        return IdempotencyRecord(
            key=model.key,
            status=IdempotencyStatus(model.status),
            expires_at=ensure_utc(model.expires_at),
            result=model.result,
            error=model.error,
            created_at=ensure_utc(model.created_at),
        )

    async def _insert(self, key: str, ttl_minutes: int) -> IdempotencyRecord:
        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                # an expired row no longer guards its key
                await session.execute(
                    delete(IdempotencyKeyModel).where(
                        IdempotencyKeyModel.key == key,
                        IdempotencyKeyModel.expires_at <= now,
                    )
                )
                model = IdempotencyKeyModel(
                    key=key,
                    status=IdempotencyStatus.PENDING.value,
                    expires_at=now + timedelta(minutes=ttl_minutes),
                    created_at=now,
                )
                session.add(model)
                await session.flush()
                return self._to_record(model)

    async def _get(self, key: str) -> Optional[IdempotencyRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(IdempotencyKeyModel).where(IdempotencyKeyModel.key == key)
            )
            model = result.scalar_one_or_none()
            return self._to_record(model) if model else None

    async def claim(self, key: str, ttl_minutes: int) -> ClaimResult:
        try:
            for _ in range(2):
                try:
                    record = await self._insert(key, ttl_minutes)
                    return ClaimResult(is_new=True, record=record)
                except IntegrityError:
                    existing = await self._get(key)
                    if existing is not None and not existing.is_expired(self._clock()):
                        return ClaimResult(is_new=False, record=existing)
                    # winner expired or released in between: try once more
            return ClaimResult(is_new=False, record=await self._get(key))
        except (SQLAlchemyError, OSError) as exc:
            logger.error("idempotency_claim_failed", key=key, error=str(exc))
            raise IdempotencyStoreUnavailableException(str(exc)) from exc

    async def save(
        self,
        key: str,
        result: dict[str, Any],
        status: IdempotencyStatus,
        error: Optional[str] = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    updated = await session.execute(
                        update(IdempotencyKeyModel)
                        .where(IdempotencyKeyModel.key == key)
                        .values(status=status.value, result=result, error=error)
                    )
        except (SQLAlchemyError, OSError) as exc:
            logger.error("idempotency_save_failed", key=key, error=str(exc))
            raise IdempotencyStoreUnavailableException(str(exc)) from exc
        if not updated.rowcount:
            logger.warning("idempotency_save_missing_key", key=key, status=status.value)

    async def release(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(delete(IdempotencyKeyModel).where(IdempotencyKeyModel.key == key))
        except (SQLAlchemyError, OSError) as exc:
            logger.error("idempotency_release_failed", key=key, error=str(exc))
            raise IdempotencyStoreUnavailableException(str(exc)) from exc

    async def cleanup_expired(self) -> int:
        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(IdempotencyKeyModel).where(IdempotencyKeyModel.expires_at <= now)
                )
        removed = result.rowcount or 0
        logger.info("idempotency_cleanup_completed", removed=removed)
        return removed
