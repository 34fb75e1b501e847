"""Redis client lifecycle and the Redis-backed idempotency store"""
from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger
from domain.common.clock import Clock, utcnow
from domain.common.exceptions import IdempotencyStoreUnavailableException
from domain.idempotency.entity import ClaimResult, IdempotencyRecord, IdempotencyStatus
from domain.idempotency.store import IdempotencyStore


logger = get_logger(__name__)


def _json_dumps(value: Any) -> str:
    """Serialize any value to a JSON string"""
    return json.dumps(value, default=str)


def _json_loads(value: Optional[str]) -> Any:
    if value is None:
        return None
    return json.loads(value)


class RedisIdempotencyStore(IdempotencyStore):
    """
    SET NX EX gives the same exactly-one-winner guarantee as the unique index
    of the database store; Redis expiry replaces the cleanup job.
    """

    def __init__(self, client: aioredis.Redis, namespace: str = "", *, clock: Clock = utcnow) -> None:
        self._client = client
        self._namespace = namespace.strip(":")
        self._clock = clock

    def _format_key(self, key: str) -> str:
        if not self._namespace:
            return f"idempotency:{key}"
        return f"{self._namespace}:idempotency:{key}"

    def _to_record(self, key: str, raw: Optional[str], ttl_seconds: int) -> Optional[IdempotencyRecord]:
        data = _json_loads(raw)
        if data is None:
            return None
        return IdempotencyRecord(
            key=key,
            status=IdempotencyStatus(data["status"]),
            expires_at=self._clock() + timedelta(seconds=max(ttl_seconds, 0)),
            result=data.get("result"),
            error=data.get("error"),
        )

    async def claim(self, key: str, ttl_minutes: int) -> ClaimResult:
        formatted_key = self._format_key(key)
        ttl = ttl_minutes * 60
        payload = _json_dumps({"status": IdempotencyStatus.PENDING.value, "result": None, "error": None})
        try:
            created = await self._client.set(formatted_key, payload, ex=ttl, nx=True)
            if created:
                now = self._clock()
                return ClaimResult(
                    is_new=True,
                    record=IdempotencyRecord(
                        key=key,
                        status=IdempotencyStatus.PENDING,
                        expires_at=now + timedelta(seconds=ttl),
                        created_at=now,
                    ),
                )
            raw = await self._client.get(formatted_key)
            remaining = await self._client.ttl(formatted_key)
        except RedisError as exc:
            logger.error("idempotency_claim_failed", key=key, error=str(exc))
            raise IdempotencyStoreUnavailableException(str(exc)) from exc
        return ClaimResult(is_new=False, record=self._to_record(key, raw, remaining))

    async def save(
        self,
        key: str,
        result: dict[str, Any],
        status: IdempotencyStatus,
        error: Optional[str] = None,
    ) -> None:
        payload = _json_dumps({"status": status.value, "result": result, "error": error})
        try:
            updated = await self._client.set(self._format_key(key), payload, xx=True, keepttl=True)
        except RedisError as exc:
            logger.error("idempotency_save_failed", key=key, error=str(exc))
            raise IdempotencyStoreUnavailableException(str(exc)) from exc
        if not updated:
            logger.warning("idempotency_save_missing_key", key=key, status=status.value)

    async def release(self, key: str) -> None:
        try:
            await self._client.delete(self._format_key(key))
        except RedisError as exc:
            logger.error("idempotency_release_failed", key=key, error=str(exc))
            raise IdempotencyStoreUnavailableException(str(exc)) from exc

    async def cleanup_expired(self) -> int:
        # keys expire on their own
        return 0


_redis_client: Optional[aioredis.Redis] = None
_lock = asyncio.Lock()


async def init_redis_client() -> aioredis.Redis:
    """Create the shared Redis client"""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    async with _lock:
        if _redis_client is not None:
            return _redis_client

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL is not configured")

        _redis_client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
        )
        logger.info("redis_client_initialized", max_connections=settings.redis.max_connections)
        return _redis_client


async def get_redis_client() -> aioredis.Redis:
    if _redis_client is None:
        return await init_redis_client()
    return _redis_client


async def shutdown_redis_client() -> None:
    """Close the Redis connection pool"""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
