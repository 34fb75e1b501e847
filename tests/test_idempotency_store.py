import asyncio
import fnmatch
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from domain.common.clock import utcnow
from domain.common.exceptions import IdempotencyStoreUnavailableException
from domain.idempotency.entity import IdempotencyStatus, build_webhook_key
from infrastructure.cache import RedisIdempotencyStore
from infrastructure.repositories.idempotency_store import SQLAlchemyIdempotencyStore


class MovableClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeRedis:
    """The handful of SET/GET semantics the store relies on."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def set(self, key, value, ex=None, nx=False, xx=False, keepttl=False):
        if nx and key in self.data:
            return None
        if xx and key not in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        elif not keepttl:
            self.ttls.pop(key, None)
        return True

    async def get(self, key):
        return self.data.get(key)

    async def ttl(self, key):
        return self.ttls.get(key, -2)

    async def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0

    def keys_matching(self, pattern):
        return [k for k in self.data if fnmatch.fnmatch(k, pattern)]


class BrokenRedis(FakeRedis):
    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


def test_webhook_key_is_deterministic():
    assert build_webhook_key("evt_1", "payment.captured", "pay_1") == "webhook:evt_1:payment.captured:pay_1"
    assert build_webhook_key("evt_1", "order.paid", None) == "webhook:evt_1:order.paid:unknown"


@pytest.mark.asyncio
async def test_first_claim_wins_and_duplicates_see_prior_result(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)
    key = build_webhook_key("evt_1", "payment.captured", "pay_1")

    first = await store.claim(key, 120)
    assert first.is_new
    assert first.status == IdempotencyStatus.PENDING

    second = await store.claim(key, 120)
    assert not second.is_new
    assert second.status == IdempotencyStatus.PENDING

    await store.save(key, {"success": True, "message": "Payment captured successfully"}, IdempotencyStatus.SUCCESS)
    third = await store.claim(key, 120)
    assert not third.is_new
    assert third.status == IdempotencyStatus.SUCCESS
    assert third.prior_result == {"success": True, "message": "Payment captured successfully"}


@pytest.mark.asyncio
async def test_save_keeps_expiry_and_error_message(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)
    claim = await store.claim("k1", 30)
    await store.save("k1", {"success": False}, IdempotencyStatus.ERROR, "Payment not found")

    again = await store.claim("k1", 30)
    assert again.status == IdempotencyStatus.ERROR
    assert again.record.error == "Payment not found"
    assert abs((again.record.expires_at - claim.record.expires_at).total_seconds()) < 1


@pytest.mark.asyncio
async def test_expired_claim_can_be_taken_again(session_factory):
    clock = MovableClock()
    store = SQLAlchemyIdempotencyStore(session_factory, clock=clock)

    assert (await store.claim("k-expiring", 10)).is_new
    clock.advance(minutes=11)
    retaken = await store.claim("k-expiring", 10)
    assert retaken.is_new


@pytest.mark.asyncio
async def test_release_allows_redelivery(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)
    assert (await store.claim("k-release", 120)).is_new
    await store.release("k-release")
    assert (await store.claim("k-release", 120)).is_new


@pytest.mark.asyncio
async def test_cleanup_removes_only_expired_records(session_factory):
    clock = MovableClock()
    store = SQLAlchemyIdempotencyStore(session_factory, clock=clock)
    await store.claim("short", 5)
    await store.claim("long", 500)
    clock.advance(minutes=6)

    assert await store.cleanup_expired() == 1
    assert not (await store.claim("long", 500)).is_new
    assert (await store.claim("short", 5)).is_new


@pytest.mark.asyncio
async def test_database_store_has_a_single_winner_under_concurrency(session_factory):
    store = SQLAlchemyIdempotencyStore(session_factory)
    key = "webhook:evt_race:payment.captured:pay_1"

    results = await asyncio.gather(*(store.claim(key, 120) for _ in range(10)))

    assert sum(1 for r in results if r.is_new) == 1
    assert all(r.status == IdempotencyStatus.PENDING for r in results if not r.is_new)
    assert not (await store.claim(key, 120)).is_new


@pytest.mark.asyncio
async def test_unreachable_database_fails_closed():
    def broken_factory():
        raise OperationalError("connect", {}, Exception("database is down"))

    store = SQLAlchemyIdempotencyStore(broken_factory)
    with pytest.raises(IdempotencyStoreUnavailableException):
        await store.claim("k", 10)


@pytest.mark.asyncio
async def test_redis_store_has_a_single_winner_under_concurrency():
    redis = FakeRedis()
    store = RedisIdempotencyStore(redis, "reconciliation")

    results = await asyncio.gather(*(store.claim("webhook:evt_9:payment.captured:pay_9", 60) for _ in range(10)))

    assert sum(1 for r in results if r.is_new) == 1
    assert redis.keys_matching("reconciliation:idempotency:*") == [
        "reconciliation:idempotency:webhook:evt_9:payment.captured:pay_9"
    ]
    assert redis.ttls["reconciliation:idempotency:webhook:evt_9:payment.captured:pay_9"] == 3600


@pytest.mark.asyncio
async def test_redis_store_save_release_and_missing_key():
    redis = FakeRedis()
    store = RedisIdempotencyStore(redis)

    await store.claim("k", 1)
    await store.save("k", {"success": True}, IdempotencyStatus.SUCCESS)
    duplicate = await store.claim("k", 1)
    assert duplicate.status == IdempotencyStatus.SUCCESS
    assert duplicate.prior_result == {"success": True}
    assert redis.ttls["idempotency:k"] == 60

    await store.release("k")
    assert (await store.claim("k", 1)).is_new

    # saving an unknown key is logged, never raised
    await store.save("unknown", {}, IdempotencyStatus.SUCCESS)
    assert await store.cleanup_expired() == 0


@pytest.mark.asyncio
async def test_redis_store_unavailable_raises():
    store = RedisIdempotencyStore(BrokenRedis())
    with pytest.raises(IdempotencyStoreUnavailableException):
        await store.claim("k", 1)
