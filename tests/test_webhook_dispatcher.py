from datetime import timedelta

import pytest

from application.dtos.webhooks import WebhookProcessingResult
from application.services.webhook_dispatcher import WebhookDispatcher
from domain.common.clock import utcnow
from domain.common.exceptions import (
    IdempotencyStoreUnavailableException,
    InvalidWebhookPayloadException,
    WebhookSignatureInvalidException,
)
from domain.idempotency.entity import IdempotencyStatus, build_webhook_key
from domain.idempotency.store import IdempotencyStore
from domain.order.entity import OrderPaymentStatus, OrderStatus
from domain.webhook.entity import DeliveryStatus, WebhookDelivery
from infrastructure.repositories.idempotency_store import SQLAlchemyIdempotencyStore
from shared.codes import BusinessCode

from factories import encode, payment_entity, seed_order, sign, webhook_body


class SpyStore(IdempotencyStore):
    """Delegates to a real store and records which keys were claimed."""

    def __init__(self, inner: IdempotencyStore):
        self.inner = inner
        self.claimed: list[str] = []
        self.released: list[str] = []

    async def claim(self, key, ttl_minutes):
        self.claimed.append(key)
        return await self.inner.claim(key, ttl_minutes)

    async def save(self, key, result, status, error=None):
        await self.inner.save(key, result, status, error)

    async def release(self, key):
        self.released.append(key)
        await self.inner.release(key)

    async def cleanup_expired(self):
        return await self.inner.cleanup_expired()


class UnavailableStore(SpyStore):
    async def claim(self, key, ttl_minutes):
        raise IdempotencyStoreUnavailableException("connection refused")


@pytest.fixture
def store(session_factory):
    return SpyStore(SQLAlchemyIdempotencyStore(session_factory))


@pytest.fixture
def dispatcher(gateway, store, reconciliation, uow_factory):
    return WebhookDispatcher(gateway, store, reconciliation, uow_factory)


def _signed(payload: dict) -> tuple[bytes, str]:
    body = encode(payload)
    return body, sign(body)


async def _order(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.order_repository.get(order_id)


@pytest.mark.asyncio
async def test_captured_webhook_is_processed_and_logged(dispatcher, uow_factory):
    order, _ = await seed_order(uow_factory)
    body, signature = _signed(webhook_body("payment.captured", payment_entity()))

    result = await dispatcher.receive(body, signature, delivery_id="evt_001")

    assert result.success and result.processed
    assert result.message == "Payment captured successfully"
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.PROCESSING
    assert stored.payment_status == OrderPaymentStatus.PAID

    [delivery] = await dispatcher.list_deliveries()
    assert delivery.delivery_id == "evt_001"
    assert delivery.event_type == "payment.captured"
    assert delivery.status == "success"
    assert delivery.gateway == "razorpay"


@pytest.mark.asyncio
async def test_redelivery_is_acknowledged_without_reprocessing(dispatcher, store, uow_factory):
    await seed_order(uow_factory, quantity=2, stock=10)
    body, signature = _signed(webhook_body("payment.captured", payment_entity()))

    first = await dispatcher.receive(body, signature, delivery_id="evt_002")
    second = await dispatcher.receive(body, signature, delivery_id="evt_002")

    assert first.processed
    assert second.success
    assert not second.processed
    assert second.message == "Webhook already processed"
    async with uow_factory(readonly=True) as uow:
        level = await uow.inventory_ledger.get_level("var_tshirt_m", "default")
    assert (level.reserved, level.committed) == (0, 2)

    key = build_webhook_key("evt_002", "payment.captured", "pay_RZP001")
    record = await store.inner.claim(key, 120)
    assert record.status == IdempotencyStatus.SUCCESS
    assert record.prior_result["message"] == "Payment captured successfully"

    statuses = sorted(d.status for d in await dispatcher.list_deliveries())
    assert statuses == ["duplicate", "success"]


@pytest.mark.asyncio
async def test_delivery_id_defaults_to_body_digest(dispatcher, uow_factory):
    await seed_order(uow_factory)
    body, signature = _signed(webhook_body("payment.captured", payment_entity()))

    await dispatcher.receive(body, signature)
    again = await dispatcher.receive(body, signature)

    assert again.message == "Webhook already processed"


@pytest.mark.asyncio
async def test_distinct_deliveries_of_same_capture_commit_once(dispatcher, uow_factory):
    await seed_order(uow_factory, quantity=2, stock=10)
    body, signature = _signed(webhook_body("payment.captured", payment_entity()))

    await dispatcher.receive(body, signature, delivery_id="evt_a")
    retry = await dispatcher.receive(body, signature, delivery_id="evt_b")

    assert retry.success and not retry.processed
    assert retry.message == "Payment already captured"
    async with uow_factory(readonly=True) as uow:
        level = await uow.inventory_ledger.get_level("var_tshirt_m", "default")
    assert level.committed == 2


@pytest.mark.asyncio
async def test_bad_signature_is_rejected_before_claiming(dispatcher, store, uow_factory):
    order, _ = await seed_order(uow_factory)
    body = encode(webhook_body("payment.captured", payment_entity()))

    with pytest.raises(WebhookSignatureInvalidException):
        await dispatcher.receive(body, sign(body, "wrong-secret"), delivery_id="evt_003")
    with pytest.raises(WebhookSignatureInvalidException):
        await dispatcher.receive(body, None, delivery_id="evt_003")

    assert store.claimed == []
    assert (await _order(uow_factory, order.id)).payment_status == OrderPaymentStatus.PENDING
    assert await dispatcher.list_deliveries() == []


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged_but_not_processed(dispatcher, store):
    body, signature = _signed(webhook_body("refund.created", {"id": "rfnd_1", "order_id": "order_X"}))

    result = await dispatcher.receive(body, signature, delivery_id="evt_004")

    assert result.success
    assert not result.processed
    assert result.message == "Event refund.created acknowledged but not processed"
    assert store.claimed == []
    [delivery] = await dispatcher.list_deliveries()
    assert delivery.status == "ignored"


@pytest.mark.asyncio
async def test_supported_events_and_registration(dispatcher):
    assert dispatcher.supported_events == [
        "order.paid", "payment.authorized", "payment.captured", "payment.failed",
    ]

    async def on_refund(payload, context):
        return WebhookProcessingResult(success=True, message="refund noted", processed=True)

    dispatcher.register("refund.processed", on_refund)
    body, signature = _signed(webhook_body("refund.processed", {"id": "rfnd_1"}))
    result = await dispatcher.receive(body, signature, delivery_id="evt_005")
    assert result.message == "refund noted"


@pytest.mark.asyncio
async def test_malformed_bodies_are_invalid_payloads(dispatcher):
    for body in (b"not json", b"[1, 2]", encode({"entity": "event", "payload": {}})):
        with pytest.raises(InvalidWebhookPayloadException):
            await dispatcher.receive(body, sign(body), delivery_id="evt_006")


@pytest.mark.asyncio
async def test_missing_payment_entity_is_reported(dispatcher, store):
    body, signature = _signed(webhook_body("payment.captured"))

    result = await dispatcher.receive(body, signature, delivery_id="evt_007")

    assert not result.success
    assert result.code == BusinessCode.INVALID_WEBHOOK_PAYLOAD
    record = await store.inner.claim(store.claimed[0], 120)
    assert record.status == IdempotencyStatus.ERROR


@pytest.mark.asyncio
async def test_business_rejection_is_stored_as_error(dispatcher, store):
    body, signature = _signed(webhook_body("payment.captured", payment_entity(order_id="order_unknown")))

    result = await dispatcher.receive(body, signature, delivery_id="evt_008")

    assert not result.success
    assert result.code == BusinessCode.PAYMENT_NOT_FOUND
    record = await store.inner.claim(store.claimed[0], 120)
    assert record.status == IdempotencyStatus.ERROR
    assert record.record.error == result.message


@pytest.mark.asyncio
async def test_store_outage_fails_closed(gateway, reconciliation, uow_factory, session_factory):
    order, _ = await seed_order(uow_factory)
    dispatcher = WebhookDispatcher(
        gateway, UnavailableStore(SQLAlchemyIdempotencyStore(session_factory)), reconciliation, uow_factory
    )
    body, signature = _signed(webhook_body("payment.captured", payment_entity()))

    with pytest.raises(IdempotencyStoreUnavailableException):
        await dispatcher.receive(body, signature, delivery_id="evt_009")

    assert (await _order(uow_factory, order.id)).payment_status == OrderPaymentStatus.PENDING
    [delivery] = await dispatcher.list_deliveries()
    assert delivery.status == "failed"


@pytest.mark.asyncio
async def test_handler_crash_releases_claim_for_redelivery(dispatcher, store):
    async def crash(payload, context):
        raise RuntimeError("database connection reset")

    dispatcher.register("payment.captured", crash)
    body, signature = _signed(webhook_body("payment.captured", payment_entity()))

    with pytest.raises(RuntimeError):
        await dispatcher.receive(body, signature, delivery_id="evt_010")

    key = build_webhook_key("evt_010", "payment.captured", "pay_RZP001")
    assert store.released == [key]
    assert (await store.inner.claim(key, 120)).is_new


@pytest.mark.asyncio
async def test_failed_and_paid_events_route_to_their_handlers(dispatcher, uow_factory):
    failed_order, _ = await seed_order(uow_factory, gateway_order_id="order_F1", quantity=1)
    paid_order, _ = await seed_order(uow_factory, gateway_order_id="order_P1", quantity=1)

    body, signature = _signed(webhook_body(
        "payment.failed",
        payment_entity("pay_F1", "order_F1", status="failed", error_code="GATEWAY_ERROR"),
    ))
    failed = await dispatcher.receive(body, signature, delivery_id="evt_011")

    body, signature = _signed(webhook_body("order.paid", order={"id": "order_P1", "status": "paid"}))
    paid = await dispatcher.receive(body, signature, delivery_id="evt_012")

    assert failed.message == "Payment failure processed successfully"
    assert paid.message == "Order marked as paid successfully"
    assert (await _order(uow_factory, failed_order.id)).status == OrderStatus.PAYMENT_FAILED
    assert (await _order(uow_factory, paid_order.id)).payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_delivery_stats_cover_only_the_window(uow_factory):
    now = utcnow()
    rows = [
        ("evt_s1", DeliveryStatus.SUCCESS, 100, now),
        ("evt_s2", DeliveryStatus.SUCCESS, 300, now),
        ("evt_f1", DeliveryStatus.FAILED, 200, now),
        ("evt_d1", DeliveryStatus.DUPLICATE, 0, now),
        ("evt_old", DeliveryStatus.SUCCESS, 1000, now - timedelta(days=10)),
    ]
    async with uow_factory() as uow:
        for delivery_id, status, elapsed, created_at in rows:
            await uow.webhook_delivery_repository.add(WebhookDelivery(
                delivery_id=delivery_id,
                event_type="payment.captured",
                status=status,
                processing_time_ms=elapsed,
                created_at=created_at,
            ))

    async with uow_factory(readonly=True) as uow:
        stats = await uow.webhook_delivery_repository.stats(now - timedelta(days=7))
        idle = await uow.webhook_delivery_repository.stats(now + timedelta(days=1))

    assert (stats.total, stats.success, stats.failed, stats.duplicate, stats.ignored) == (4, 2, 1, 1, 0)
    assert stats.average_processing_time_ms == 150
    assert stats.success_rate == 50
    assert (idle.total, idle.average_processing_time_ms, idle.success_rate) == (0, 0, 100)


@pytest.mark.asyncio
async def test_dispatcher_reports_delivery_stats(dispatcher, uow_factory):
    await seed_order(uow_factory)
    body, signature = _signed(webhook_body("payment.captured", payment_entity()))
    await dispatcher.receive(body, signature, delivery_id="evt_stats")
    await dispatcher.receive(body, signature, delivery_id="evt_stats")

    stats = await dispatcher.delivery_stats(days=7)

    assert stats.days == 7
    assert (stats.total, stats.success, stats.duplicate) == (2, 1, 1)
    assert stats.success_rate == 50
