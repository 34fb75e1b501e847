from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from api.dependencies import get_gateway, get_session_factory
from main import app
from shared.codes import BusinessCode

from factories import FetchingGateway, encode, payment_entity, seed_order, sign, webhook_body


ADMIN = {"X-Actor-Id": "ops@example.com"}


@pytest_asyncio.fixture
async def client(session_factory, gateway):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _post_webhook(client, payload, *, delivery_id="evt_api_1", signature=None):
    body = encode(payload)
    headers = {
        "Content-Type": "application/json",
        "X-Razorpay-Signature": signature if signature is not None else sign(body),
        "X-Razorpay-Event-Id": delivery_id,
    }
    return await client.post("/api/v1/webhooks/payments", content=body, headers=headers)


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert resp.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_signed_webhook_returns_plain_result(client, uow_factory):
    await seed_order(uow_factory)

    resp = await _post_webhook(client, webhook_body("payment.captured", payment_entity()))

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "message": "Payment captured successfully",
        "processed": True,
    }


@pytest.mark.asyncio
async def test_redelivered_webhook_is_acknowledged(client, uow_factory):
    await seed_order(uow_factory)
    payload = webhook_body("payment.captured", payment_entity())

    await _post_webhook(client, payload, delivery_id="evt_api_2")
    resp = await _post_webhook(client, payload, delivery_id="evt_api_2")

    assert resp.status_code == 200
    assert resp.json()["message"] == "Webhook already processed"
    assert resp.json()["processed"] is False

    deliveries = await client.get("/api/v1/webhooks/deliveries", params={"status": "duplicate"})
    assert [d["delivery_id"] for d in deliveries.json()["data"]] == ["evt_api_2"]


@pytest.mark.asyncio
async def test_bad_signature_is_unauthorized(client):
    resp = await _post_webhook(
        client, webhook_body("payment.captured", payment_entity()), signature="deadbeef"
    )

    assert resp.status_code == 401
    assert resp.json()["code"] == BusinessCode.SIGNATURE_INVALID


@pytest.mark.asyncio
async def test_unparseable_body_is_bad_request(client):
    body = b"{not json"
    resp = await client.post(
        "/api/v1/webhooks/payments",
        content=body,
        headers={"X-Razorpay-Signature": sign(body)},
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == BusinessCode.INVALID_WEBHOOK_PAYLOAD


@pytest.mark.asyncio
async def test_admin_routes_require_actor(client, uow_factory):
    order, _ = await seed_order(uow_factory)

    resp = await client.post(f"/api/v1/admin/orders/{order.id}/cancel", json={})

    assert resp.status_code == 401
    assert resp.json()["code"] == BusinessCode.UNAUTHORIZED


@pytest.mark.asyncio
async def test_admin_cancel_then_cancel_again(client, uow_factory):
    order, _ = await seed_order(uow_factory, quantity=3, stock=10)

    first = await client.post(
        f"/api/v1/admin/orders/{order.id}/cancel", json={"reason": "customer request"}, headers=ADMIN
    )
    assert first.status_code == 200
    data = first.json()["data"]
    assert data["success"] is True
    assert data["data"]["status"] == "cancelled"
    assert data["data"]["inventory_state"] == "released"

    second = await client.post(f"/api/v1/admin/orders/{order.id}/cancel", json={}, headers=ADMIN)
    assert second.status_code == 200
    rejected = second.json()["data"]
    assert rejected["success"] is False
    assert rejected["code"] == BusinessCode.INVALID_TRANSITION

    level = await client.get("/api/v1/inventory/var_tshirt_m/default")
    assert level.json()["data"]["available"] == 10
    assert level.json()["data"]["reserved"] == 0


@pytest.mark.asyncio
async def test_admin_refund_within_and_beyond_balance(client, uow_factory):
    order, _ = await seed_order(uow_factory, total=Decimal("1000.00"))
    await _post_webhook(
        client, webhook_body("payment.captured", payment_entity(amount_paise=100000)), delivery_id="evt_api_3"
    )

    ok = await client.post(
        f"/api/v1/admin/orders/{order.id}/refunds", json={"amount": "600.00"}, headers=ADMIN
    )
    assert ok.json()["data"]["success"] is True
    assert ok.json()["message"] == "Refund processed successfully"
    assert ok.json()["data"]["data"]["payment_status"] == "partially_refunded"

    too_much = await client.post(
        f"/api/v1/admin/orders/{order.id}/refunds", json={"amount": "500.00"}, headers=ADMIN
    )
    rejected = too_much.json()["data"]
    assert rejected["success"] is False
    assert rejected["code"] == BusinessCode.REFUND_EXCEEDS_BALANCE
    assert Decimal(rejected["data"]["available"]) == Decimal("400")

    payments = await client.get(f"/api/v1/admin/orders/{order.id}/payments", headers=ADMIN)
    amounts = sorted(Decimal(p["amount"]) for p in payments.json()["data"])
    assert amounts == [Decimal("-600"), Decimal("1000")]


@pytest.mark.asyncio
async def test_admin_sync_payment_applies_gateway_status(client, uow_factory):
    order, _ = await seed_order(uow_factory, quantity=2, stock=10)
    await _post_webhook(
        client,
        webhook_body("payment.authorized", payment_entity(status="authorized")),
        delivery_id="evt_api_sync",
    )
    app.dependency_overrides[get_gateway] = lambda: FetchingGateway(
        {"pay_RZP001": payment_entity(status="captured")}
    )

    resp = await client.post(f"/api/v1/admin/orders/{order.id}/sync-payment", headers=ADMIN)

    assert resp.status_code == 200
    result = resp.json()["data"]
    assert result["success"] is True
    assert result["processed"] is True
    assert result["data"]["status"] == "processing"
    assert result["data"]["gateway_status"] == "captured"

    level = await client.get("/api/v1/inventory/var_tshirt_m/default")
    assert level.json()["data"]["reserved"] == 0
    assert level.json()["data"]["committed"] == 2


@pytest.mark.asyncio
async def test_audit_log_query_is_paginated(client, uow_factory):
    order, _ = await seed_order(uow_factory)
    await client.post(f"/api/v1/admin/orders/{order.id}/notes", json={"note": "called customer"}, headers=ADMIN)

    resp = await client.get(
        "/api/v1/audit-logs",
        params={"resource_type": "order", "resource_id": str(order.id), "size": 10},
        headers=ADMIN,
    )

    assert resp.status_code == 200
    page = resp.json()["data"]
    assert page["total"] >= 1
    assert page["page"] == 1
    assert any(item["action"] == "ORDER_NOTE_ADDED" for item in page["items"])
    assert all(item["resource_id"] == str(order.id) for item in page["items"])


@pytest.mark.asyncio
async def test_inventory_receive_and_lookup(client):
    missing = await client.get("/api/v1/inventory/var_mug/blr-wh-1")
    assert missing.status_code == 404

    resp = await client.post(
        "/api/v1/inventory/var_mug/blr-wh-1/receive", json={"quantity": 5}, headers=ADMIN
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["available"] == 5

    journal = await client.get("/api/v1/inventory/adjustments", params={"variant_id": "var_mug"})
    [entry] = journal.json()["data"]
    assert entry["movement"] == "receive"
    assert entry["created_by"] == "ops@example.com"


@pytest.mark.asyncio
async def test_fraud_analysis_endpoint(client):
    resp = await client.post(
        "/api/v1/fraud/analyze",
        json={
            "amount": "0.50",
            "currency": "inr",
            "email": "x1@mailinator.com",
            "ip_address": "10.0.0.8",
            "user_agent": "Mozilla/5.0 HeadlessChrome/120.0",
        },
        headers=ADMIN,
    )

    assert resp.status_code == 200
    result = resp.json()["data"]
    assert result["level"] in ("high", "critical")
    assert "DISPOSABLE_EMAIL" in result["flags"]
    assert "HEADLESS_BROWSER" in result["flags"]

    audit = await client.get("/api/v1/audit-logs", params={"action": "FRAUD_ANALYSIS"}, headers=ADMIN)
    [entry] = audit.json()["data"]["items"]
    assert entry["actor_id"] == "ops@example.com"
    assert entry["resource_type"] == "customer"


@pytest.mark.asyncio
async def test_delivery_stats_endpoint(client, uow_factory):
    await seed_order(uow_factory)
    await _post_webhook(client, webhook_body("payment.captured", payment_entity()), delivery_id="evt_api_stats")
    await _post_webhook(client, webhook_body("payment.captured", payment_entity()), delivery_id="evt_api_stats")

    resp = await client.get("/api/v1/webhooks/deliveries/stats", params={"days": 1})

    assert resp.status_code == 200
    stats = resp.json()["data"]
    assert stats["days"] == 1
    assert stats["total"] == 2
    assert stats["success"] == 1
    assert stats["duplicate"] == 1
    assert stats["success_rate"] == 50

    rejected = await client.get("/api/v1/webhooks/deliveries/stats", params={"days": 0})
    assert rejected.status_code == 422
