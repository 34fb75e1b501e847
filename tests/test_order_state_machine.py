from decimal import Decimal

import pytest

from application.dtos.orders import FulfillItem, FulfillOrderRequest, UpdateOrderStatusRequest
from application.services.audit_service import AuditLogger
from application.services.order_admin_service import OrderAdminService
from application.services.order_transitions import TransitionRunner
from domain.audit.entity import AuditAction, AuditContext, AuditLogEntry, AuditQuery
from domain.common.exceptions import OrderNotFoundException
from domain.order.entity import (
    FulfillmentStatus,
    InventoryState,
    OrderPaymentStatus,
    OrderStatus,
)
from domain.payment.entity import PaymentStatus
from shared.codes import BusinessCode

from factories import FetchingGateway, payment_entity, seed_order


SYSTEM = AuditContext()
ADMIN = AuditContext(actor_id="ops@example.com", ip_address="10.1.2.3", request_id="req-1")


@pytest.fixture
def admin(runner, audit, uow_factory):
    return OrderAdminService(runner, audit, uow_factory)


async def _level(uow_factory, variant_id="var_tshirt_m", location_id="default"):
    async with uow_factory(readonly=True) as uow:
        return await uow.inventory_ledger.get_level(variant_id, location_id)


async def _order(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.order_repository.get(order_id)


async def _payments(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.payment_repository.list_by_order(order_id)


async def _capture(reconciliation, gateway, payment_id="pay_RZP001", order_id="order_RZP001", **extra):
    details = gateway.to_gateway_payment(payment_entity(payment_id, order_id, **extra))
    return await reconciliation.capture_payment(details, SYSTEM)


@pytest.mark.asyncio
async def test_capture_commits_reserved_units(uow_factory, reconciliation, gateway):
    order, _ = await seed_order(uow_factory, quantity=2, stock=10)

    result = await _capture(reconciliation, gateway)

    assert result.success and result.processed
    assert result.message == "Payment captured successfully"
    level = await _level(uow_factory)
    assert (level.available, level.reserved, level.committed) == (8, 0, 2)
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.PROCESSING
    assert stored.payment_status == OrderPaymentStatus.PAID
    assert stored.inventory_state == InventoryState.COMMITTED
    [payment] = await _payments(uow_factory, order.id)
    assert payment.status == PaymentStatus.CAPTURED
    assert payment.gateway_payment_id == "pay_RZP001"
    assert payment.card_last4 == "4242"
    assert payment.risk_score is not None


@pytest.mark.asyncio
async def test_repeated_capture_never_commits_twice(uow_factory, reconciliation, gateway, audit):
    order, _ = await seed_order(uow_factory, quantity=2, stock=10)
    await _capture(reconciliation, gateway)

    again = await _capture(reconciliation, gateway)

    assert again.success
    assert not again.processed
    assert again.message == "Payment already captured"
    level = await _level(uow_factory)
    assert (level.available, level.reserved, level.committed) == (8, 0, 2)
    _, screened = await audit.query(AuditQuery(action=AuditAction.FRAUD_ANALYSIS.value))
    assert screened == 1


@pytest.mark.asyncio
async def test_failure_releases_every_reserved_unit(uow_factory, reconciliation, gateway):
    order, _ = await seed_order(uow_factory, quantity=3, stock=10)
    details = gateway.to_gateway_payment(payment_entity(
        status="failed",
        error_code="BAD_REQUEST_ERROR",
        error_description="Payment declined by bank",
    ))

    result = await reconciliation.fail_payment(details, SYSTEM)

    assert result.success and result.processed
    level = await _level(uow_factory)
    assert (level.available, level.reserved, level.committed) == (10, 0, 0)
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.PAYMENT_FAILED
    assert stored.payment_status == OrderPaymentStatus.FAILED
    assert stored.inventory_state == InventoryState.RELEASED
    [payment] = await _payments(uow_factory, order.id)
    assert payment.error_code == "BAD_REQUEST_ERROR"


@pytest.mark.asyncio
async def test_late_failure_never_overrides_capture(uow_factory, reconciliation, gateway):
    order, _ = await seed_order(uow_factory)
    await _capture(reconciliation, gateway)

    late = await reconciliation.fail_payment(
        gateway.to_gateway_payment(payment_entity(status="failed")), SYSTEM
    )

    assert late.success and not late.processed
    assert late.message == "Payment already captured, failure ignored"
    stored = await _order(uow_factory, order.id)
    assert stored.payment_status == OrderPaymentStatus.PAID
    assert stored.inventory_state == InventoryState.COMMITTED


@pytest.mark.asyncio
async def test_retry_after_failure_opens_new_attempt(uow_factory, reconciliation, gateway, audit):
    order, _ = await seed_order(uow_factory, quantity=2, stock=10)
    await reconciliation.fail_payment(gateway.to_gateway_payment(payment_entity(status="failed")), SYSTEM)

    result = await _capture(reconciliation, gateway, payment_id="pay_RZP002")

    assert result.success and result.processed
    payments = await _payments(uow_factory, order.id)
    assert sorted(p.status.value for p in payments) == ["captured", "failed"]
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.PROCESSING
    assert stored.payment_status == OrderPaymentStatus.PAID
    # released stock is not silently re-committed
    assert stored.inventory_state == InventoryState.RELEASED
    _, flagged = await audit.query(AuditQuery(action=AuditAction.INVENTORY_INCONSISTENCY.value))
    assert flagged == 1


@pytest.mark.asyncio
async def test_stale_failure_of_abandoned_attempt_keeps_authorized_sibling(uow_factory, reconciliation, gateway):
    order, _ = await seed_order(uow_factory, quantity=2, stock=10)
    await reconciliation.authorize_payment(
        gateway.to_gateway_payment(payment_entity("pay_B", status="authorized")), SYSTEM
    )

    stale = await reconciliation.fail_payment(
        gateway.to_gateway_payment(payment_entity("pay_A", status="failed", error_code="BAD_REQUEST_ERROR")),
        SYSTEM,
    )

    assert stale.success and stale.processed
    assert stale.message == "Payment attempt failed, superseded by an active attempt"
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.PENDING
    assert stored.payment_status == OrderPaymentStatus.AUTHORIZED
    assert stored.inventory_state == InventoryState.RESERVED
    statuses = {p.gateway_payment_id: p.status for p in await _payments(uow_factory, order.id)}
    assert statuses == {"pay_A": PaymentStatus.FAILED, "pay_B": PaymentStatus.AUTHORIZED}

    captured = await _capture(reconciliation, gateway, payment_id="pay_B")

    assert captured.processed
    level = await _level(uow_factory)
    assert (level.available, level.reserved, level.committed) == (8, 0, 2)
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.PROCESSING
    assert stored.inventory_state == InventoryState.COMMITTED


@pytest.mark.asyncio
async def test_authorize_then_capture(uow_factory, reconciliation, gateway):
    order, _ = await seed_order(uow_factory)

    authorized = await reconciliation.authorize_payment(
        gateway.to_gateway_payment(payment_entity(status="authorized")), SYSTEM
    )
    assert authorized.message == "Payment authorized successfully"
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.PENDING
    assert stored.payment_status == OrderPaymentStatus.AUTHORIZED

    repeated = await reconciliation.authorize_payment(
        gateway.to_gateway_payment(payment_entity(status="authorized")), SYSTEM
    )
    assert not repeated.processed

    captured = await _capture(reconciliation, gateway)
    assert captured.processed
    assert (await _order(uow_factory, order.id)).payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_order_paid_marks_payment_status_once(uow_factory, reconciliation):
    order, _ = await seed_order(uow_factory)

    first = await reconciliation.confirm_order_paid("order_RZP001", SYSTEM)
    second = await reconciliation.confirm_order_paid("order_RZP001", SYSTEM)

    assert first.processed and first.message == "Order marked as paid successfully"
    assert second.success and not second.processed
    stored = await _order(uow_factory, order.id)
    assert stored.payment_status == OrderPaymentStatus.PAID
    assert stored.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_gateway_order_is_reported_not_raised(uow_factory, reconciliation, gateway, audit):
    result = await _capture(reconciliation, gateway, payment_id="pay_X", order_id="order_missing")

    assert not result.success
    assert result.code == BusinessCode.PAYMENT_NOT_FOUND
    entries, _ = await audit.query(AuditQuery(action=AuditAction.PAYMENT_CAPTURED.value))
    assert entries[0].status == "failure"
    assert entries[0].resource_id == "pay_X"

    paid = await reconciliation.confirm_order_paid("order_missing", SYSTEM)
    assert paid.code == BusinessCode.ORDER_NOT_FOUND


@pytest.mark.asyncio
async def test_refund_cannot_exceed_remaining_balance(uow_factory, reconciliation, gateway, admin):
    order, _ = await seed_order(uow_factory, total=Decimal("1000.00"))
    await _capture(reconciliation, gateway, amount_paise=100000)

    first = await admin.refund(order.id, Decimal("600"), ADMIN, reason="Damaged item")
    assert first.success
    assert first.data["payment_status"] == "partially_refunded"

    rejected = await admin.refund(order.id, Decimal("500"), ADMIN)
    assert not rejected.success
    assert rejected.code == BusinessCode.REFUND_EXCEEDS_BALANCE
    assert Decimal(rejected.data["available"]) == Decimal("400")

    stored = await _order(uow_factory, order.id)
    assert stored.refunded_amount == Decimal("600")
    assert stored.payment_status == OrderPaymentStatus.PARTIALLY_REFUNDED


@pytest.mark.asyncio
async def test_full_refund_with_restock(uow_factory, reconciliation, gateway, admin):
    order, _ = await seed_order(uow_factory, total=Decimal("1000.00"), quantity=2, stock=10)
    await _capture(reconciliation, gateway, amount_paise=100000)

    result = await admin.refund(order.id, Decimal("1000"), ADMIN, restock_items=True)

    assert result.success
    assert result.data["payment_status"] == "refunded"
    level = await _level(uow_factory)
    assert (level.available, level.reserved, level.committed) == (10, 0, 0)
    payments = await _payments(uow_factory, order.id)
    original = next(p for p in payments if not p.is_refund_mirror)
    mirror = next(p for p in payments if p.is_refund_mirror)
    assert original.status == PaymentStatus.REFUNDED
    assert mirror.amount == Decimal("-1000")

    nothing_left = await admin.refund(order.id, Decimal("1"), ADMIN)
    assert nothing_left.code == BusinessCode.PAYMENT_NOT_REFUNDABLE


@pytest.mark.asyncio
async def test_refund_on_unpaid_order_is_rejected(uow_factory, admin):
    order, _ = await seed_order(uow_factory)
    result = await admin.refund(order.id, Decimal("10"), ADMIN)
    assert result.code == BusinessCode.PAYMENT_NOT_REFUNDABLE


@pytest.mark.asyncio
async def test_cancel_releases_stock_and_is_not_repeatable(uow_factory, admin, audit):
    order, _ = await seed_order(uow_factory, quantity=4, stock=10)

    cancelled = await admin.cancel(order.id, "Customer changed their mind", ADMIN)
    assert cancelled.success
    assert cancelled.data["status"] == "cancelled"
    assert cancelled.data["payment_status"] == "cancelled"
    level = await _level(uow_factory)
    assert (level.available, level.reserved) == (10, 0)

    again = await admin.cancel(order.id, None, ADMIN)
    assert not again.success
    assert again.code == BusinessCode.INVALID_TRANSITION

    entries, _ = await audit.query(AuditQuery(action=AuditAction.ORDER_CANCELLED.value))
    assert sorted(e.status for e in entries) == ["failure", "success"]
    success = next(e for e in entries if e.status == "success")
    assert success.actor_id == "ops@example.com"
    assert success.request_id == "req-1"


@pytest.mark.asyncio
async def test_status_update_rules(uow_factory, admin):
    order, _ = await seed_order(uow_factory)

    skipped = await admin.update_status(order.id, UpdateOrderStatusRequest(status=OrderStatus.SHIPPED), ADMIN)
    assert skipped.code == BusinessCode.INVALID_TRANSITION

    confirmed = await admin.update_status(
        order.id,
        UpdateOrderStatusRequest(status=OrderStatus.CONFIRMED, tracking_number="AWB123"),
        ADMIN,
    )
    assert confirmed.success
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.CONFIRMED
    assert stored.tracking_number == "AWB123"
    assert stored.confirmed_at is not None


@pytest.mark.asyncio
async def test_partial_then_full_fulfillment(uow_factory, admin):
    order, _ = await seed_order(uow_factory, quantity=3)
    item_id = order.items[0].id

    partial = await admin.fulfill(order.id, FulfillOrderRequest(items=[FulfillItem(item_id=item_id, quantity=1)]), ADMIN)
    assert partial.data["fulfillment_status"] == "partially_fulfilled"

    full = await admin.fulfill(order.id, FulfillOrderRequest(carrier="Delhivery"), ADMIN)
    assert full.data["fulfillment_status"] == "fulfilled"
    stored = await _order(uow_factory, order.id)
    assert stored.items[0].fulfilled_quantity == 3
    assert stored.fulfillment_status == FulfillmentStatus.FULFILLED


@pytest.mark.asyncio
async def test_notes_go_to_history(uow_factory, admin):
    order, _ = await seed_order(uow_factory)

    result = await admin.add_note(order.id, "Customer asked for gift wrap", ADMIN)

    assert result.success
    async with uow_factory(readonly=True) as uow:
        history = await uow.order_repository.list_history(order.id)
    notes = [h for h in history if h.is_note]
    assert notes[0].note == "Customer asked for gift wrap"
    assert notes[0].changed_by == "ops@example.com"


@pytest.mark.asyncio
async def test_reserve_inventory_once(uow_factory, admin):
    order, _ = await seed_order(uow_factory, reserve=False, quantity=2, stock=5)

    first = await admin.reserve_inventory(order.id, ADMIN)
    second = await admin.reserve_inventory(order.id, ADMIN)

    assert first.processed
    assert not second.processed
    level = await _level(uow_factory)
    assert (level.available, level.reserved) == (3, 2)


@pytest.mark.asyncio
async def test_reserve_without_stock_rolls_back(uow_factory, admin):
    order, _ = await seed_order(uow_factory, reserve=False, quantity=8, stock=5)

    result = await admin.reserve_inventory(order.id, ADMIN)

    assert result.code == BusinessCode.INSUFFICIENT_INVENTORY
    assert (await _order(uow_factory, order.id)).inventory_state == InventoryState.UNRESERVED


@pytest.mark.asyncio
async def test_payment_reads_are_audited(uow_factory, admin, audit):
    order, _ = await seed_order(uow_factory)

    payments = await admin.get_order_payments(order.id, ADMIN)

    assert [p.gateway_transaction_id for p in payments] == ["order_RZP001"]
    entries, _ = await audit.query(AuditQuery(action=AuditAction.PAYMENT_DATA_ACCESSED.value))
    assert entries[0].resource_id == str(order.id)
    assert entries[0].changes == {"payment_ids": [payments[0].id]}

    with pytest.raises(OrderNotFoundException):
        await admin.get_order_payments(9999, ADMIN)


@pytest.mark.asyncio
async def test_audit_failure_does_not_undo_the_transition(uow_factory, gateway):
    def broken_uow(*args, **kwargs):
        raise RuntimeError("audit database unavailable")

    broken_audit = AuditLogger(broken_uow)
    assert await broken_audit.append(AuditLogEntry.build("TEST", "order", 1, SYSTEM)) is None

    order, _ = await seed_order(uow_factory)
    runner = TransitionRunner(uow_factory, broken_audit)
    details = gateway.to_gateway_payment(payment_entity())

    outcome = await runner.run(lambda machine: machine.capture_payment(details), SYSTEM, name="payment.captured")

    assert outcome.processed
    assert (await _order(uow_factory, order.id)).payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_sync_applies_missed_capture(uow_factory, reconciliation, gateway, runner, audit):
    order, _ = await seed_order(uow_factory, quantity=2, stock=10)
    await reconciliation.authorize_payment(
        gateway.to_gateway_payment(payment_entity(status="authorized")), SYSTEM
    )
    remote = FetchingGateway({"pay_RZP001": payment_entity(status="captured")})
    service = OrderAdminService(runner, audit, uow_factory, remote)

    result = await service.sync_payment_status(order.id, ADMIN)

    assert result.success and result.processed
    assert result.message == "Payment captured successfully"
    assert result.data["gateway_status"] == "captured"
    assert remote.fetched == ["pay_RZP001"]
    level = await _level(uow_factory)
    assert (level.available, level.reserved, level.committed) == (8, 0, 2)
    stored = await _order(uow_factory, order.id)
    assert stored.status == OrderStatus.PROCESSING
    assert stored.payment_status == OrderPaymentStatus.PAID

    [entry], total = await audit.query(AuditQuery(action=AuditAction.PAYMENT_STATUS_SYNCED.value))
    assert total == 1
    assert entry.actor_id == "ops@example.com"
    assert entry.resource_type == "payment"
    assert entry.changes["previous_status"] == "authorized"
    assert entry.changes["gateway_status"] == "captured"

    again = await service.sync_payment_status(order.id, ADMIN)
    assert again.success and not again.processed
    assert (await _level(uow_factory)).committed == 2


@pytest.mark.asyncio
async def test_sync_applies_missed_failure(uow_factory, reconciliation, gateway, runner, audit):
    order, _ = await seed_order(uow_factory, quantity=2, stock=10)
    await reconciliation.authorize_payment(
        gateway.to_gateway_payment(payment_entity(status="authorized")), SYSTEM
    )
    remote = FetchingGateway({
        "pay_RZP001": payment_entity(status="failed", error_code="BAD_REQUEST_ERROR", error_description="Card declined"),
    })
    service = OrderAdminService(runner, audit, uow_factory, remote)

    result = await service.sync_payment_status(order.id, ADMIN, gateway_payment_id="pay_RZP001")

    assert result.success and result.processed
    [payment] = await _payments(uow_factory, order.id)
    assert payment.status == PaymentStatus.FAILED
    assert payment.error_code == "BAD_REQUEST_ERROR"
    assert (await _order(uow_factory, order.id)).payment_status == OrderPaymentStatus.FAILED
    assert (await _level(uow_factory)).reserved == 0


@pytest.mark.asyncio
async def test_sync_without_usable_gateway_answer(uow_factory, reconciliation, gateway, runner, audit):
    order, _ = await seed_order(uow_factory)
    remote = FetchingGateway({"pay_RZP001": payment_entity(status="created")})
    service = OrderAdminService(runner, audit, uow_factory, remote)

    # the seeded attempt has no gateway payment id yet
    missing = await service.sync_payment_status(order.id, ADMIN)
    assert not missing.success
    assert missing.code == BusinessCode.PAYMENT_NOT_FOUND
    assert remote.fetched == []

    await reconciliation.authorize_payment(
        gateway.to_gateway_payment(payment_entity(status="authorized")), SYSTEM
    )
    unchanged = await service.sync_payment_status(order.id, ADMIN)
    assert unchanged.success and not unchanged.processed
    assert unchanged.message == "Payment status unchanged"
    assert (await _order(uow_factory, order.id)).payment_status == OrderPaymentStatus.AUTHORIZED

    remote.entities.clear()
    unavailable = await service.sync_payment_status(order.id, ADMIN)
    assert not unavailable.success
    assert unavailable.code == BusinessCode.SERVICE_UNAVAILABLE

    unknown_order = await service.sync_payment_status(9999, ADMIN)
    assert unknown_order.code == BusinessCode.ORDER_NOT_FOUND
