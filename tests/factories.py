"""Builders for orders, payments and gateway notifications used across the tests."""
import hashlib
import hmac
import json
import os
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from domain.common.clock import utcnow
from domain.order.entity import InventoryState, Order, OrderItem
from domain.payment.entity import Payment
from infrastructure.external.payments.razorpay_client import RazorpayClient


WEBHOOK_SECRET = os.environ.get("PAYMENT__WEBHOOK__SECRET", "whsec_test")


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


async def seed_order(
    uow_factory,
    *,
    email: str = "asha.verma@example.com",
    total: Decimal = Decimal("1500.00"),
    quantity: int = 2,
    stock: int = 10,
    variant_id: str = "var_tshirt_m",
    location_id: str = "default",
    gateway_order_id: Optional[str] = "order_RZP001",
    reserve: bool = True,
    created_minutes_ago: int = 0,
    ip_address: Optional[str] = "49.36.10.20",
    user_agent: Optional[str] = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0",
    billing_country: str = "India",
    shipping_country: str = "India",
) -> tuple[Order, Optional[Payment]]:
    """Create an order (optionally with reserved stock) and its pending payment attempt."""
    created_at = utcnow() - timedelta(minutes=created_minutes_ago)
    async with uow_factory() as uow:
        if stock:
            level = await uow.inventory_ledger.get_level(variant_id, location_id)
            if level is None:
                await uow.inventory_ledger.receive(variant_id, location_id, stock, created_by="seed")
        order = await uow.order_repository.add(Order(
            id=None,
            order_number=f"ORD-{gateway_order_id or 'none'}-{created_minutes_ago}",
            email=email,
            currency="INR",
            total_amount=total,
            items=[OrderItem(
                id=None,
                variant_id=variant_id,
                quantity=quantity,
                location_id=location_id,
                unit_price=total / quantity,
            )],
            billing_address={"country": billing_country, "state": "Maharashtra"},
            shipping_address={"country": shipping_country, "state": "Maharashtra"},
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=created_at,
            updated_at=created_at,
        ))
        if reserve:
            for line in order.reservation_lines("default"):
                await uow.inventory_ledger.reserve(
                    line.variant_id, line.location_id, line.quantity, reference_id=str(order.id)
                )
            order.inventory_state = InventoryState.RESERVED
            order = await uow.order_repository.update(order)
        payment = None
        if gateway_order_id:
            payment = await uow.payment_repository.add(Payment(
                id=None,
                order_id=order.id,
                gateway_transaction_id=gateway_order_id,
                amount=total,
                currency="INR",
                created_at=created_at,
                updated_at=created_at,
            ))
    return order, payment


def payment_entity(
    payment_id: str = "pay_RZP001",
    order_id: str = "order_RZP001",
    *,
    amount_paise: int = 150000,
    status: str = "captured",
    **extra,
) -> dict:
    entity = {
        "id": payment_id,
        "entity": "payment",
        "amount": amount_paise,
        "currency": "INR",
        "status": status,
        "order_id": order_id,
        "method": "card",
        "card": {"last4": "4242", "network": "Visa"},
        "email": "asha.verma@example.com",
    }
    entity.update(extra)
    return entity


def webhook_body(event: str, payment: Optional[dict] = None, order: Optional[dict] = None) -> dict:
    payload = {}
    contains = []
    if payment is not None:
        payload["payment"] = {"entity": payment}
        contains.append("payment")
    if order is not None:
        payload["order"] = {"entity": order}
        contains.append("order")
    return {
        "entity": "event",
        "account_id": "acc_test",
        "event": event,
        "contains": contains,
        "payload": payload,
        "created_at": 1760864400,
    }


class FetchingGateway(RazorpayClient):
    """Answers payment fetches from a fixed set of entities."""

    def __init__(self, entities: dict):
        super().__init__(WEBHOOK_SECRET)
        self.entities = entities
        self.fetched: list = []

    async def fetch_payment(self, gateway_payment_id: str) -> Optional[dict]:
        self.fetched.append(gateway_payment_id)
        return self.entities.get(gateway_payment_id)
