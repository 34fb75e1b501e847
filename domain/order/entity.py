"""
Order aggregate root and its items.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.clock import ensure_utc
from domain.common.exceptions import (
    DomainValidationException,
    InvalidTransitionException,
    PaymentNotRefundableException,
    RefundExceedsBalanceException,
)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FulfillmentStatus(str, Enum):
    UNFULFILLED = "unfulfilled"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class InventoryState(str, Enum):
    """Where the order's item quantities currently sit in the ledger."""
    UNRESERVED = "unreserved"
    RESERVED = "reserved"
    COMMITTED = "committed"
    RELEASED = "released"


ORDER_STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.CONFIRMED, OrderStatus.PROCESSING,
        OrderStatus.CANCELLED, OrderStatus.PAYMENT_FAILED,
    }),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    # a retried payment can bring a failed order back
    OrderStatus.PAYMENT_FAILED: frozenset({
        OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.CANCELLED,
    }),
}

FULFILLMENT_TRANSITIONS: dict[FulfillmentStatus, frozenset[FulfillmentStatus]] = {
    FulfillmentStatus.UNFULFILLED: frozenset({
        FulfillmentStatus.PARTIALLY_FULFILLED, FulfillmentStatus.FULFILLED, FulfillmentStatus.CANCELLED,
    }),
    FulfillmentStatus.PARTIALLY_FULFILLED: frozenset({
        FulfillmentStatus.FULFILLED, FulfillmentStatus.RETURNED, FulfillmentStatus.CANCELLED,
    }),
    FulfillmentStatus.FULFILLED: frozenset({FulfillmentStatus.RETURNED}),
    FulfillmentStatus.RETURNED: frozenset(),
    FulfillmentStatus.CANCELLED: frozenset(),
}

PAID_STATES = frozenset({
    OrderPaymentStatus.PAID,
    OrderPaymentStatus.PARTIALLY_REFUNDED,
    OrderPaymentStatus.REFUNDED,
})

_MILESTONES = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PROCESSING: "processed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


@dataclass(frozen=True)
class StatusChange:
    """One row of the order status history.

    Payment and fulfillment changes are prefixed (``payment_paid``,
    ``fulfillment_fulfilled``) so a single history stream covers all three
    status dimensions.
    """
    from_status: str
    to_status: str


@dataclass(frozen=True)
class LedgerLine:
    variant_id: str
    location_id: str
    quantity: int


@dataclass
class OrderItem:
    id: Optional[int]
    variant_id: Optional[str]
    quantity: int
    fulfilled_quantity: int = 0
    restocked_quantity: int = 0
    order_id: Optional[int] = None
    location_id: Optional[str] = None
    sku: Optional[str] = None
    title: Optional[str] = None
    unit_price: Decimal = field(default_factory=lambda: Decimal("0"))

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException(f"Item quantity must be positive: {self.quantity}", field="quantity")
        if not 0 <= self.fulfilled_quantity <= self.quantity:
            raise DomainValidationException(
                f"Fulfilled quantity {self.fulfilled_quantity} outside 0..{self.quantity}",
                field="fulfilled_quantity",
            )

    @property
    def unfulfilled_quantity(self) -> int:
        return self.quantity - self.fulfilled_quantity

    def fulfill(self, quantity: int) -> int:
        """Fulfill up to ``quantity`` units, capped at what is still open."""
        applied = min(quantity, self.unfulfilled_quantity)
        self.fulfilled_quantity += applied
        return applied


@dataclass
class Order:
    """
    Order aggregate root.

    Business rules:
    1. status / payment_status move only through the methods below
    2. refunded_amount never exceeds total_amount
    3. inventory_state records which ledger movement already happened so
       reserve/commit/release are applied at most once per order
    """

    id: Optional[int]
    order_number: str
    email: str
    currency: str
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    fulfillment_status: FulfillmentStatus = FulfillmentStatus.UNFULFILLED
    inventory_state: InventoryState = InventoryState.UNRESERVED
    refunded_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    items: list[OrderItem] = field(default_factory=list)

    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    carrier: Optional[str] = None
    cancel_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None

    def __post_init__(self):
        if self.total_amount < 0:
            raise DomainValidationException(f"Order total must not be negative: {self.total_amount}", field="total_amount")
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"Invalid currency code: {self.currency}", field="currency")
        if self.refunded_amount > self.total_amount:
            raise DomainValidationException("Refunded amount exceeds order total", field="refunded_amount")
        for name in (
            "created_at", "updated_at", "confirmed_at", "processed_at",
            "shipped_at", "delivered_at", "cancelled_at", "fulfilled_at",
        ):
            setattr(self, name, ensure_utc(getattr(self, name)))

    # ------------------------------------------------------------------
    # Status setters
    # ------------------------------------------------------------------
    def _set_status(self, target: OrderStatus, now: datetime) -> Optional[StatusChange]:
        if self.status == target:
            return None
        if target not in ORDER_STATUS_TRANSITIONS[self.status]:
            raise InvalidTransitionException("order", self.status.value, target.value)
        change = StatusChange(self.status.value, target.value)
        self.status = target
        milestone = _MILESTONES.get(target)
        if milestone:
            setattr(self, milestone, now)
        self.updated_at = now
        return change

    def _set_payment_status(self, target: OrderPaymentStatus, now: datetime) -> Optional[StatusChange]:
        if self.payment_status == target:
            return None
        change = StatusChange(f"payment_{self.payment_status.value}", f"payment_{target.value}")
        self.payment_status = target
        self.updated_at = now
        return change

    def _set_fulfillment_status(self, target: FulfillmentStatus, now: datetime) -> Optional[StatusChange]:
        if self.fulfillment_status == target:
            return None
        if target not in FULFILLMENT_TRANSITIONS[self.fulfillment_status]:
            raise InvalidTransitionException("fulfillment", self.fulfillment_status.value, target.value)
        change = StatusChange(f"fulfillment_{self.fulfillment_status.value}", f"fulfillment_{target.value}")
        self.fulfillment_status = target
        if target == FulfillmentStatus.FULFILLED:
            self.fulfilled_at = now
        self.updated_at = now
        return change

    @staticmethod
    def _compact(*changes: Optional[StatusChange]) -> list[StatusChange]:
        return [c for c in changes if c is not None]

    @property
    def is_paid(self) -> bool:
        return self.payment_status in PAID_STATES

    @property
    def refundable_amount(self) -> Decimal:
        return self.total_amount - self.refunded_amount

    # ------------------------------------------------------------------
    # Gateway driven transitions
    # ------------------------------------------------------------------
    def record_authorization(self, now: datetime) -> list[StatusChange]:
        payment_change = None
        if self.payment_status in (OrderPaymentStatus.PENDING, OrderPaymentStatus.FAILED):
            payment_change = self._set_payment_status(OrderPaymentStatus.AUTHORIZED, now)
        status_change = None
        if self.status == OrderStatus.PAYMENT_FAILED:
            status_change = self._set_status(OrderStatus.PENDING, now)
        return self._compact(status_change, payment_change)

    def record_capture(self, now: datetime) -> list[StatusChange]:
        payment_change = None
        if not self.is_paid:
            payment_change = self._set_payment_status(OrderPaymentStatus.PAID, now)
        status_change = None
        if self.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PAYMENT_FAILED):
            status_change = self._set_status(OrderStatus.PROCESSING, now)
        return self._compact(status_change, payment_change)

    def record_payment_failure(self, now: datetime) -> list[StatusChange]:
        if self.is_paid or self.payment_status == OrderPaymentStatus.CANCELLED:
            return []
        payment_change = self._set_payment_status(OrderPaymentStatus.FAILED, now)
        status_change = None
        if self.status == OrderStatus.PENDING:
            status_change = self._set_status(OrderStatus.PAYMENT_FAILED, now)
        return self._compact(status_change, payment_change)

    def confirm_paid(self, now: datetime) -> list[StatusChange]:
        if self.is_paid:
            return []
        return self._compact(self._set_payment_status(OrderPaymentStatus.PAID, now))

    # ------------------------------------------------------------------
    # Admin transitions
    # ------------------------------------------------------------------
    def transition_to(self, target: OrderStatus, now: datetime) -> list[StatusChange]:
        if target == OrderStatus.CANCELLED:
            return self.cancel(now)
        return self._compact(self._set_status(target, now))

    def change_fulfillment_status(self, target: FulfillmentStatus, now: datetime) -> list[StatusChange]:
        return self._compact(self._set_fulfillment_status(target, now))

    def cancel(self, now: datetime, reason: Optional[str] = None) -> list[StatusChange]:
        if self.status == OrderStatus.CANCELLED:
            raise InvalidTransitionException("order", self.status.value, OrderStatus.CANCELLED.value)
        changes = [self._set_status(OrderStatus.CANCELLED, now)]
        if self.payment_status in (OrderPaymentStatus.PENDING, OrderPaymentStatus.AUTHORIZED):
            changes.append(self._set_payment_status(OrderPaymentStatus.CANCELLED, now))
        if self.fulfillment_status == FulfillmentStatus.UNFULFILLED:
            changes.append(self._set_fulfillment_status(FulfillmentStatus.CANCELLED, now))
        self.cancel_reason = reason
        return self._compact(*changes)

    def apply_refund(self, amount: Decimal, now: datetime) -> list[StatusChange]:
        """
        Record a successful refund.

        Business rules:
        1. amount must be positive
        2. only paid (or partially refunded) orders can be refunded
        3. amount must not exceed total_amount - refunded_amount
        """
        if amount <= 0:
            raise DomainValidationException(f"Refund amount must be positive: {amount}", field="amount")
        if self.payment_status not in (OrderPaymentStatus.PAID, OrderPaymentStatus.PARTIALLY_REFUNDED):
            raise PaymentNotRefundableException(self.payment_status.value)
        available = self.refundable_amount
        if amount > available:
            raise RefundExceedsBalanceException(amount, available)
        self.refunded_amount += amount
        target = (
            OrderPaymentStatus.REFUNDED
            if self.refunded_amount >= self.total_amount
            else OrderPaymentStatus.PARTIALLY_REFUNDED
        )
        return self._compact(self._set_payment_status(target, now))

    def fulfill(self, quantities: Optional[dict[int, int]], now: datetime) -> list[StatusChange]:
        """Fulfill all items, or the given ``{item_id: quantity}`` subset."""
        if self.status in (OrderStatus.CANCELLED, OrderStatus.PAYMENT_FAILED):
            raise InvalidTransitionException("order", self.status.value, "fulfilled")
        if self.fulfillment_status not in (FulfillmentStatus.UNFULFILLED, FulfillmentStatus.PARTIALLY_FULFILLED):
            raise InvalidTransitionException(
                "fulfillment", self.fulfillment_status.value, FulfillmentStatus.FULFILLED.value
            )
        if quantities is None:
            for item in self.items:
                item.fulfill(item.unfulfilled_quantity)
        else:
            by_id = {item.id: item for item in self.items}
            for item_id, quantity in quantities.items():
                item = by_id.get(item_id)
                if item is None:
                    raise DomainValidationException(f"Item {item_id} does not belong to this order", field="items")
                if quantity <= 0:
                    raise DomainValidationException(f"Fulfill quantity must be positive: {quantity}", field="items")
                item.fulfill(quantity)

        if self.items and all(item.unfulfilled_quantity == 0 for item in self.items):
            target = FulfillmentStatus.FULFILLED
        elif any(item.fulfilled_quantity > 0 for item in self.items):
            target = FulfillmentStatus.PARTIALLY_FULFILLED
        else:
            target = FulfillmentStatus.UNFULFILLED
        self.updated_at = now
        return self._compact(self._set_fulfillment_status(target, now))

    def update_tracking(
        self,
        *,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        carrier: Optional[str] = None,
    ) -> None:
        if tracking_number is not None:
            self.tracking_number = tracking_number
        if tracking_url is not None:
            self.tracking_url = tracking_url
        if carrier is not None:
            self.carrier = carrier

    # ------------------------------------------------------------------
    # Ledger lines
    # ------------------------------------------------------------------
    def reservation_lines(self, default_location_id: str) -> list[LedgerLine]:
        return [
            LedgerLine(item.variant_id, item.location_id or default_location_id, item.quantity)
            for item in self.items
            if item.variant_id
        ]

    def releasable_lines(self, default_location_id: str) -> list[LedgerLine]:
        """Quantities still held for this order (shipped units are excluded)."""
        return [
            LedgerLine(item.variant_id, item.location_id or default_location_id, item.unfulfilled_quantity)
            for item in self.items
            if item.variant_id and item.unfulfilled_quantity > 0
        ]

    def take_restock_lines(self, default_location_id: str) -> list[LedgerLine]:
        """Claim every not-yet-restocked unit; repeated refunds never restock twice."""
        lines = []
        for item in self.items:
            remaining = item.quantity - item.restocked_quantity
            if not item.variant_id or remaining <= 0:
                continue
            item.restocked_quantity += remaining
            lines.append(LedgerLine(item.variant_id, item.location_id or default_location_id, remaining))
        return lines
