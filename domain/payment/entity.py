"""
Payment attempts and refunds.

Payments reference their order by id; the webhook flow inserts and advances
them independently of the order aggregate.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.clock import ensure_utc
from domain.common.exceptions import DomainValidationException, InvalidTransitionException


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class GatewayPayment:
    """Gateway-neutral view of a payment entity carried by a notification."""
    gateway_payment_id: str
    gateway_order_id: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    method: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    email: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class Payment:
    """
    One payment attempt against an order.

    Business rules:
    1. pending -> authorized -> captured; pending|authorized -> failed
    2. captured -> refunded once the order is fully refunded
    3. re-applying a state the attempt already reached is a no-op
    4. refund mirrors carry a negative amount and status refunded
    """

    id: Optional[int]
    order_id: int
    gateway_transaction_id: str  # gateway order id, the natural lookup key
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    gateway: str = "razorpay"
    gateway_payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    refund_reason: Optional[str] = None
    risk_score: Optional[int] = None
    risk_level: Optional[str] = None
    gateway_response: dict = field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    authorized_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount == 0:
            raise DomainValidationException("Payment amount must not be zero", field="amount")
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"Invalid currency code: {self.currency}", field="currency")
        if self.gateway_response is None:
            self.gateway_response = {}
        for name in ("created_at", "updated_at", "authorized_at", "captured_at", "failed_at", "refunded_at"):
            setattr(self, name, ensure_utc(getattr(self, name)))

    @property
    def is_refund_mirror(self) -> bool:
        return self.amount < 0

    @property
    def is_screened(self) -> bool:
        return self.risk_score is not None

    def apply_gateway_details(self, details: GatewayPayment) -> None:
        self.gateway_payment_id = details.gateway_payment_id or self.gateway_payment_id
        self.payment_method = details.method or self.payment_method
        self.card_last4 = details.card_last4 or self.card_last4
        self.card_brand = details.card_brand or self.card_brand
        if details.raw:
            self.gateway_response = dict(details.raw)

    def record_risk(self, score: int, level: str) -> None:
        # the first decision for an attempt is the one of record
        if self.risk_score is None:
            self.risk_score = score
            self.risk_level = level

    def authorize(self, now: datetime) -> bool:
        if self.status in (PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED, PaymentStatus.REFUNDED):
            return False
        if self.status == PaymentStatus.FAILED:
            raise InvalidTransitionException("payment", self.status.value, PaymentStatus.AUTHORIZED.value)
        self.status = PaymentStatus.AUTHORIZED
        self.authorized_at = now
        self.updated_at = now
        return True

    def capture(self, now: datetime) -> bool:
        if self.status in (PaymentStatus.CAPTURED, PaymentStatus.REFUNDED):
            return False
        if self.status == PaymentStatus.FAILED:
            raise InvalidTransitionException("payment", self.status.value, PaymentStatus.CAPTURED.value)
        self.status = PaymentStatus.CAPTURED
        self.captured_at = now
        self.updated_at = now
        return True

    def fail(self, now: datetime, *, error_code: Optional[str] = None, error_description: Optional[str] = None) -> bool:
        # a late failure notice never overrides funds already collected
        if self.status in (PaymentStatus.FAILED, PaymentStatus.CAPTURED, PaymentStatus.REFUNDED):
            return False
        self.status = PaymentStatus.FAILED
        self.error_code = error_code
        self.error_description = error_description
        self.failed_at = now
        self.updated_at = now
        return True

    def mark_refunded(self, now: datetime, reason: Optional[str] = None) -> None:
        if self.status != PaymentStatus.CAPTURED:
            raise InvalidTransitionException("payment", self.status.value, PaymentStatus.REFUNDED.value)
        self.status = PaymentStatus.REFUNDED
        self.refund_reason = reason
        self.refunded_at = now
        self.updated_at = now

    @classmethod
    def refund_mirror(cls, refund: "Refund", original: "Payment", now: datetime) -> "Payment":
        """Negative-amount record mirroring a refund transaction."""
        return cls(
            id=None,
            order_id=original.order_id,
            gateway_transaction_id=f"refund_{refund.id}",
            amount=-refund.amount,
            currency=refund.currency,
            status=PaymentStatus.REFUNDED,
            gateway=original.gateway,
            payment_method=original.payment_method,
            card_last4=original.card_last4,
            card_brand=original.card_brand,
            refund_reason=refund.reason,
            created_at=now,
            updated_at=now,
            refunded_at=now,
        )


@dataclass
class Refund:
    id: Optional[int]
    order_id: int
    payment_id: int
    amount: Decimal
    currency: str
    status: RefundStatus = RefundStatus.PENDING
    reason: Optional[str] = None
    created_by: Optional[str] = None
    gateway_refund_id: Optional[str] = None
    restock_items: bool = False
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(f"Refund amount must be positive: {self.amount}", field="amount")
        self.created_at = ensure_utc(self.created_at)
        self.processed_at = ensure_utc(self.processed_at)

    def mark_succeeded(self, now: datetime, gateway_refund_id: Optional[str] = None) -> None:
        if self.status != RefundStatus.PENDING:
            raise InvalidTransitionException("refund", self.status.value, RefundStatus.SUCCESS.value)
        self.status = RefundStatus.SUCCESS
        if gateway_refund_id:
            self.gateway_refund_id = gateway_refund_id
        self.processed_at = now

    def mark_failed(self, now: datetime) -> None:
        if self.status != RefundStatus.PENDING:
            raise InvalidTransitionException("refund", self.status.value, RefundStatus.FAILED.value)
        self.status = RefundStatus.FAILED
        self.processed_at = now
