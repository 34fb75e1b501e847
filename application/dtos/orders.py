"""
Admin order action DTOs (Pydantic v2).
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.types import condecimal

from domain.order.entity import FulfillmentStatus, Order, OrderStatus
from domain.payment.entity import Payment
from .base import DTOBase


class UpdateOrderStatusRequest(BaseModel):
    # no payment_status: only gateway events move it
    model_config = ConfigDict(extra="forbid")

    status: Optional[OrderStatus] = None
    fulfillment_status: Optional[FulfillmentStatus] = None
    note: Optional[str] = Field(None, max_length=2000)
    tracking_number: Optional[str] = Field(None, max_length=100)
    tracking_url: Optional[str] = Field(None, max_length=500)
    carrier: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def _require_change(self):
        if not any(
            v is not None
            for v in (self.status, self.fulfillment_status, self.tracking_number, self.tracking_url, self.carrier)
        ):
            raise ValueError("at least one of status, fulfillment_status or tracking fields is required")
        return self


class FulfillItem(BaseModel):
    item_id: int
    quantity: int = Field(..., gt=0)


class FulfillOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: Optional[list[FulfillItem]] = None  # None fulfills every open item
    tracking_number: Optional[str] = Field(None, max_length=100)
    tracking_url: Optional[str] = Field(None, max_length=500)
    carrier: Optional[str] = Field(None, max_length=100)

    def quantities(self) -> Optional[dict[int, int]]:
        if self.items is None:
            return None
        merged: dict[int, int] = {}
        for item in self.items:
            merged[item.item_id] = merged.get(item.item_id, 0) + item.quantity
        return merged


class CancelOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = Field(None, max_length=2000)


class RefundOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: condecimal(gt=0, max_digits=15, decimal_places=2)  # type: ignore[valid-type]
    reason: Optional[str] = Field(None, max_length=2000)
    restock_items: bool = False


class AddOrderNoteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    note: str = Field(..., min_length=1, max_length=2000)


class SyncPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # latest attempt with a gateway payment id when omitted
    gateway_payment_id: Optional[str] = Field(None, max_length=100)


class ActionResult(BaseModel):
    """``{success, error?}`` returned by every admin action."""
    success: bool
    message: str
    processed: bool = False
    error: Optional[str] = None
    code: Optional[int] = None
    data: dict[str, Any] = Field(default_factory=dict)


def order_summary(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "fulfillment_status": order.fulfillment_status.value,
        "inventory_state": order.inventory_state.value,
        "total_amount": str(order.total_amount),
        "refunded_amount": str(order.refunded_amount),
    }


class PaymentDTO(DTOBase):
    id: int
    order_id: int
    gateway: str
    gateway_transaction_id: str
    gateway_payment_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    payment_method: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    risk_score: Optional[int] = None
    risk_level: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None
    created_at: Optional[datetime] = None
    authorized_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, payment: Payment) -> "PaymentDTO":
        return cls(
            id=payment.id,
            order_id=payment.order_id,
            gateway=payment.gateway,
            gateway_transaction_id=payment.gateway_transaction_id,
            gateway_payment_id=payment.gateway_payment_id,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status.value,
            payment_method=payment.payment_method,
            card_last4=payment.card_last4,
            card_brand=payment.card_brand,
            risk_score=payment.risk_score,
            risk_level=payment.risk_level,
            error_code=payment.error_code,
            error_description=payment.error_description,
            created_at=payment.created_at,
            authorized_at=payment.authorized_at,
            captured_at=payment.captured_at,
            failed_at=payment.failed_at,
            refunded_at=payment.refunded_at,
        )
