"""
Order / payment domain events.

The state machine collects these while a transaction runs; the application
layer turns them into audit entries once the transaction has committed.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Optional
import uuid

from domain.audit.entity import AuditAction
from domain.common.clock import utcnow


@dataclass
class OrderEvent:
    order_id: int
    changes: dict[str, Any] = field(default_factory=dict)
    payment_id: Optional[int] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=utcnow)

    action: ClassVar[AuditAction] = AuditAction.ORDER_STATUS_UPDATED
    resource_type: ClassVar[str] = "order"

    @property
    def resource_id(self) -> str:
        if self.resource_type == "payment" and self.payment_id is not None:
            return str(self.payment_id)
        return str(self.order_id)


@dataclass
class PaymentAuthorized(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.PAYMENT_AUTHORIZED
    resource_type: ClassVar[str] = "payment"


@dataclass
class PaymentCaptured(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.PAYMENT_CAPTURED
    resource_type: ClassVar[str] = "payment"


@dataclass
class PaymentFailed(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.PAYMENT_FAILED
    resource_type: ClassVar[str] = "payment"


@dataclass
class OrderMarkedPaid(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.ORDER_PAID


@dataclass
class OrderStatusUpdated(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.ORDER_STATUS_UPDATED


@dataclass
class OrderFulfilled(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.ORDER_FULFILLED


@dataclass
class OrderCancelled(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.ORDER_CANCELLED


@dataclass
class OrderNoteAdded(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.ORDER_NOTE_ADDED


@dataclass
class RefundProcessed(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.REFUND_PROCESSED


@dataclass
class InventoryReserved(OrderEvent):
    action: ClassVar[AuditAction] = AuditAction.INVENTORY_RESERVED


@dataclass
class InventoryInconsistencyDetected(OrderEvent):
    """A ledger movement was clamped, or skipped because nothing was held."""
    action: ClassVar[AuditAction] = AuditAction.INVENTORY_INCONSISTENCY
    resource_type: ClassVar[str] = "inventory"
