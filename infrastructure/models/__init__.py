"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, OrderItemModel, OrderStatusHistoryModel
from .payment import PaymentModel, RefundModel
from .inventory import InventoryLevelModel, InventoryAdjustmentModel
from .idempotency import IdempotencyKeyModel
from .audit import AuditLogModel
from .webhook import WebhookDeliveryModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "OrderItemModel",
    "OrderStatusHistoryModel",
    "PaymentModel",
    "RefundModel",
    "InventoryLevelModel",
    "InventoryAdjustmentModel",
    "IdempotencyKeyModel",
    "AuditLogModel",
    "WebhookDeliveryModel",
]
