"""Unit of Work abstraction"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.audit.repository import AuditLogRepository
from domain.inventory.repository import InventoryLedger
from domain.order.repository import OrderRepository
from domain.payment.repository import PaymentRepository, RefundRepository
from domain.webhook.repository import WebhookDeliveryRepository


class AbstractUnitOfWork(ABC):
    """Transaction boundary used by the application layer"""

    order_repository: OrderRepository
    payment_repository: PaymentRepository
    refund_repository: RefundRepository
    inventory_ledger: InventoryLedger
    audit_repository: AuditLogRepository
    webhook_delivery_repository: WebhookDeliveryRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.order_repository = None  # type: ignore[assignment]
        self.payment_repository = None  # type: ignore[assignment]
        self.refund_repository = None  # type: ignore[assignment]
        self.inventory_ledger = None  # type: ignore[assignment]
        self.audit_repository = None  # type: ignore[assignment]
        self.webhook_delivery_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # commit automatically unless readonly or already committed
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """Roll the transaction back"""
