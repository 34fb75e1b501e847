"""SQLAlchemy Unit of Work implementation"""
from __future__ import annotations

from typing import Optional, Callable
import inspect

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.audit_repository import SQLAlchemyAuditLogRepository
from infrastructure.repositories.inventory_ledger import SQLAlchemyInventoryLedger
from infrastructure.repositories.order_repository import SQLAlchemyOrderRepository
from infrastructure.repositories.payment_repository import (
    SQLAlchemyPaymentRepository,
    SQLAlchemyRefundRepository,
)
from infrastructure.repositories.webhook_delivery_repository import (
    SQLAlchemyWebhookDeliveryRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """Unit of Work over one AsyncSession"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    def _bind_repositories(self, session: Optional[AsyncSession]) -> None:
        if session is None:
            self.order_repository = None
            self.payment_repository = None
            self.refund_repository = None
            self.inventory_ledger = None
            self.audit_repository = None
            self.webhook_delivery_repository = None
            return
        self.order_repository = SQLAlchemyOrderRepository(session)
        self.payment_repository = SQLAlchemyPaymentRepository(session)
        self.refund_repository = SQLAlchemyRefundRepository(session)
        self.inventory_ledger = SQLAlchemyInventoryLedger(session)
        self.audit_repository = SQLAlchemyAuditLogRepository(session)
        self.webhook_delivery_repository = SQLAlchemyWebhookDeliveryRepository(session)

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._bind_repositories(self.session)
        # open an explicit transaction unless readonly
        if not self._readonly:
            self._transaction = await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # commit/rollback normally ends the transaction; close it if still active
            tx = getattr(self, "_transaction", None)
            if tx is not None and getattr(tx, "is_active", False):
                close = getattr(tx, "close", None)
                if callable(close):
                    res = close()
                    if inspect.isawaitable(res):
                        await res
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self._bind_repositories(None)

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
