"""
Payment and refund repository interfaces.
"""
from abc import ABC, abstractmethod
from typing import Optional, List
from decimal import Decimal

from .entity import Payment, Refund


class PaymentRepository(ABC):
    """Payment attempts, looked up by the gateway's order id"""

    @abstractmethod
    async def add(self, payment: Payment) -> Payment:
        """Insert a payment attempt"""

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        """Get a payment by id"""

    @abstractmethod
    async def list_by_gateway_transaction_id(
        self,
        gateway_transaction_id: str,
        *,
        for_update: bool = False,
    ) -> List[Payment]:
        """All attempts for one gateway order, newest first"""

    @abstractmethod
    async def list_by_order(self, order_id: int, *, for_update: bool = False) -> List[Payment]:
        """Payments of an order (including refund mirrors), newest first"""

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """Persist a payment"""


class RefundRepository(ABC):
    """Refund rows"""

    @abstractmethod
    async def add(self, refund: Refund) -> Refund:
        """Insert a refund"""

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        """Persist a refund"""

    @abstractmethod
    async def list_by_order(self, order_id: int) -> List[Refund]:
        """Refunds of an order, oldest first"""

    @abstractmethod
    async def sum_successful(self, order_id: int) -> Decimal:
        """Sum of successful refund amounts for an order"""
