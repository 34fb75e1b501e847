"""
Read-only history queries used by the fraud signals.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import OrderSnapshot, PaymentSnapshot


class FraudHistoryRepository(ABC):
    """Historical orders and payments of one identity (email)"""

    @abstractmethod
    async def orders_since(
        self,
        email: str,
        since: datetime,
        *,
        exclude_order_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[OrderSnapshot]:
        """Orders created at or after ``since``, newest first"""

    @abstractmethod
    async def payments_since(
        self,
        email: str,
        since: datetime,
        *,
        status: Optional[str] = None,
        exclude_order_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[PaymentSnapshot]:
        """Payment attempts (refund mirrors excluded) created at or after ``since``"""

    @abstractmethod
    async def count_refunds_since(self, email: str, since: datetime) -> int:
        """Successful refunds created at or after ``since``"""
