"""
Order repository interface.
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Order, StatusChange
from .history import OrderHistoryEntry


class OrderRepository(ABC):
    """Order persistence; items are loaded and saved with their order."""

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """Insert an order together with its items"""

    @abstractmethod
    async def get(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        """Load an order and its items; ``for_update`` takes a row lock"""

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """Persist order fields and item quantities"""

    @abstractmethod
    async def add_history(
        self,
        order_id: int,
        change: StatusChange,
        *,
        note: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> OrderHistoryEntry:
        """Append one status history row"""

    @abstractmethod
    async def list_history(self, order_id: int) -> List[OrderHistoryEntry]:
        """History rows, oldest first"""
