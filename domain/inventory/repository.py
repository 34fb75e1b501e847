"""
Inventory ledger interface.

Implementations must express every movement as a conditional, server-side
arithmetic update so concurrent transactions cannot lose updates.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import InventoryAdjustment, InventoryLevel


class InventoryLedger(ABC):
    """available / reserved / committed counters per (variant, location)"""

    @abstractmethod
    async def receive(
        self,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        created_by: Optional[str] = None,
    ) -> InventoryLevel:
        """Add new stock to available, creating the level row if needed"""

    @abstractmethod
    async def reserve(
        self,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> InventoryAdjustment:
        """available -> reserved; raises InsufficientInventoryException when short"""

    @abstractmethod
    async def commit(
        self,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> InventoryAdjustment:
        """reserved -> committed, clamped at the reserved count"""

    @abstractmethod
    async def release(
        self,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> InventoryAdjustment:
        """reserved -> available, clamped at the reserved count"""

    @abstractmethod
    async def restock(
        self,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> InventoryAdjustment:
        """committed -> available, clamped at the committed count"""

    @abstractmethod
    async def get_level(self, variant_id: str, location_id: str) -> Optional[InventoryLevel]:
        """Current counters, or None when the row does not exist"""

    @abstractmethod
    async def list_adjustments(
        self,
        *,
        variant_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[InventoryAdjustment]:
        """Journal entries, newest first"""
