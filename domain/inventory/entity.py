"""
Inventory ledger rows and journal entries.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class MovementType(str, Enum):
    RESERVE = "reserve"    # available -> reserved
    COMMIT = "commit"      # reserved -> committed
    RELEASE = "release"    # reserved -> available
    RESTOCK = "restock"    # committed -> available
    RECEIVE = "receive"    # new stock into available


@dataclass
class InventoryLevel:
    """Quantities of one variant at one location."""
    variant_id: str
    location_id: str
    available: int = 0
    reserved: int = 0
    committed: int = 0
    updated_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.available + self.reserved + self.committed


@dataclass
class InventoryAdjustment:
    """
    Journal entry written for every ledger movement.

    ``applied`` can be lower than ``requested`` when the source counter held
    fewer units than asked for; such entries carry ``inconsistent=True``.
    """
    id: Optional[int]
    variant_id: str
    location_id: str
    movement: MovementType
    requested: int
    applied: int
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    inconsistent: bool = False
    note: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def shortfall(self) -> int:
        return self.requested - self.applied
