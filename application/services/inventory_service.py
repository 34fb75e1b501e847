"""
Inventory ledger queries and stock intake.
"""
from __future__ import annotations

from typing import List, Optional

from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException
from domain.inventory.entity import InventoryAdjustment, InventoryLevel


logger = get_logger(__name__)


class InventoryService:
    def __init__(self, uow_factory) -> None:
        self._uow_factory = uow_factory

    async def get_level(self, variant_id: str, location_id: str) -> Optional[InventoryLevel]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.inventory_ledger.get_level(variant_id, location_id)

    async def receive(
        self,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        actor: Optional[str] = None,
    ) -> InventoryLevel:
        if quantity <= 0:
            raise DomainValidationException("Quantity must be positive", field="quantity")
        async with self._uow_factory() as uow:
            level = await uow.inventory_ledger.receive(variant_id, location_id, quantity, created_by=actor)
        logger.info(
            "inventory_received",
            variant_id=variant_id,
            location_id=location_id,
            quantity=quantity,
            available=level.available,
        )
        return level

    async def list_adjustments(
        self,
        *,
        variant_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[InventoryAdjustment]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.inventory_ledger.list_adjustments(
                variant_id=variant_id,
                reference_id=reference_id,
                limit=limit,
            )
