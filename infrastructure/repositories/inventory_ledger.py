"""
Inventory ledger - SQLAlchemy implementation

Every movement is a single conditional UPDATE evaluated by the database
(``SET reserved = reserved - :q ... WHERE reserved >= :q``), so concurrent
transactions serialize on the row instead of overwriting each other.
"""
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import DomainValidationException, InsufficientInventoryException
from domain.inventory.entity import InventoryAdjustment, InventoryLevel, MovementType
from domain.inventory.repository import InventoryLedger
from infrastructure.models.inventory import InventoryAdjustmentModel, InventoryLevelModel


logger = get_logger(__name__)

# movement -> (source counter, destination counter)
_MOVES = {
    MovementType.RESERVE: ("available", "reserved"),
    MovementType.COMMIT: ("reserved", "committed"),
    MovementType.RELEASE: ("reserved", "available"),
    MovementType.RESTOCK: ("committed", "available"),
}


class SQLAlchemyInventoryLedger(InventoryLedger):

    def __init__(self, session: AsyncSession, *, reference_type: str = "order"):
        self.session = session
        self.reference_type = reference_type

    @staticmethod
    def _level_to_entity(model: InventoryLevelModel) -> InventoryLevel:
        return InventoryLevel(
            variant_id=model.variant_id,
            location_id=model.location_id,
            available=model.available,
            reserved=model.reserved,
            committed=model.committed,
            updated_at=ensure_utc(model.updated_at),
        )

    @staticmethod
    def _adjustment_to_entity(model: InventoryAdjustmentModel) -> InventoryAdjustment:
        return InventoryAdjustment(
            id=model.id,
            variant_id=model.variant_id,
            location_id=model.location_id,
            movement=MovementType(model.movement),
            requested=model.requested,
            applied=model.applied,
            reference_type=model.reference_type,
            reference_id=model.reference_id,
            inconsistent=bool(model.inconsistent),
            note=model.note,
            created_by=model.created_by,
            created_at=ensure_utc(model.created_at),
        )

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity <= 0:
            raise DomainValidationException(f"Quantity must be positive: {quantity}", field="quantity")

    def _row(self, variant_id: str, location_id: str):
        return (
            InventoryLevelModel.variant_id == variant_id,
            InventoryLevelModel.location_id == location_id,
        )

    async def _move(self, variant_id: str, location_id: str, applied: int, movement: MovementType) -> int:
        """Conditional move of ``applied`` units; returns the number of rows touched."""
        source, destination = _MOVES[movement]
        source_col = getattr(InventoryLevelModel, source)
        destination_col = getattr(InventoryLevelModel, destination)
        result = await self.session.execute(
            update(InventoryLevelModel)
            .where(*self._row(variant_id, location_id), source_col >= applied)
            .values({source: source_col - applied, destination: destination_col + applied, "updated_at": utcnow()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _journal(
        self,
        variant_id: str,
        location_id: str,
        movement: MovementType,
        requested: int,
        applied: int,
        *,
        reference_id: Optional[str],
        created_by: Optional[str],
        note: Optional[str] = None,
    ) -> InventoryAdjustment:
        db_adjustment = InventoryAdjustmentModel(
            variant_id=variant_id,
            location_id=location_id,
            movement=movement.value,
            requested=requested,
            applied=applied,
            reference_type=self.reference_type if reference_id else None,
            reference_id=reference_id,
            inconsistent=applied < requested,
            note=note,
            created_by=created_by,
            created_at=utcnow(),
        )
        self.session.add(db_adjustment)
        await self.session.flush()
        return self._adjustment_to_entity(db_adjustment)

    async def _clamped_move(
        self,
        movement: MovementType,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        reference_id: Optional[str],
        created_by: Optional[str],
    ) -> InventoryAdjustment:
        self._check_quantity(quantity)
        if await self._move(variant_id, location_id, quantity, movement):
            return await self._journal(
                variant_id, location_id, movement, quantity, quantity,
                reference_id=reference_id, created_by=created_by,
            )

        # source counter short: lock the row and move whatever is there
        source, _ = _MOVES[movement]
        result = await self.session.execute(
            select(InventoryLevelModel)
            .where(*self._row(variant_id, location_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        level = result.scalar_one_or_none()
        held = getattr(level, source) if level is not None else 0
        applied = max(0, min(quantity, held))
        if applied:
            await self._move(variant_id, location_id, applied, movement)
        note = f"{source} held {held}, requested {quantity}"
        logger.warning(
            "inventory_movement_clamped",
            movement=movement.value,
            variant_id=variant_id,
            location_id=location_id,
            requested=quantity,
            applied=applied,
            reference_id=reference_id,
        )
        return await self._journal(
            variant_id, location_id, movement, quantity, applied,
            reference_id=reference_id, created_by=created_by, note=note,
        )

    async def receive(
        self,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        created_by: Optional[str] = None,
    ) -> InventoryLevel:
        self._check_quantity(quantity)
        result = await self.session.execute(
            update(InventoryLevelModel)
            .where(*self._row(variant_id, location_id))
            .values(available=InventoryLevelModel.available + quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            self.session.add(InventoryLevelModel(
                variant_id=variant_id,
                location_id=location_id,
                available=quantity,
                reserved=0,
                committed=0,
                updated_at=utcnow(),
            ))
            try:
                await self.session.flush()
            except IntegrityError:
                logger.warning("inventory_level_create_conflict", variant_id=variant_id, location_id=location_id)
                raise
        await self._journal(
            variant_id, location_id, MovementType.RECEIVE, quantity, quantity,
            reference_id=None, created_by=created_by,
        )
        level = await self.get_level(variant_id, location_id)
        logger.info("inventory_received", variant_id=variant_id, location_id=location_id, quantity=quantity)
        return level

    async def reserve(
        self,
        variant_id: str,
        location_id: str,
        quantity: int,
        *,
        reference_id: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> InventoryAdjustment:
        self._check_quantity(quantity)
        if not await self._move(variant_id, location_id, quantity, MovementType.RESERVE):
            logger.warning(
                "inventory_reserve_rejected",
                variant_id=variant_id,
                location_id=location_id,
                requested=quantity,
                reference_id=reference_id,
            )
            raise InsufficientInventoryException(variant_id, location_id, quantity)
        return await self._journal(
            variant_id, location_id, MovementType.RESERVE, quantity, quantity,
            reference_id=reference_id, created_by=created_by,
        )

    async def commit(self, variant_id, location_id, quantity, *, reference_id=None, created_by=None):
        return await self._clamped_move(
            MovementType.COMMIT, variant_id, location_id, quantity,
            reference_id=reference_id, created_by=created_by,
        )

    async def release(self, variant_id, location_id, quantity, *, reference_id=None, created_by=None):
        return await self._clamped_move(
            MovementType.RELEASE, variant_id, location_id, quantity,
            reference_id=reference_id, created_by=created_by,
        )

    async def restock(self, variant_id, location_id, quantity, *, reference_id=None, created_by=None):
        return await self._clamped_move(
            MovementType.RESTOCK, variant_id, location_id, quantity,
            reference_id=reference_id, created_by=created_by,
        )

    async def get_level(self, variant_id: str, location_id: str) -> Optional[InventoryLevel]:
        result = await self.session.execute(
            select(InventoryLevelModel)
            .where(*self._row(variant_id, location_id))
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._level_to_entity(model) if model else None

    async def list_adjustments(
        self,
        *,
        variant_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[InventoryAdjustment]:
        query = select(InventoryAdjustmentModel)
        if variant_id is not None:
            query = query.where(InventoryAdjustmentModel.variant_id == variant_id)
        if reference_id is not None:
            query = query.where(InventoryAdjustmentModel.reference_id == reference_id)
        query = query.order_by(InventoryAdjustmentModel.id.desc()).limit(limit)
        result = await self.session.execute(query)
        return [self._adjustment_to_entity(row) for row in result.scalars().all()]
