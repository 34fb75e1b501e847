"""
Order repository - SQLAlchemy implementation
"""
from typing import Optional, List
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from domain.common.clock import utcnow
from domain.common.exceptions import OrderNotFoundException
from domain.order.entity import (
    FulfillmentStatus,
    InventoryState,
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    StatusChange,
)
from domain.order.history import OrderHistoryEntry
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderItemModel, OrderModel, OrderStatusHistoryModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """Order repository backed by SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _item_to_entity(self, model: OrderItemModel) -> OrderItem:
        return OrderItem(
            id=model.id,
            order_id=model.order_id,
            variant_id=model.variant_id,
            location_id=model.location_id,
            sku=model.sku,
            title=model.title,
            unit_price=Decimal(str(model.unit_price or 0)),
            quantity=model.quantity,
            fulfilled_quantity=model.fulfilled_quantity or 0,
            restocked_quantity=model.restocked_quantity or 0,
        )

    def _to_entity(self, model: OrderModel) -> Order:
        """Map a row (with its items) to the aggregate"""
        return Order(
            id=model.id,
            order_number=model.order_number,
            email=model.email,
            currency=model.currency,
            total_amount=Decimal(str(model.total_amount)),
            refunded_amount=Decimal(str(model.refunded_amount or 0)),
            status=OrderStatus(model.status),
            payment_status=OrderPaymentStatus(model.payment_status),
            fulfillment_status=FulfillmentStatus(model.fulfillment_status),
            inventory_state=InventoryState(model.inventory_state),
            items=[self._item_to_entity(item) for item in model.items],
            shipping_address=model.shipping_address,
            billing_address=model.billing_address,
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            tracking_number=model.tracking_number,
            tracking_url=model.tracking_url,
            carrier=model.carrier,
            cancel_reason=model.cancel_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            confirmed_at=model.confirmed_at,
            processed_at=model.processed_at,
            shipped_at=model.shipped_at,
            delivered_at=model.delivered_at,
            cancelled_at=model.cancelled_at,
            fulfilled_at=model.fulfilled_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        model = OrderModel(
            id=entity.id,
            order_number=entity.order_number,
            email=entity.email,
            currency=entity.currency,
            total_amount=entity.total_amount,
            refunded_amount=entity.refunded_amount,
            status=entity.status.value,
            payment_status=entity.payment_status.value,
            fulfillment_status=entity.fulfillment_status.value,
            inventory_state=entity.inventory_state.value,
            shipping_address=entity.shipping_address,
            billing_address=entity.billing_address,
            ip_address=entity.ip_address,
            user_agent=entity.user_agent,
            tracking_number=entity.tracking_number,
            tracking_url=entity.tracking_url,
            carrier=entity.carrier,
            cancel_reason=entity.cancel_reason,
            created_at=entity.created_at or utcnow(),
            updated_at=entity.updated_at or utcnow(),
        )
        model.items = [
            OrderItemModel(
                variant_id=item.variant_id,
                location_id=item.location_id,
                sku=item.sku,
                title=item.title,
                unit_price=item.unit_price,
                quantity=item.quantity,
                fulfilled_quantity=item.fulfilled_quantity,
                restocked_quantity=item.restocked_quantity,
            )
            for item in entity.items
        ]
        return model

    async def _load(self, order_id: int, *, for_update: bool = False) -> Optional[OrderModel]:
        query = (
            select(OrderModel)
            .options(selectinload(OrderModel.items))
            .where(OrderModel.id == order_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def add(self, order: Order) -> Order:
        db_order = self._to_model(order)
        self.session.add(db_order)
        await self.session.flush()
        logger.info("order_created", order_id=db_order.id, order_number=db_order.order_number)
        return self._to_entity(await self._load(db_order.id))

    async def get(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        db_order = await self._load(order_id, for_update=for_update)
        return self._to_entity(db_order) if db_order else None

    async def update(self, order: Order) -> Order:
        db_order = await self._load(order.id)
        if not db_order:
            raise OrderNotFoundException(order.id)

        db_order.status = order.status.value
        db_order.payment_status = order.payment_status.value
        db_order.fulfillment_status = order.fulfillment_status.value
        db_order.inventory_state = order.inventory_state.value
        db_order.refunded_amount = order.refunded_amount
        db_order.tracking_number = order.tracking_number
        db_order.tracking_url = order.tracking_url
        db_order.carrier = order.carrier
        db_order.cancel_reason = order.cancel_reason
        db_order.confirmed_at = order.confirmed_at
        db_order.processed_at = order.processed_at
        db_order.shipped_at = order.shipped_at
        db_order.delivered_at = order.delivered_at
        db_order.cancelled_at = order.cancelled_at
        db_order.fulfilled_at = order.fulfilled_at
        if order.updated_at is not None:
            db_order.updated_at = order.updated_at

        # only the per-item counters change after creation
        items = {item.id: item for item in order.items}
        for db_item in db_order.items:
            item = items.get(db_item.id)
            if item is not None:
                db_item.fulfilled_quantity = item.fulfilled_quantity
                db_item.restocked_quantity = item.restocked_quantity

        await self.session.flush()
        logger.info(
            "order_updated",
            order_id=db_order.id,
            status=db_order.status,
            payment_status=db_order.payment_status,
            inventory_state=db_order.inventory_state,
        )
        return self._to_entity(db_order)

    async def add_history(
        self,
        order_id: int,
        change: StatusChange,
        *,
        note: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> OrderHistoryEntry:
        db_entry = OrderStatusHistoryModel(
            order_id=order_id,
            from_status=change.from_status,
            to_status=change.to_status,
            note=note,
            changed_by=changed_by,
        )
        self.session.add(db_entry)
        await self.session.flush()
        return self._history_to_entity(db_entry)

    async def list_history(self, order_id: int) -> List[OrderHistoryEntry]:
        result = await self.session.execute(
            select(OrderStatusHistoryModel)
            .where(OrderStatusHistoryModel.order_id == order_id)
            .order_by(OrderStatusHistoryModel.id.asc())
        )
        return [self._history_to_entity(row) for row in result.scalars().all()]

    @staticmethod
    def _history_to_entity(model: OrderStatusHistoryModel) -> OrderHistoryEntry:
        return OrderHistoryEntry(
            id=model.id,
            order_id=model.order_id,
            from_status=model.from_status,
            to_status=model.to_status,
            note=model.note,
            changed_by=model.changed_by,
            created_at=model.created_at,
        )
