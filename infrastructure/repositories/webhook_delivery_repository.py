"""
Webhook delivery log repository - SQLAlchemy implementation
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.clock import ensure_utc, utcnow
from domain.webhook.entity import DeliveryStatus, WebhookDelivery, WebhookDeliveryStats
from domain.webhook.repository import WebhookDeliveryRepository
from infrastructure.models.webhook import WebhookDeliveryModel


class SQLAlchemyWebhookDeliveryRepository(WebhookDeliveryRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: WebhookDeliveryModel) -> WebhookDelivery:
        return WebhookDelivery(
            id=model.id,
            gateway=model.gateway,
            delivery_id=model.delivery_id,
            event_type=model.event_type,
            status=DeliveryStatus(model.status),
            payload=model.payload or {},
            response=model.response or {},
            processing_time_ms=model.processing_time_ms,
            created_at=ensure_utc(model.created_at),
        )

    async def add(self, delivery: WebhookDelivery) -> WebhookDelivery:
        db_delivery = WebhookDeliveryModel(
            gateway=delivery.gateway,
            delivery_id=delivery.delivery_id,
            event_type=delivery.event_type,
            status=delivery.status.value,
            payload=delivery.payload,
            response=delivery.response,
            processing_time_ms=delivery.processing_time_ms,
            created_at=delivery.created_at or utcnow(),
        )
        self.session.add(db_delivery)
        await self.session.flush()
        return self._to_entity(db_delivery)

    async def list_recent(
        self,
        *,
        event_type: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[WebhookDelivery]:
        query = select(WebhookDeliveryModel)
        if event_type:
            query = query.where(WebhookDeliveryModel.event_type == event_type)
        if status:
            query = query.where(WebhookDeliveryModel.status == status)
        query = query.order_by(WebhookDeliveryModel.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(row) for row in result.scalars().all()]

    async def stats(self, since: datetime) -> WebhookDeliveryStats:
        query = (
            select(
                WebhookDeliveryModel.status,
                func.count(WebhookDeliveryModel.id),
                func.coalesce(func.sum(WebhookDeliveryModel.processing_time_ms), 0),
            )
            .where(WebhookDeliveryModel.created_at >= since)
            .group_by(WebhookDeliveryModel.status)
        )
        result = await self.session.execute(query)

        stats = WebhookDeliveryStats(since=since)
        known = {s.value for s in DeliveryStatus}
        elapsed = 0
        for status, count, total_ms in result.all():
            stats.total += count
            elapsed += int(total_ms)
            if status in known:
                setattr(stats, status, count)
        if stats.total:
            stats.average_processing_time_ms = round(elapsed / stats.total)
        return stats
