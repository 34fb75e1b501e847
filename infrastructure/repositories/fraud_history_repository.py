"""
Fraud history queries - SQLAlchemy implementation

Runs outside the webhook transaction: each query opens its own short-lived
session so screening never holds the order row lock.
"""
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.clock import ensure_utc
from domain.fraud.entity import OrderSnapshot, PaymentSnapshot
from domain.fraud.repository import FraudHistoryRepository
from domain.payment.entity import RefundStatus
from infrastructure.models.order import OrderModel
from infrastructure.models.payment import PaymentModel, RefundModel


def _same_email(email: str):
    return func.lower(OrderModel.email) == email.lower()


class SQLAlchemyFraudHistoryRepository(FraudHistoryRepository):

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def orders_since(
        self,
        email: str,
        since: datetime,
        *,
        exclude_order_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[OrderSnapshot]:
        query = (
            select(
                OrderModel.id,
                OrderModel.total_amount,
                OrderModel.created_at,
                OrderModel.ip_address,
                OrderModel.shipping_address,
            )
            .where(_same_email(email), OrderModel.created_at >= since)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
        )
        if exclude_order_id is not None:
            query = query.where(OrderModel.id != exclude_order_id)
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()
        return [
            OrderSnapshot(
                order_id=row.id,
                total_amount=Decimal(str(row.total_amount)),
                created_at=ensure_utc(row.created_at),
                ip_address=row.ip_address,
                shipping_country=(row.shipping_address or {}).get("country"),
            )
            for row in rows
        ]

    async def payments_since(
        self,
        email: str,
        since: datetime,
        *,
        status: Optional[str] = None,
        exclude_order_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[PaymentSnapshot]:
        query = (
            select(
                PaymentModel.id,
                PaymentModel.status,
                PaymentModel.created_at,
                PaymentModel.payment_method,
                PaymentModel.card_brand,
            )
            .join(OrderModel, OrderModel.id == PaymentModel.order_id)
            .where(
                _same_email(email),
                PaymentModel.created_at >= since,
                PaymentModel.amount > 0,
            )
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
        )
        if status is not None:
            query = query.where(PaymentModel.status == status)
        if exclude_order_id is not None:
            query = query.where(PaymentModel.order_id != exclude_order_id)
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()
        return [
            PaymentSnapshot(
                payment_id=row.id,
                status=row.status,
                created_at=ensure_utc(row.created_at),
                payment_method=row.payment_method,
                card_brand=row.card_brand,
            )
            for row in rows
        ]

    async def count_refunds_since(self, email: str, since: datetime) -> int:
        query = (
            select(func.count(RefundModel.id))
            .join(OrderModel, OrderModel.id == RefundModel.order_id)
            .where(
                _same_email(email),
                RefundModel.status == RefundStatus.SUCCESS.value,
                RefundModel.created_at >= since,
            )
        )
        async with self._session_factory() as session:
            return (await session.execute(query)).scalar_one()
