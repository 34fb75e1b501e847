"""
Payment and refund repositories - SQLAlchemy implementation
"""
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from domain.common.clock import utcnow
from domain.common.exceptions import PaymentNotFoundException
from domain.payment.entity import Payment, Refund, PaymentStatus, RefundStatus
from domain.payment.repository import PaymentRepository, RefundRepository
from infrastructure.models.payment import PaymentModel, RefundModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """Payment repository backed by SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        return Payment(
            id=model.id,
            order_id=model.order_id,
            gateway=model.gateway,
            gateway_transaction_id=model.gateway_transaction_id,
            gateway_payment_id=model.gateway_payment_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            payment_method=model.payment_method,
            card_last4=model.card_last4,
            card_brand=model.card_brand,
            error_code=model.error_code,
            error_description=model.error_description,
            refund_reason=model.refund_reason,
            risk_score=model.risk_score,
            risk_level=model.risk_level,
            gateway_response=model.gateway_response or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
            authorized_at=model.authorized_at,
            captured_at=model.captured_at,
            failed_at=model.failed_at,
            refunded_at=model.refunded_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        return PaymentModel(
            id=entity.id,
            order_id=entity.order_id,
            gateway=entity.gateway,
            gateway_transaction_id=entity.gateway_transaction_id,
            gateway_payment_id=entity.gateway_payment_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            payment_method=entity.payment_method,
            card_last4=entity.card_last4,
            card_brand=entity.card_brand,
            error_code=entity.error_code,
            error_description=entity.error_description,
            refund_reason=entity.refund_reason,
            risk_score=entity.risk_score,
            risk_level=entity.risk_level,
            gateway_response=entity.gateway_response,
            created_at=entity.created_at or utcnow(),
            updated_at=entity.updated_at or utcnow(),
            authorized_at=entity.authorized_at,
            captured_at=entity.captured_at,
            failed_at=entity.failed_at,
            refunded_at=entity.refunded_at,
        )

    async def add(self, payment: Payment) -> Payment:
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            order_id=db_payment.order_id,
            gateway_transaction_id=db_payment.gateway_transaction_id,
            amount=str(db_payment.amount),
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.id == payment_id)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def list_by_gateway_transaction_id(
        self,
        gateway_transaction_id: str,
        *,
        for_update: bool = False,
    ) -> List[Payment]:
        query = (
            select(PaymentModel)
            .where(PaymentModel.gateway_transaction_id == gateway_transaction_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_by_order(self, order_id: int, *, for_update: bool = False) -> List[Payment]:
        query = (
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return [self._to_entity(p) for p in result.scalars().all()]

    async def update(self, payment: Payment) -> Payment:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.id == payment.id)
        )
        db_payment = result.scalar_one_or_none()

        if not db_payment:
            raise PaymentNotFoundException(str(payment.id))

        db_payment.gateway_payment_id = payment.gateway_payment_id
        db_payment.status = payment.status.value
        db_payment.payment_method = payment.payment_method
        db_payment.card_last4 = payment.card_last4
        db_payment.card_brand = payment.card_brand
        db_payment.error_code = payment.error_code
        db_payment.error_description = payment.error_description
        db_payment.refund_reason = payment.refund_reason
        db_payment.risk_score = payment.risk_score
        db_payment.risk_level = payment.risk_level
        db_payment.gateway_response = payment.gateway_response
        db_payment.authorized_at = payment.authorized_at
        db_payment.captured_at = payment.captured_at
        db_payment.failed_at = payment.failed_at
        db_payment.refunded_at = payment.refunded_at
        if payment.updated_at is not None:
            db_payment.updated_at = payment.updated_at

        await self.session.flush()
        await self.session.refresh(db_payment)

        logger.info(
            "payment_updated",
            payment_id=db_payment.id,
            order_id=db_payment.order_id,
            status=db_payment.status,
        )
        return self._to_entity(db_payment)


class SQLAlchemyRefundRepository(RefundRepository):
    """Refund repository backed by SQLAlchemy"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            id=model.id,
            payment_id=model.payment_id,
            order_id=model.order_id,
            gateway_refund_id=model.gateway_refund_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=RefundStatus(model.status),
            reason=model.reason,
            created_by=model.created_by,
            restock_items=bool(model.restock_items),
            created_at=model.created_at,
            processed_at=model.processed_at,
        )

    def _to_model(self, entity: Refund) -> RefundModel:
        return RefundModel(
            id=entity.id,
            payment_id=entity.payment_id,
            order_id=entity.order_id,
            gateway_refund_id=entity.gateway_refund_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            reason=entity.reason,
            created_by=entity.created_by,
            restock_items=entity.restock_items,
            created_at=entity.created_at or utcnow(),
            processed_at=entity.processed_at,
        )

    async def add(self, refund: Refund) -> Refund:
        db_refund = self._to_model(refund)
        self.session.add(db_refund)
        await self.session.flush()
        await self.session.refresh(db_refund)

        logger.info(
            "refund_created",
            refund_id=db_refund.id,
            payment_id=db_refund.payment_id,
            order_id=db_refund.order_id,
            amount=str(db_refund.amount),
        )
        return self._to_entity(db_refund)

    async def update(self, refund: Refund) -> Refund:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.id == refund.id)
        )
        db_refund = result.scalar_one_or_none()

        if not db_refund:
            raise ValueError(f"Refund with id {refund.id} not found")

        db_refund.gateway_refund_id = refund.gateway_refund_id
        db_refund.status = refund.status.value
        db_refund.processed_at = refund.processed_at

        await self.session.flush()
        await self.session.refresh(db_refund)
        logger.info("refund_updated", refund_id=db_refund.id, status=db_refund.status)
        return self._to_entity(db_refund)

    async def list_by_order(self, order_id: int) -> List[Refund]:
        result = await self.session.execute(
            select(RefundModel)
            .where(RefundModel.order_id == order_id)
            .order_by(RefundModel.created_at.asc(), RefundModel.id.asc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]

    async def sum_successful(self, order_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.sum(RefundModel.amount)).where(
                RefundModel.order_id == order_id,
                RefundModel.status == RefundStatus.SUCCESS.value,
            )
        )
        total = result.scalar_one_or_none()
        return Decimal(str(total)) if total else Decimal("0")
