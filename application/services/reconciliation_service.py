"""
Reconciliation use-cases: gateway events applied to the Order + Payment aggregate.

Each handler screens first-seen attempts for fraud outside the write
transaction, then runs one state machine transition. Business-rule
violations come back as structured results, never as exceptions.
"""
from __future__ import annotations

from typing import Optional

from application.dtos.webhooks import WebhookProcessingResult
from core.logging_config import get_logger
from domain.audit.entity import AuditAction, AuditContext
from domain.common.exceptions import BusinessException
from domain.fraud.entity import FraudAnalysisResult, PaymentContext, RiskLevel
from domain.order.entity import Order
from domain.order.service import OrderStateMachine
from domain.payment.entity import GatewayPayment, Payment
from .fraud_service import FraudScreeningService
from .order_transitions import TransitionRunner


logger = get_logger(__name__)


def _rejected(exc: BusinessException) -> WebhookProcessingResult:
    return WebhookProcessingResult(
        success=False,
        message=exc.message,
        processed=False,
        error=exc.error_type,
        code=int(exc.code),
    )


def build_payment_context(order: Order, payment: Optional[Payment], details: GatewayPayment) -> PaymentContext:
    return PaymentContext(
        amount=details.amount if details.amount is not None else order.total_amount,
        currency=details.currency or order.currency,
        email=details.email or order.email,
        order_id=order.id,
        payment_id=payment.id if payment else None,
        order_created_at=order.created_at,
        ip_address=order.ip_address,
        user_agent=order.user_agent,
        billing_address=order.billing_address,
        shipping_address=order.shipping_address,
        payment_method=details.method,
        card_last4=details.card_last4,
        card_brand=details.card_brand,
    )


class ReconciliationService:
    def __init__(self, runner: TransitionRunner, fraud: FraudScreeningService) -> None:
        self._runner = runner
        self._fraud = fraud

    async def _screen(self, details: GatewayPayment, context: AuditContext) -> Optional[FraudAnalysisResult]:
        """Score the attempt unless it already carries a decision."""

        async def lookup(machine: OrderStateMachine):
            return await machine.find_attempt(details)

        order, payment = await self._runner.read(lookup)
        if order is None or (payment is not None and payment.is_screened):
            return None
        return await self._fraud.analyze(
            build_payment_context(order, payment, details),
            audit_context=context,
        )

    async def _apply(
        self,
        operation,
        context: AuditContext,
        *,
        name: str,
        action: AuditAction,
        details: GatewayPayment,
    ) -> WebhookProcessingResult:
        try:
            outcome = await self._runner.run(
                operation,
                context,
                name=name,
                failure_action=action,
                resource=("payment", details.gateway_payment_id),
                metadata={"gateway_order_id": details.gateway_order_id},
            )
        except BusinessException as exc:
            return _rejected(exc)
        return WebhookProcessingResult(success=True, message=outcome.message, processed=outcome.processed)

    async def authorize_payment(self, details: GatewayPayment, context: AuditContext) -> WebhookProcessingResult:
        risk = await self._screen(details, context)
        return await self._apply(
            lambda machine: machine.authorize_payment(details, risk),
            context,
            name="payment.authorized",
            action=AuditAction.PAYMENT_AUTHORIZED,
            details=details,
        )

    async def capture_payment(self, details: GatewayPayment, context: AuditContext) -> WebhookProcessingResult:
        risk = await self._screen(details, context)
        if risk is not None and risk.level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            # recorded for manual review, capture itself is not blocked
            logger.warning(
                "high_risk_payment_captured",
                gateway_payment_id=details.gateway_payment_id,
                risk_score=risk.score,
                risk_level=risk.level.value,
            )
        return await self._apply(
            lambda machine: machine.capture_payment(details, risk),
            context,
            name="payment.captured",
            action=AuditAction.PAYMENT_CAPTURED,
            details=details,
        )

    async def fail_payment(self, details: GatewayPayment, context: AuditContext) -> WebhookProcessingResult:
        return await self._apply(
            lambda machine: machine.fail_payment(details),
            context,
            name="payment.failed",
            action=AuditAction.PAYMENT_FAILED,
            details=details,
        )

    async def confirm_order_paid(self, gateway_order_id: str, context: AuditContext) -> WebhookProcessingResult:
        try:
            outcome = await self._runner.run(
                lambda machine: machine.confirm_order_paid(gateway_order_id),
                context,
                name="order.paid",
                failure_action=AuditAction.ORDER_PAID,
                resource=("order", gateway_order_id),
            )
        except BusinessException as exc:
            return _rejected(exc)
        return WebhookProcessingResult(success=True, message=outcome.message, processed=outcome.processed)
