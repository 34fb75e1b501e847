"""
Admin order actions: synchronous counterparts of the gateway transitions.

Every action returns ``ActionResult``; a rejected action has rolled back and
carries the business error instead of raising it.
"""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import List, Optional

from application.dtos.orders import (
    ActionResult,
    FulfillOrderRequest,
    PaymentDTO,
    UpdateOrderStatusRequest,
    order_summary,
)
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.audit.entity import AuditAction, AuditContext, AuditLogEntry
from domain.common.exceptions import (
    BusinessException,
    GatewayPaymentUnavailableException,
    OrderNotFoundException,
    PaymentNotFoundException,
)
from domain.order.service import TransitionOutcome
from domain.payment.entity import Payment, PaymentStatus
from .audit_service import AuditLogger
from .order_transitions import Operation, TransitionRunner


logger = get_logger(__name__)

# gateway status -> state machine transition
_SYNC_TRANSITIONS = {
    PaymentStatus.AUTHORIZED.value: "authorize_payment",
    PaymentStatus.CAPTURED.value: "capture_payment",
    PaymentStatus.FAILED.value: "fail_payment",
}


def _result(outcome: TransitionOutcome) -> ActionResult:
    data = order_summary(outcome.order) if outcome.order else {}
    return ActionResult(
        success=True,
        message=outcome.message,
        processed=outcome.processed,
        data={**data, **outcome.data},
    )


def _failure(exc: BusinessException) -> ActionResult:
    return ActionResult(
        success=False,
        message=exc.message,
        error=exc.error_type,
        code=int(exc.code),
        data=exc.details or {},
    )


class OrderAdminService:
    def __init__(
        self,
        runner: TransitionRunner,
        audit: AuditLogger,
        uow_factory,
        gateway: Optional[PaymentGateway] = None,
    ) -> None:
        self._runner = runner
        self._audit = audit
        self._uow_factory = uow_factory
        self._gateway = gateway

    async def _execute(
        self,
        order_id: int,
        operation: Operation,
        context: AuditContext,
        *,
        name: str,
        action: AuditAction,
    ) -> ActionResult:
        try:
            outcome = await self._runner.run(
                operation,
                context,
                name=name,
                failure_action=action,
                resource=("order", order_id),
            )
        except BusinessException as exc:
            return _failure(exc)
        return _result(outcome)

    async def update_status(self, order_id: int, req: UpdateOrderStatusRequest, context: AuditContext) -> ActionResult:
        return await self._execute(
            order_id,
            lambda machine: machine.update_status(
                order_id,
                status=req.status,
                fulfillment_status=req.fulfillment_status,
                note=req.note,
                tracking_number=req.tracking_number,
                tracking_url=req.tracking_url,
                carrier=req.carrier,
                actor=context.actor_id,
            ),
            context,
            name="update_status",
            action=AuditAction.ORDER_STATUS_UPDATED,
        )

    async def fulfill(self, order_id: int, req: FulfillOrderRequest, context: AuditContext) -> ActionResult:
        return await self._execute(
            order_id,
            lambda machine: machine.fulfill_order(
                order_id,
                quantities=req.quantities(),
                tracking_number=req.tracking_number,
                tracking_url=req.tracking_url,
                carrier=req.carrier,
                actor=context.actor_id,
            ),
            context,
            name="fulfill",
            action=AuditAction.ORDER_FULFILLED,
        )

    async def cancel(self, order_id: int, reason: Optional[str], context: AuditContext) -> ActionResult:
        return await self._execute(
            order_id,
            lambda machine: machine.cancel_order(order_id, reason=reason, actor=context.actor_id),
            context,
            name="cancel",
            action=AuditAction.ORDER_CANCELLED,
        )

    async def refund(
        self,
        order_id: int,
        amount: Decimal,
        context: AuditContext,
        *,
        reason: Optional[str] = None,
        restock_items: bool = False,
    ) -> ActionResult:
        return await self._execute(
            order_id,
            lambda machine: machine.refund_order(
                order_id,
                Decimal(amount),
                reason=reason,
                restock_items=restock_items,
                actor=context.actor_id,
            ),
            context,
            name="refund",
            action=AuditAction.REFUND_PROCESSED,
        )

    async def add_note(self, order_id: int, note: str, context: AuditContext) -> ActionResult:
        return await self._execute(
            order_id,
            lambda machine: machine.add_note(order_id, note, actor=context.actor_id),
            context,
            name="add_note",
            action=AuditAction.ORDER_NOTE_ADDED,
        )

    async def reserve_inventory(self, order_id: int, context: AuditContext) -> ActionResult:
        return await self._execute(
            order_id,
            lambda machine: machine.reserve_inventory(order_id, actor=context.actor_id),
            context,
            name="reserve_inventory",
            action=AuditAction.INVENTORY_RESERVED,
        )

    async def get_order_payments(self, order_id: int, context: AuditContext) -> List[PaymentDTO]:
        """Payment rows of an order; every read is recorded in the audit log."""
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            payments = await uow.payment_repository.list_by_order(order_id)

        await self._audit.append(AuditLogEntry.build(
            AuditAction.PAYMENT_DATA_ACCESSED.value,
            "order",
            order_id,
            context,
            changes={"payment_ids": [p.id for p in payments]},
        ))
        logger.info("order_payments_accessed", order_id=order_id, actor_id=context.actor_id, count=len(payments))
        return [PaymentDTO.from_entity(p) for p in payments]

    async def _sync_target(self, order_id: int, gateway_payment_id: Optional[str]) -> Payment:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            payments = await uow.payment_repository.list_by_order(order_id)
        # newest first
        for payment in payments:
            if payment.is_refund_mirror or not payment.gateway_payment_id:
                continue
            if gateway_payment_id is None or payment.gateway_payment_id == gateway_payment_id:
                return payment
        raise PaymentNotFoundException(gateway_payment_id or str(order_id))

    async def sync_payment_status(
        self,
        order_id: int,
        context: AuditContext,
        *,
        gateway_payment_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Pull the attempt's current status from the gateway and apply it.

        Used when a notification was lost: the fetched status is routed through
        the same transitions the webhooks use, so stock and order state follow.
        """
        try:
            attempt = await self._sync_target(order_id, gateway_payment_id)
            entity = await self._gateway.fetch_payment(attempt.gateway_payment_id) if self._gateway else None
            if not entity:
                raise GatewayPaymentUnavailableException(attempt.gateway_payment_id)
        except BusinessException as exc:
            logger.warning("payment_status_sync_failed", order_id=order_id, error=exc.message)
            return _failure(exc)

        # the stored attempt decides which order the status applies to
        details = replace(
            self._gateway.to_gateway_payment(entity),
            gateway_payment_id=attempt.gateway_payment_id,
            gateway_order_id=attempt.gateway_transaction_id,
        )
        transition = _SYNC_TRANSITIONS.get(details.status or "")
        if transition is None:
            result = ActionResult(success=True, message="Payment status unchanged")
        else:
            result = await self._execute(
                order_id,
                lambda machine: getattr(machine, transition)(details),
                context,
                name="sync_payment_status",
                action=AuditAction.PAYMENT_STATUS_SYNCED,
            )
        result.data.update(gateway_payment_id=attempt.gateway_payment_id, gateway_status=details.status)

        if result.success:
            await self._audit.append(AuditLogEntry.build(
                AuditAction.PAYMENT_STATUS_SYNCED.value,
                "payment",
                attempt.id,
                context,
                changes={
                    "order_id": order_id,
                    "gateway_payment_id": attempt.gateway_payment_id,
                    "previous_status": attempt.status.value,
                    "gateway_status": details.status,
                    "processed": result.processed,
                },
            ))
        logger.info(
            "payment_status_synced",
            order_id=order_id,
            gateway_payment_id=attempt.gateway_payment_id,
            gateway_status=details.status,
            processed=result.processed,
        )
        return result
