"""
Order / payment state machine (domain service).

Every public method follows the same shape: lock the order row, validate the
transition on the entities, write order + payment + ledger changes through the
repositories of the caller's unit of work, and collect domain events. The
caller owns the transaction, so a raised BusinessException leaves no writes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional

from domain.audit.entity import SYSTEM_ACTOR
from domain.common.clock import Clock, utcnow
from domain.common.exceptions import (
    OrderNotFoundException,
    PaymentNotFoundException,
    PaymentNotRefundableException,
)
from domain.fraud.entity import FraudAnalysisResult
from domain.inventory.entity import InventoryAdjustment
from domain.inventory.repository import InventoryLedger
from domain.payment.entity import GatewayPayment, Payment, PaymentStatus, Refund
from domain.payment.repository import PaymentRepository, RefundRepository
from .entity import (
    FulfillmentStatus,
    InventoryState,
    LedgerLine,
    Order,
    OrderStatus,
    StatusChange,
)
from .events import (
    InventoryInconsistencyDetected,
    InventoryReserved,
    OrderCancelled,
    OrderEvent,
    OrderFulfilled,
    OrderMarkedPaid,
    OrderNoteAdded,
    OrderStatusUpdated,
    PaymentAuthorized,
    PaymentCaptured,
    PaymentFailed,
    RefundProcessed,
)
from .history import NOTE_MARKER
from .repository import OrderRepository


@dataclass
class TransitionOutcome:
    processed: bool
    message: str
    order: Optional[Order] = None
    payment: Optional[Payment] = None
    data: dict[str, Any] = field(default_factory=dict)


class OrderStateMachine:
    """
    Applies gateway events and admin actions to the Order + Payment aggregate.

    Rules:
    1. re-applying a state the aggregate already passed is a successful no-op
    2. capture is the only transition moving reserved stock to committed
    3. failure and cancellation release what the order still holds
    4. refunds never exceed total_amount - refunded_amount
    """

    def __init__(
        self,
        orders: OrderRepository,
        payments: PaymentRepository,
        refunds: RefundRepository,
        ledger: InventoryLedger,
        *,
        default_location_id: str = "default",
        clock: Clock = utcnow,
    ) -> None:
        self.orders = orders
        self.payments = payments
        self.refunds = refunds
        self.ledger = ledger
        self.default_location_id = default_location_id
        self._clock = clock
        self.events: List[OrderEvent] = []

    def clear_events(self) -> List[OrderEvent]:
        events, self.events = self.events, []
        return events

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    async def _lock_order(self, order_id: int) -> Order:
        order = await self.orders.get(order_id, for_update=True)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order

    @staticmethod
    def _match_attempt(candidates: List[Payment], gateway_payment_id: str) -> Optional[Payment]:
        for payment in candidates:
            if payment.gateway_payment_id == gateway_payment_id:
                return payment
        for payment in candidates:
            if payment.gateway_payment_id is None:
                return payment
        return None

    async def find_attempt(self, details: GatewayPayment) -> tuple[Optional[Order], Optional[Payment]]:
        """Read-only lookup; the payment is None when the event would open a new attempt."""
        candidates = await self.payments.list_by_gateway_transaction_id(details.gateway_order_id)
        if not candidates:
            return None, None
        order = await self.orders.get(candidates[0].order_id)
        return order, self._match_attempt(candidates, details.gateway_payment_id)

    async def _load_for_update(self, details: GatewayPayment) -> tuple[Order, Payment]:
        candidates = await self.payments.list_by_gateway_transaction_id(details.gateway_order_id)
        if not candidates:
            raise PaymentNotFoundException(details.gateway_order_id)
        # order row first, then its payments: one lock order for every transition
        order = await self._lock_order(candidates[0].order_id)
        candidates = await self.payments.list_by_gateway_transaction_id(
            details.gateway_order_id, for_update=True
        )
        payment = self._match_attempt(candidates, details.gateway_payment_id)
        if payment is None:
            # a retry on a gateway order whose earlier attempts are already settled
            template = candidates[0]
            now = self._clock()
            payment = await self.payments.add(Payment(
                id=None,
                order_id=template.order_id,
                gateway_transaction_id=template.gateway_transaction_id,
                amount=template.amount,
                currency=template.currency,
                gateway=template.gateway,
                gateway_payment_id=details.gateway_payment_id,
                created_at=now,
                updated_at=now,
            ))
        return order, payment

    async def _live_sibling(self, order: Order, payment: Payment) -> Optional[Payment]:
        """Another attempt of the order that is authorized or captured, if any."""
        for other in await self.payments.list_by_order(order.id, for_update=True):
            if other.id == payment.id or other.is_refund_mirror:
                continue
            if other.status in (PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED):
                return other
        return None

    async def _save_order(
        self,
        order: Order,
        changes: List[StatusChange],
        *,
        note: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> Order:
        saved = await self.orders.update(order)
        for change in changes:
            await self.orders.add_history(order.id, change, note=note, changed_by=actor)
        return saved

    # ------------------------------------------------------------------
    # Ledger side effects
    # ------------------------------------------------------------------
    def _check_adjustment(self, order: Order, adjustment: InventoryAdjustment) -> None:
        if adjustment.inconsistent:
            self.events.append(InventoryInconsistencyDetected(
                order_id=order.id,
                changes={
                    "variant_id": adjustment.variant_id,
                    "location_id": adjustment.location_id,
                    "movement": adjustment.movement.value,
                    "requested": adjustment.requested,
                    "applied": adjustment.applied,
                },
            ))

    async def _apply_lines(self, order: Order, operation, lines: List[LedgerLine], actor: str) -> None:
        for line in lines:
            adjustment = await operation(
                line.variant_id,
                line.location_id,
                line.quantity,
                reference_id=str(order.id),
                created_by=actor,
            )
            self._check_adjustment(order, adjustment)

    def _flag_missing_reservation(self, order: Order, movement: str) -> None:
        self.events.append(InventoryInconsistencyDetected(
            order_id=order.id,
            changes={"movement": movement, "inventory_state": order.inventory_state.value},
        ))

    async def _commit_inventory(self, order: Order, actor: str) -> None:
        if order.inventory_state == InventoryState.RESERVED:
            await self._apply_lines(order, self.ledger.commit, order.reservation_lines(self.default_location_id), actor)
            order.inventory_state = InventoryState.COMMITTED
        elif order.inventory_state != InventoryState.COMMITTED:
            self._flag_missing_reservation(order, "commit")

    async def _release_inventory(self, order: Order, actor: str) -> None:
        if order.inventory_state != InventoryState.RESERVED:
            return
        # shipped units are gone from the shelf: commit them, release the rest
        shipped = [
            LedgerLine(item.variant_id, item.location_id or self.default_location_id, item.fulfilled_quantity)
            for item in order.items
            if item.variant_id and item.fulfilled_quantity > 0
        ]
        await self._apply_lines(order, self.ledger.release, order.releasable_lines(self.default_location_id), actor)
        await self._apply_lines(order, self.ledger.commit, shipped, actor)
        order.inventory_state = InventoryState.RELEASED

    # ------------------------------------------------------------------
    # Gateway events
    # ------------------------------------------------------------------
    async def authorize_payment(
        self,
        details: GatewayPayment,
        risk: Optional[FraudAnalysisResult] = None,
    ) -> TransitionOutcome:
        order, payment = await self._load_for_update(details)
        now = self._clock()
        if not payment.authorize(now):
            return TransitionOutcome(False, "Payment already authorized", order, payment)
        payment.apply_gateway_details(details)
        if risk is not None:
            payment.record_risk(risk.score, risk.level.value)
        payment = await self.payments.update(payment)

        changes = order.record_authorization(now)
        order = await self._save_order(order, changes, note="Payment authorized")
        self.events.append(PaymentAuthorized(
            order_id=order.id,
            payment_id=payment.id,
            changes={
                "gateway_payment_id": details.gateway_payment_id,
                "amount": str(payment.amount),
                "method": payment.payment_method,
            },
        ))
        return TransitionOutcome(True, "Payment authorized successfully", order, payment)

    async def capture_payment(
        self,
        details: GatewayPayment,
        risk: Optional[FraudAnalysisResult] = None,
    ) -> TransitionOutcome:
        order, payment = await self._load_for_update(details)
        now = self._clock()
        if not payment.capture(now):
            return TransitionOutcome(False, "Payment already captured", order, payment)
        payment.apply_gateway_details(details)
        if risk is not None:
            payment.record_risk(risk.score, risk.level.value)
        payment = await self.payments.update(payment)

        changes = order.record_capture(now)
        await self._commit_inventory(order, SYSTEM_ACTOR)
        order = await self._save_order(order, changes, note="Payment captured")
        self.events.append(PaymentCaptured(
            order_id=order.id,
            payment_id=payment.id,
            changes={
                "gateway_payment_id": details.gateway_payment_id,
                "amount": str(payment.amount),
                "method": payment.payment_method,
                "inventory_state": order.inventory_state.value,
            },
        ))
        return TransitionOutcome(True, "Payment captured successfully", order, payment)

    async def fail_payment(self, details: GatewayPayment) -> TransitionOutcome:
        order, payment = await self._load_for_update(details)
        now = self._clock()
        previous = payment.status
        if not payment.fail(now, error_code=details.error_code, error_description=details.error_description):
            message = (
                "Payment already failed" if previous == PaymentStatus.FAILED
                else f"Payment already {previous.value}, failure ignored"
            )
            return TransitionOutcome(False, message, order, payment)
        payment.apply_gateway_details(details)
        payment = await self.payments.update(payment)
        failure = {
            "gateway_payment_id": details.gateway_payment_id,
            "error_code": details.error_code,
            "error_description": details.error_description,
        }

        live = await self._live_sibling(order, payment)
        if live is not None:
            # another attempt holds the order; only this attempt is closed
            self.events.append(PaymentFailed(
                order_id=order.id,
                payment_id=payment.id,
                changes={**failure, "superseded_by": live.gateway_payment_id, "order_untouched": True},
            ))
            return TransitionOutcome(
                True,
                "Payment attempt failed, superseded by an active attempt",
                order,
                payment,
                data={"active_payment_id": live.gateway_payment_id},
            )

        changes = order.record_payment_failure(now)
        if not order.is_paid:
            await self._release_inventory(order, SYSTEM_ACTOR)
        order = await self._save_order(order, changes, note=details.error_description or "Payment failed")
        self.events.append(PaymentFailed(
            order_id=order.id,
            payment_id=payment.id,
            changes=failure,
        ))
        return TransitionOutcome(True, "Payment failure processed successfully", order, payment)

    async def confirm_order_paid(self, gateway_order_id: str) -> TransitionOutcome:
        candidates = await self.payments.list_by_gateway_transaction_id(gateway_order_id)
        if not candidates:
            raise OrderNotFoundException(reference=gateway_order_id)
        order = await self._lock_order(candidates[0].order_id)
        changes = order.confirm_paid(self._clock())
        if not changes:
            return TransitionOutcome(False, "Order already marked as paid", order)
        order = await self._save_order(order, changes, note="Gateway order paid")
        self.events.append(OrderMarkedPaid(order_id=order.id, changes={"gateway_order_id": gateway_order_id}))
        return TransitionOutcome(True, "Order marked as paid successfully", order)

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------
    async def _cancel_locked(self, order: Order, reason: Optional[str], actor: str) -> TransitionOutcome:
        previous = order.status
        changes = order.cancel(self._clock(), reason)
        await self._release_inventory(order, actor)
        order = await self._save_order(order, changes, note=reason or "Order cancelled", actor=actor)
        self.events.append(OrderCancelled(
            order_id=order.id,
            changes={
                "from_status": previous.value,
                "reason": reason,
                "payment_status": order.payment_status.value,
                "inventory_state": order.inventory_state.value,
            },
        ))
        return TransitionOutcome(True, "Order cancelled successfully", order)

    async def cancel_order(self, order_id: int, *, reason: Optional[str] = None, actor: str = SYSTEM_ACTOR) -> TransitionOutcome:
        order = await self._lock_order(order_id)
        return await self._cancel_locked(order, reason, actor)

    async def update_status(
        self,
        order_id: int,
        *,
        status: Optional[OrderStatus] = None,
        fulfillment_status: Optional[FulfillmentStatus] = None,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        carrier: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> TransitionOutcome:
        order = await self._lock_order(order_id)
        if status == OrderStatus.CANCELLED:
            return await self._cancel_locked(order, note, actor)

        now = self._clock()
        before = {"status": order.status.value, "fulfillment_status": order.fulfillment_status.value}
        changes: List[StatusChange] = []
        if status is not None:
            changes += order.transition_to(status, now)
        if fulfillment_status is not None:
            changes += order.change_fulfillment_status(fulfillment_status, now)
        order.update_tracking(tracking_number=tracking_number, tracking_url=tracking_url, carrier=carrier)

        order = await self._save_order(order, changes, note=note, actor=actor)
        after = {"status": order.status.value, "fulfillment_status": order.fulfillment_status.value}
        self.events.append(OrderStatusUpdated(
            order_id=order.id,
            changes={
                key: {"from": before[key], "to": after[key]}
                for key in before
                if before[key] != after[key]
            } | {"note": note, "tracking_number": tracking_number},
        ))
        processed = bool(changes) or any(v is not None for v in (tracking_number, tracking_url, carrier))
        return TransitionOutcome(processed, "Order status updated successfully", order)

    async def fulfill_order(
        self,
        order_id: int,
        *,
        quantities: Optional[dict[int, int]] = None,
        tracking_number: Optional[str] = None,
        tracking_url: Optional[str] = None,
        carrier: Optional[str] = None,
        actor: str = SYSTEM_ACTOR,
    ) -> TransitionOutcome:
        order = await self._lock_order(order_id)
        previous = order.fulfillment_status
        changes = order.fulfill(quantities, self._clock())
        order.update_tracking(tracking_number=tracking_number, tracking_url=tracking_url, carrier=carrier)
        if quantities is None:
            note = "Order fully fulfilled"
        else:
            note = f"Partially fulfilled {len(quantities)} items"
        if not changes:
            # quantities moved without a status change still leave a trace
            marker = f"fulfillment_{order.fulfillment_status.value}"
            changes = [StatusChange(marker, marker)]
        order = await self._save_order(order, changes, note=note, actor=actor)
        self.events.append(OrderFulfilled(
            order_id=order.id,
            changes={
                "from": previous.value,
                "to": order.fulfillment_status.value,
                "items": {str(item.id): item.fulfilled_quantity for item in order.items},
                "tracking_number": tracking_number,
            },
        ))
        return TransitionOutcome(True, note, order)

    async def refund_order(
        self,
        order_id: int,
        amount: Decimal,
        *,
        reason: Optional[str] = None,
        restock_items: bool = False,
        actor: str = SYSTEM_ACTOR,
    ) -> TransitionOutcome:
        order = await self._lock_order(order_id)
        now = self._clock()
        previous = order.payment_status
        changes = order.apply_refund(amount, now)

        payments = await self.payments.list_by_order(order.id, for_update=True)
        captured = next(
            (p for p in payments if not p.is_refund_mirror and p.status == PaymentStatus.CAPTURED),
            None,
        )
        if captured is None:
            raise PaymentNotRefundableException(previous.value)

        refund = await self.refunds.add(Refund(
            id=None,
            order_id=order.id,
            payment_id=captured.id,
            amount=amount,
            currency=order.currency,
            reason=reason,
            created_by=actor,
            restock_items=restock_items,
            created_at=now,
        ))
        mirror = await self.payments.add(Payment.refund_mirror(refund, captured, now))
        refund.mark_succeeded(now)
        refund = await self.refunds.update(refund)

        if order.refunded_amount >= order.total_amount:
            captured.mark_refunded(now, reason)
            await self.payments.update(captured)

        restocked: list[dict[str, Any]] = []
        if restock_items:
            if order.inventory_state == InventoryState.COMMITTED:
                lines = order.take_restock_lines(self.default_location_id)
                await self._apply_lines(order, self.ledger.restock, lines, actor)
                restocked = [{"variant_id": l.variant_id, "quantity": l.quantity} for l in lines]
            else:
                self._flag_missing_reservation(order, "restock")

        order = await self._save_order(order, changes, note=reason or "Refund processed", actor=actor)
        self.events.append(RefundProcessed(
            order_id=order.id,
            payment_id=captured.id,
            changes={
                "refund_id": refund.id,
                "amount": str(amount),
                "refunded_amount": str(order.refunded_amount),
                "payment_status": order.payment_status.value,
                "mirror_payment_id": mirror.id,
                "restocked": restocked,
            },
        ))
        return TransitionOutcome(
            True,
            "Refund processed successfully",
            order,
            captured,
            data={"refund_id": refund.id, "refunded_amount": str(order.refunded_amount)},
        )

    async def add_note(self, order_id: int, note: str, *, actor: str = SYSTEM_ACTOR) -> TransitionOutcome:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        await self.orders.add_history(
            order.id, StatusChange(NOTE_MARKER, NOTE_MARKER), note=note, changed_by=actor
        )
        self.events.append(OrderNoteAdded(order_id=order.id, changes={"note": note}))
        return TransitionOutcome(True, "Note added successfully", order)

    async def reserve_inventory(self, order_id: int, *, actor: str = SYSTEM_ACTOR) -> TransitionOutcome:
        order = await self._lock_order(order_id)
        if order.inventory_state != InventoryState.UNRESERVED:
            return TransitionOutcome(False, f"Inventory already {order.inventory_state.value}", order)
        lines = order.reservation_lines(self.default_location_id)
        for line in lines:
            await self.ledger.reserve(
                line.variant_id, line.location_id, line.quantity,
                reference_id=str(order.id), created_by=actor,
            )
        order.inventory_state = InventoryState.RESERVED
        order = await self._save_order(order, [], actor=actor)
        self.events.append(InventoryReserved(
            order_id=order.id,
            changes={"lines": [{"variant_id": l.variant_id, "location_id": l.location_id, "quantity": l.quantity} for l in lines]},
        ))
        return TransitionOutcome(True, "Inventory reserved successfully", order)
