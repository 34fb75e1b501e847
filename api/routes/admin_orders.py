"""
Admin order routes.

Actions answer 200 with ``ActionResult``; a rejected action carries
``success=false`` plus the business error code instead of an HTTP error.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Path

from application.dtos.orders import (
    ActionResult,
    AddOrderNoteRequest,
    CancelOrderRequest,
    FulfillOrderRequest,
    RefundOrderRequest,
    SyncPaymentRequest,
    UpdateOrderStatusRequest,
)
from application.services.order_admin_service import OrderAdminService
from core.response import Response, success_response
from domain.audit.entity import AuditContext
from api.dependencies import get_actor_context, get_order_admin_service


router = APIRouter(prefix="/admin/orders", tags=["Admin orders"])


def _respond(result: ActionResult) -> Response:
    return success_response(data=result.model_dump(mode="json"), message=result.message)


@router.post("/{order_id}/status", summary="Update order / fulfillment status")
async def update_order_status(
    req: UpdateOrderStatusRequest,
    order_id: int = Path(..., gt=0),
    context: AuditContext = Depends(get_actor_context),
    service: OrderAdminService = Depends(get_order_admin_service),
):
    return _respond(await service.update_status(order_id, req, context))


@router.post("/{order_id}/fulfill", summary="Fulfill all or some items")
async def fulfill_order(
    req: FulfillOrderRequest,
    order_id: int = Path(..., gt=0),
    context: AuditContext = Depends(get_actor_context),
    service: OrderAdminService = Depends(get_order_admin_service),
):
    return _respond(await service.fulfill(order_id, req, context))


@router.post("/{order_id}/cancel", summary="Cancel an order")
async def cancel_order(
    req: CancelOrderRequest,
    order_id: int = Path(..., gt=0),
    context: AuditContext = Depends(get_actor_context),
    service: OrderAdminService = Depends(get_order_admin_service),
):
    return _respond(await service.cancel(order_id, req.reason, context))


@router.post("/{order_id}/refunds", summary="Process a refund")
async def refund_order(
    req: RefundOrderRequest,
    order_id: int = Path(..., gt=0),
    context: AuditContext = Depends(get_actor_context),
    service: OrderAdminService = Depends(get_order_admin_service),
):
    return _respond(await service.refund(
        order_id,
        req.amount,
        context,
        reason=req.reason,
        restock_items=req.restock_items,
    ))


@router.post("/{order_id}/notes", summary="Add a note to the order history")
async def add_order_note(
    req: AddOrderNoteRequest,
    order_id: int = Path(..., gt=0),
    context: AuditContext = Depends(get_actor_context),
    service: OrderAdminService = Depends(get_order_admin_service),
):
    return _respond(await service.add_note(order_id, req.note, context))


@router.post("/{order_id}/reserve-inventory", summary="Reserve stock for every item")
async def reserve_order_inventory(
    order_id: int = Path(..., gt=0),
    context: AuditContext = Depends(get_actor_context),
    service: OrderAdminService = Depends(get_order_admin_service),
):
    return _respond(await service.reserve_inventory(order_id, context))


@router.post("/{order_id}/sync-payment", summary="Re-read the payment status from the gateway")
async def sync_order_payment(
    req: Optional[SyncPaymentRequest] = None,
    order_id: int = Path(..., gt=0),
    context: AuditContext = Depends(get_actor_context),
    service: OrderAdminService = Depends(get_order_admin_service),
):
    gateway_payment_id = req.gateway_payment_id if req else None
    return _respond(await service.sync_payment_status(order_id, context, gateway_payment_id=gateway_payment_id))


@router.get("/{order_id}/payments", summary="Payment rows of an order (audited)")
async def get_order_payments(
    order_id: int = Path(..., gt=0),
    context: AuditContext = Depends(get_actor_context),
    service: OrderAdminService = Depends(get_order_admin_service),
):
    payments = await service.get_order_payments(order_id, context)
    return success_response(data=[p.model_dump(mode="json") for p in payments])
