"""
Inventory ledger routes.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from application.services.inventory_service import InventoryService
from core.exceptions import NotFoundException
from core.response import success_response
from domain.audit.entity import AuditContext
from domain.inventory.entity import InventoryAdjustment, InventoryLevel
from api.dependencies import get_actor_context, get_inventory_service


router = APIRouter(prefix="/inventory", tags=["Inventory"])


class ReceiveStockRequest(BaseModel):
    quantity: int = Field(..., gt=0)


def _level(level: InventoryLevel) -> dict:
    return {
        "variant_id": level.variant_id,
        "location_id": level.location_id,
        "available": level.available,
        "reserved": level.reserved,
        "committed": level.committed,
        "total": level.total,
    }


def _adjustment(adj: InventoryAdjustment) -> dict:
    return {
        "id": adj.id,
        "variant_id": adj.variant_id,
        "location_id": adj.location_id,
        "movement": adj.movement.value,
        "requested": adj.requested,
        "applied": adj.applied,
        "reference_type": adj.reference_type,
        "reference_id": adj.reference_id,
        "inconsistent": adj.inconsistent,
        "note": adj.note,
        "created_by": adj.created_by,
        "created_at": adj.created_at.isoformat() if adj.created_at else None,
    }


@router.get("/adjustments", summary="Ledger journal, newest first")
async def list_adjustments(
    variant_id: Optional[str] = Query(default=None),
    reference_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    service: InventoryService = Depends(get_inventory_service),
):
    adjustments = await service.list_adjustments(variant_id=variant_id, reference_id=reference_id, limit=limit)
    return success_response(data=[_adjustment(a) for a in adjustments])


@router.get("/{variant_id}/{location_id}", summary="Current counters of one variant at one location")
async def get_inventory_level(
    variant_id: str,
    location_id: str,
    service: InventoryService = Depends(get_inventory_service),
):
    level = await service.get_level(variant_id, location_id)
    if level is None:
        raise NotFoundException(f"No inventory for {variant_id} at {location_id}")
    return success_response(data=_level(level))


@router.post("/{variant_id}/{location_id}/receive", summary="Add new stock to available")
async def receive_stock(
    variant_id: str,
    location_id: str,
    req: ReceiveStockRequest,
    context: AuditContext = Depends(get_actor_context),
    service: InventoryService = Depends(get_inventory_service),
):
    level = await service.receive(variant_id, location_id, req.quantity, actor=context.actor_id)
    return success_response(data=_level(level))
