"""
Webhook API routes.

Authenticated deliveries always get a 2xx ``{success, message, processed}``
body; only signature, payload, allowlist and infrastructure failures map to
error statuses so the gateway retries where it should.
"""
from __future__ import annotations

import ipaddress
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from application.services.webhook_dispatcher import WebhookDispatcher
from core.exceptions import ForbiddenException
from core.logging_config import get_logger
from core.response import success_response
from core.settings import payment_settings
from domain.audit.entity import AuditContext
from api.dependencies import get_system_context, get_webhook_dispatcher


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


def _ip_permitted(remote_ip: Optional[str], allowlist: list[str]) -> bool:
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


@router.post("/payments", summary="Receive a payment gateway notification")
async def receive_payment_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    context: AuditContext = Depends(get_system_context),
):
    webhook = payment_settings.webhook
    remote_ip = request.client.host if request.client else None
    if not _ip_permitted(remote_ip, webhook.ip_allowlist or []):
        logger.warning("webhook_ip_rejected", remote_ip=remote_ip)
        raise ForbiddenException("Source address not allowed")

    body = await request.body()
    result = await dispatcher.receive(
        body,
        request.headers.get(webhook.signature_header),
        delivery_id=request.headers.get(webhook.event_id_header),
        context=context,
    )
    # the gateway reads this body as-is, outside the response envelope
    return JSONResponse(status_code=200, content=result.model_dump(mode="json", exclude_none=True))


@router.get("/deliveries", summary="Recent webhook deliveries")
async def list_deliveries(
    event_type: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    deliveries = await dispatcher.list_deliveries(event_type=event_type, status=status, skip=skip, limit=limit)
    return success_response(data=[d.model_dump(mode="json") for d in deliveries])


@router.get("/deliveries/stats", summary="Webhook delivery health over a window of days")
async def delivery_stats(
    days: int = Query(default=7, ge=1, le=90),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    stats = await dispatcher.delivery_stats(days)
    return success_response(data=stats.model_dump(mode="json"))
