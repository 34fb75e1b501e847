"""
Webhook dispatcher: authenticate, classify and route gateway notifications.

Flow for one delivery:
1. verify the HMAC signature before touching the body (no claim on failure)
2. parse the envelope and look the event up in the handler table
3. claim the idempotency key; duplicates return immediately
4. run the handler, save its result against the key
5. record the delivery (payload, outcome, latency) for observability

The idempotency store answers "was this already done"; the delivery log
answers "what arrived and how long it took". They are written separately.
"""
from __future__ import annotations

import hashlib
import json
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError
from structlog.contextvars import bound_contextvars

from application.dtos.webhooks import (
    WebhookDeliveryDTO,
    WebhookDeliveryStatsDTO,
    WebhookPayload,
    WebhookProcessingResult,
)
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.audit.entity import AuditContext
from domain.common.clock import utcnow
from domain.common.exceptions import (
    InvalidWebhookPayloadException,
    WebhookSignatureInvalidException,
)
from domain.idempotency.entity import IdempotencyStatus, build_webhook_key
from domain.idempotency.store import IdempotencyStore
from domain.payment.entity import GatewayPayment
from domain.webhook.entity import DeliveryStatus, WebhookDelivery
from shared.codes import BusinessCode
from .reconciliation_service import ReconciliationService


logger = get_logger(__name__)

Handler = Callable[[WebhookPayload, AuditContext], Awaitable[WebhookProcessingResult]]


def _invalid(message: str) -> WebhookProcessingResult:
    return WebhookProcessingResult(
        success=False,
        message=message,
        error="InvalidWebhookPayload",
        code=int(BusinessCode.INVALID_WEBHOOK_PAYLOAD),
    )


class WebhookDispatcher:
    def __init__(
        self,
        gateway: PaymentGateway,
        store: IdempotencyStore,
        reconciliation: ReconciliationService,
        uow_factory,
        *,
        ttl_minutes: int = 120,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._reconciliation = reconciliation
        self._uow_factory = uow_factory
        self._ttl_minutes = ttl_minutes
        self._handlers: dict[str, Handler] = {
            "payment.authorized": self._on_payment_authorized,
            "payment.captured": self._on_payment_captured,
            "payment.failed": self._on_payment_failed,
            "order.paid": self._on_order_paid,
        }

    @property
    def supported_events(self) -> list[str]:
        return sorted(self._handlers)

    def register(self, event: str, handler: Handler) -> None:
        self._handlers[event] = handler

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _payment_details(self, payload: WebhookPayload) -> Optional[GatewayPayment]:
        entity = payload.payment_entity
        if not entity or not entity.get("id"):
            return None
        if not entity.get("order_id"):
            fetched = await self._gateway.fetch_payment(str(entity["id"]))
            if fetched:
                entity = {**fetched, **{k: v for k, v in entity.items() if v is not None}}
        details = self._gateway.to_gateway_payment(entity)
        return details if details.gateway_order_id else None

    async def _on_payment_authorized(self, payload: WebhookPayload, context: AuditContext) -> WebhookProcessingResult:
        details = await self._payment_details(payload)
        if details is None:
            return _invalid("Missing payment entity in webhook payload")
        return await self._reconciliation.authorize_payment(details, context)

    async def _on_payment_captured(self, payload: WebhookPayload, context: AuditContext) -> WebhookProcessingResult:
        details = await self._payment_details(payload)
        if details is None:
            return _invalid("Missing payment entity in webhook payload")
        return await self._reconciliation.capture_payment(details, context)

    async def _on_payment_failed(self, payload: WebhookPayload, context: AuditContext) -> WebhookProcessingResult:
        details = await self._payment_details(payload)
        if details is None:
            return _invalid("Missing payment entity in webhook payload")
        return await self._reconciliation.fail_payment(details, context)

    async def _on_order_paid(self, payload: WebhookPayload, context: AuditContext) -> WebhookProcessingResult:
        order_entity = payload.order_entity or {}
        payment_entity = payload.payment_entity or {}
        gateway_order_id = order_entity.get("id") or payment_entity.get("order_id")
        if not gateway_order_id:
            return _invalid("Missing order entity in webhook payload")
        return await self._reconciliation.confirm_order_paid(str(gateway_order_id), context)

    # ------------------------------------------------------------------
    # Delivery log
    # ------------------------------------------------------------------
    async def _record(
        self,
        delivery_id: str,
        event: str,
        status: DeliveryStatus,
        payload: dict[str, Any],
        response: dict[str, Any],
        started: float,
    ) -> None:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        try:
            async with self._uow_factory() as uow:
                await uow.webhook_delivery_repository.add(WebhookDelivery(
                    delivery_id=delivery_id,
                    event_type=event,
                    status=status,
                    payload=payload,
                    response=response,
                    processing_time_ms=elapsed_ms,
                    gateway=self._gateway.provider,
                ))
        except Exception as exc:
            logger.error(
                "webhook_delivery_log_failed",
                delivery_id=delivery_id,
                webhook_event=event,
                status=status.value,
                error=str(exc),
                exc_info=True,
            )
            return
        logger.info(
            "webhook_delivery_recorded",
            delivery_id=delivery_id,
            webhook_event=event,
            status=status.value,
            processing_time_ms=elapsed_ms,
        )

    async def list_deliveries(
        self,
        *,
        event_type: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[WebhookDeliveryDTO]:
        async with self._uow_factory(readonly=True) as uow:
            deliveries = await uow.webhook_delivery_repository.list_recent(
                event_type=event_type, status=status, skip=skip, limit=limit
            )
        return [
            WebhookDeliveryDTO(
                id=d.id,
                delivery_id=d.delivery_id,
                gateway=d.gateway,
                event_type=d.event_type,
                status=d.status.value,
                response=d.response,
                processing_time_ms=d.processing_time_ms,
                created_at=d.created_at,
            )
            for d in deliveries
        ]

    async def delivery_stats(self, days: int = 7) -> WebhookDeliveryStatsDTO:
        """Delivery health over the last ``days`` days."""
        since = utcnow() - timedelta(days=days)
        async with self._uow_factory(readonly=True) as uow:
            stats = await uow.webhook_delivery_repository.stats(since)
        return WebhookDeliveryStatsDTO(
            since=stats.since,
            days=days,
            total=stats.total,
            success=stats.success,
            failed=stats.failed,
            duplicate=stats.duplicate,
            ignored=stats.ignored,
            average_processing_time_ms=stats.average_processing_time_ms,
            success_rate=stats.success_rate,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def _parse(self, body: bytes) -> tuple[dict[str, Any], WebhookPayload]:
        try:
            raw = json.loads(body)
        except (UnicodeDecodeError, ValueError) as exc:
            raise InvalidWebhookPayloadException("body is not valid JSON") from exc
        if not isinstance(raw, dict):
            raise InvalidWebhookPayloadException("body must be a JSON object")
        try:
            return raw, WebhookPayload.model_validate(raw)
        except ValidationError as exc:
            raise InvalidWebhookPayloadException(exc.errors()[0].get("msg", "validation failed")) from exc

    async def receive(
        self,
        body: bytes,
        signature: Optional[str],
        *,
        delivery_id: Optional[str] = None,
        context: Optional[AuditContext] = None,
    ) -> WebhookProcessingResult:
        """
        Process one authenticated delivery.

        Raises WebhookSignatureInvalidException (401), InvalidWebhookPayloadException
        (400) and IdempotencyStoreUnavailableException (503); any other error
        releases the claim and propagates so the gateway retries.
        """
        if not self._gateway.verify_signature(body, signature):
            logger.warning("webhook_signature_invalid", provider=self._gateway.provider)
            raise WebhookSignatureInvalidException()

        started = time.perf_counter()
        raw, payload = self._parse(body)
        delivery_id = delivery_id or hashlib.sha256(body).hexdigest()
        context = context or AuditContext()

        with bound_contextvars(delivery_id=delivery_id, webhook_event=payload.event):
            handler = self._handlers.get(payload.event)
            if handler is None:
                logger.info("webhook_event_ignored", webhook_event=payload.event)
                result = WebhookProcessingResult(
                    success=True,
                    message=f"Event {payload.event} acknowledged but not processed",
                    processed=False,
                )
                await self._record(
                    delivery_id, payload.event, DeliveryStatus.IGNORED, raw, result.model_dump(), started
                )
                return result

            key = build_webhook_key(delivery_id, payload.event, payload.resource_id)
            try:
                claim = await self._store.claim(key, self._ttl_minutes)
            except Exception as exc:
                await self._record(
                    delivery_id, payload.event, DeliveryStatus.FAILED, raw,
                    {"success": False, "message": "Idempotency store unavailable", "error": str(exc)},
                    started,
                )
                raise

            if not claim.is_new:
                logger.info("webhook_duplicate", idempotency_key=key, prior_status=getattr(claim.status, "value", None))
                result = WebhookProcessingResult(success=True, message="Webhook already processed", processed=False)
                await self._record(
                    delivery_id, payload.event, DeliveryStatus.DUPLICATE, raw, result.model_dump(), started
                )
                return result

            try:
                result = await handler(payload, context)
            except Exception as exc:
                logger.error(
                    "webhook_processing_failed",
                    idempotency_key=key,
                    error=str(exc),
                    exc_info=True,
                )
                try:
                    await self._store.release(key)
                except Exception as release_exc:
                    logger.error("idempotency_release_failed", idempotency_key=key, error=str(release_exc))
                await self._record(
                    delivery_id, payload.event, DeliveryStatus.FAILED, raw,
                    {"success": False, "message": "Internal processing error", "error": str(exc)},
                    started,
                )
                raise

            status = IdempotencyStatus.SUCCESS if result.success else IdempotencyStatus.ERROR
            try:
                await self._store.save(
                    key,
                    result.model_dump(),
                    status,
                    None if result.success else result.message,
                )
            except Exception as exc:
                # the transition is committed; a later redelivery finds the pending claim
                logger.error("idempotency_save_failed", idempotency_key=key, error=str(exc), exc_info=True)

            logger.info(
                "webhook_processed",
                success=result.success,
                processed=result.processed,
                message=result.message,
            )
            await self._record(
                delivery_id,
                payload.event,
                DeliveryStatus.SUCCESS if result.success else DeliveryStatus.FAILED,
                raw,
                result.model_dump(),
                started,
            )
            return result
