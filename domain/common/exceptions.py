"""Business exceptions shared by the domain and infrastructure layers.

The core layer only maps these to HTTP responses; the domain never imports
from core.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """Base class for business rule violations"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[int] = None, *, reference: Optional[str] = None):
        details = {}
        if order_id is not None:
            details["order_id"] = order_id
        if reference is not None:
            details["reference"] = reference
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details=details or None,
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, reference: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_FOUND,
            message=f"Payment record not found for order: {reference}",
            error_type="PaymentNotFound",
            details={"reference": reference},
        )


class InvalidTransitionException(BusinessException):
    def __init__(self, resource: str, current: str, target: str):
        super().__init__(
            code=BusinessCode.INVALID_TRANSITION,
            message=f"Cannot move {resource} from {current} to {target}",
            error_type="InvalidTransition",
            details={"resource": resource, "from": current, "to": target},
            field="status",
        )


class RefundExceedsBalanceException(BusinessException):
    def __init__(self, requested: Decimal, available: Decimal):
        super().__init__(
            code=BusinessCode.REFUND_EXCEEDS_BALANCE,
            message=f"Refund amount {requested} exceeds refundable balance {available}",
            error_type="RefundExceedsBalance",
            details={"requested": str(requested), "available": str(available)},
            field="amount",
        )


class PaymentNotRefundableException(BusinessException):
    def __init__(self, payment_status: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_REFUNDABLE,
            message=f"Order payment status is {payment_status}, nothing to refund",
            error_type="PaymentNotRefundable",
            details={"payment_status": payment_status},
        )


class InsufficientInventoryException(BusinessException):
    def __init__(self, variant_id: str, location_id: str, requested: int):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_INVENTORY,
            message=f"Not enough stock for variant {variant_id} at {location_id}",
            error_type="InsufficientInventory",
            details={"variant_id": variant_id, "location_id": location_id, "requested": requested},
        )


class InvalidWebhookPayloadException(BusinessException):
    def __init__(self, reason: str):
        super().__init__(
            code=BusinessCode.INVALID_WEBHOOK_PAYLOAD,
            message=f"Invalid webhook payload: {reason}",
            error_type="InvalidWebhookPayload",
        )


class WebhookSignatureInvalidException(BusinessException):
    def __init__(self):
        super().__init__(
            code=BusinessCode.SIGNATURE_INVALID,
            message="Invalid webhook signature",
            error_type="SignatureInvalid",
        )


class IdempotencyStoreUnavailableException(BusinessException):
    def __init__(self, reason: Optional[str] = None):
        super().__init__(
            code=BusinessCode.IDEMPOTENCY_STORE_UNAVAILABLE,
            message="Idempotency store unavailable, retry later",
            error_type="IdempotencyStoreUnavailable",
            details={"reason": reason} if reason else None,
        )


class GatewayPaymentUnavailableException(BusinessException):
    def __init__(self, gateway_payment_id: str):
        super().__init__(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message=f"Gateway returned no status for payment: {gateway_payment_id}",
            error_type="GatewayPaymentUnavailable",
            details={"gateway_payment_id": gateway_payment_id},
        )
