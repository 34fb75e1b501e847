"""
Shared business codes used across layers (Domain/Core/API).

This package exposes BusinessCode at `shared.codes`; the values are the
single source of truth for error payloads and HTTP status mapping.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # Generic resource not found

    # Order / payment reconciliation (201xx)
    ORDER_NOT_FOUND = 20100
    PAYMENT_NOT_FOUND = 20101
    INVALID_TRANSITION = 20102
    REFUND_EXCEEDS_BALANCE = 20103
    PAYMENT_NOT_REFUNDABLE = 20104
    INSUFFICIENT_INVENTORY = 20105
    INVALID_WEBHOOK_PAYLOAD = 20106

    # Authorization errors (3xxxx)
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002
    SIGNATURE_INVALID = 30003

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003
    IDEMPOTENCY_STORE_UNAVAILABLE = 40004

    # Rate limiting (5xxxx)
    RATE_LIMIT_ERROR = 50000
    TOO_MANY_REQUESTS = 50001


__all__ = ["BusinessCode"]
