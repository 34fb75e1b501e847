"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Every key is read with the ``PAYMENT__`` prefix, e.g.
``PAYMENT__WEBHOOK__SECRET`` or ``PAYMENT__FRAUD__TIMEOUT_SECONDS``.
The objects here are only read by the composition root (API dependencies,
Celery tasks); services receive plain values through their constructors.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, model_validator


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class RazorpaySettings(BaseModel):
    key_id: Optional[str] = None
    key_secret: Optional[str] = None
    api_base: str = "https://api.razorpay.com/v1"
    # Fetch the payment from the gateway API when the webhook entity lacks details
    fetch_details: bool = False


class WebhookSettings(BaseModel):
    secret: Optional[str] = None
    signature_header: str = "X-Razorpay-Signature"
    event_id_header: str = "X-Razorpay-Event-Id"
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks
    idempotency_ttl_minutes: int = 120


class IdempotencySettings(BaseModel):
    backend: Literal["database", "redis"] = "database"
    cleanup_interval_seconds: int = 3600


class FraudSettings(BaseModel):
    # Upper bound for one analysis; on timeout a medium/manual-review result is used
    timeout_seconds: float = 3.0
    # Amounts are in major currency units
    very_high_amount: Decimal = Decimal("100000")
    high_amount: Decimal = Decimal("50000")
    card_testing_amount: Decimal = Decimal("1")
    round_amount_unit: Decimal = Decimal("1000")
    round_amount_min: Decimal = Decimal("5000")


class InventorySettings(BaseModel):
    default_location_id: str = "default"


class PaymentSettings(BaseSettings):
    gateway: str = "razorpay"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    razorpay: RazorpaySettings = Field(default_factory=RazorpaySettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    idempotency: IdempotencySettings = Field(default_factory=IdempotencySettings)
    fraud: FraudSettings = Field(default_factory=FraudSettings)
    inventory: InventorySettings = Field(default_factory=InventorySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @model_validator(mode="after")
    def _validate_webhook_secret(self):
        # Unsigned webhooks are never accepted, so the shared secret is mandatory
        if not self.webhook.secret:
            raise ValueError(
                "PAYMENT__WEBHOOK__SECRET is not configured. Set it in the environment or .env"
            )
        return self


payment_settings = PaymentSettings()
