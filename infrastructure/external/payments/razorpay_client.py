"""
Razorpay adapter: webhook signature verification, payment entity mapping and
an optional payment fetch through the REST API.

Razorpay signs the raw request body with HMAC-SHA256 using the webhook secret
and sends the hex digest in ``X-Razorpay-Signature``. Amounts are integers in
the smallest currency unit (paise for INR).
"""
from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal
from typing import Any, Optional

import httpx

from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.payment.entity import GatewayPayment
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentProviderError


logger = get_logger(__name__)

# currencies without a minor unit
_ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND", "CLP"}


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class RazorpayClient(BasePaymentClient):
    provider = "razorpay"

    def __init__(
        self,
        webhook_secret: str,
        *,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        api_base: str = "https://api.razorpay.com/v1",
        fetch_details: bool = False,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        auth = (key_id, key_secret) if key_id and key_secret else None
        super().__init__(timeouts=timeouts, retry=retry, auth=auth)
        if not webhook_secret:
            raise RuntimeError("PAYMENT__WEBHOOK__SECRET not configured")
        self._webhook_secret = webhook_secret
        self._api_base = api_base.rstrip("/")
        self._fetch_details = fetch_details and auth is not None

    @classmethod
    def from_settings(cls, settings: PaymentSettings) -> "RazorpayClient":
        return cls(
            settings.webhook.secret,
            key_id=settings.razorpay.key_id,
            key_secret=settings.razorpay.key_secret,
            api_base=settings.razorpay.api_base,
            fetch_details=settings.razorpay.fetch_details,
            timeouts=settings.timeouts.model_dump(),
            retry={"max": settings.retry.max, "base": settings.retry.base_backoff},
        )

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        expected = compute_signature(body, self._webhook_secret)
        return hmac.compare_digest(expected, signature.strip())

    @staticmethod
    def _to_major(amount: Any, currency: str) -> Optional[Decimal]:
        if amount is None:
            return None
        exponent = 0 if currency.upper() in _ZERO_DECIMAL_CURRENCIES else 2
        return Decimal(int(amount)) / (Decimal(10) ** exponent)

    def to_gateway_payment(self, entity: dict[str, Any]) -> GatewayPayment:
        currency = (entity.get("currency") or "INR").upper()
        card = entity.get("card") or {}
        return GatewayPayment(
            gateway_payment_id=str(entity.get("id") or ""),
            gateway_order_id=str(entity.get("order_id") or ""),
            amount=self._to_major(entity.get("amount"), currency),
            currency=currency,
            status=entity.get("status"),
            method=entity.get("method"),
            card_last4=card.get("last4"),
            card_brand=card.get("network"),
            email=entity.get("email"),
            error_code=entity.get("error_code"),
            error_description=entity.get("error_description"),
            raw=dict(entity),
        )

    async def fetch_payment(self, gateway_payment_id: str) -> Optional[dict[str, Any]]:
        """Fetch the payment from the API; returns None when disabled or on failure."""
        if not self._fetch_details or not gateway_payment_id:
            return None

        async def _call():
            async with self.client() as http:
                resp = await http.get(
                    f"{self._api_base}/payments/{gateway_payment_id}",
                    params={"expand[]": "card"},
                )
                if resp.status_code >= 500:
                    resp.raise_for_status()
                if resp.status_code >= 400:
                    raise PaymentProviderError(
                        resp.text, provider=self.provider, provider_code=str(resp.status_code)
                    )
                return resp.json()

        try:
            data = await self._retry(_call)
        except (httpx.HTTPError, PaymentProviderError) as exc:
            logger.warning(
                "gateway_payment_fetch_failed",
                provider=self.provider,
                gateway_payment_id=gateway_payment_id,
                error=str(exc),
            )
            return None
        self._log("gateway_payment_fetched", gateway_payment_id=gateway_payment_id)
        return data
