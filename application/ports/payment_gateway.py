"""
Payment gateway port (application/ports) exposing a replaceable protocol.

The webhook dispatcher depends on this Protocol; infrastructure implements
adapters (Razorpay today).
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from domain.payment.entity import GatewayPayment


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for inbound payment notifications."""

    provider: str

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool: ...

    def to_gateway_payment(self, entity: dict[str, Any]) -> GatewayPayment: ...

    async def fetch_payment(self, gateway_payment_id: str) -> Optional[dict[str, Any]]: ...

    async def aclose(self) -> None: ...
