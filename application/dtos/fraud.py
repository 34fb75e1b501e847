"""
Fraud analysis DTOs.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.types import condecimal

from domain.fraud.entity import FraudAnalysisResult, PaymentContext
from .base import DTOBase


class FraudAnalysisRequest(BaseModel):
    amount: condecimal(ge=0)  # type: ignore[valid-type]
    currency: str = Field(default="INR")
    email: str = Field(..., min_length=3, max_length=255)
    order_id: Optional[int] = None
    payment_id: Optional[int] = None
    order_created_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    billing_address: Optional[dict] = None
    shipping_address: Optional[dict] = None
    payment_method: Optional[str] = None
    card_last4: Optional[str] = Field(None, min_length=4, max_length=4)
    card_brand: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u

    def to_context(self) -> PaymentContext:
        return PaymentContext(
            amount=Decimal(self.amount),
            currency=self.currency,
            email=self.email,
            order_id=self.order_id,
            payment_id=self.payment_id,
            order_created_at=self.order_created_at,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            billing_address=self.billing_address,
            shipping_address=self.shipping_address,
            payment_method=self.payment_method,
            card_last4=self.card_last4,
            card_brand=self.card_brand,
        )


class FraudAnalysisResponse(DTOBase):
    score: int
    level: str
    flags: list[str]
    reasons: list[str]
    recommendations: list[str]
    degraded: list[str] = Field(default_factory=list)
    analyzed_at: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: FraudAnalysisResult) -> "FraudAnalysisResponse":
        return cls(**result.to_dict(), analyzed_at=result.analyzed_at)
