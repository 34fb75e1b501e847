"""
Webhook DTOs: the gateway notification envelope and the processing result.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .base import DTOBase


class EntityEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    entity: dict[str, Any] = Field(default_factory=dict)


class WebhookPayloadBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment: Optional[EntityEnvelope] = None
    order: Optional[EntityEnvelope] = None


class WebhookPayload(BaseModel):
    """``{entity, account_id, event, contains[], payload: {payment?, order?}, created_at}``"""
    model_config = ConfigDict(extra="allow")

    entity: str = "event"
    account_id: Optional[str] = None
    event: str = Field(..., min_length=1)
    contains: list[str] = Field(default_factory=list)
    payload: WebhookPayloadBody = Field(default_factory=WebhookPayloadBody)
    created_at: Optional[int] = None

    @property
    def payment_entity(self) -> Optional[dict[str, Any]]:
        return self.payload.payment.entity if self.payload.payment else None

    @property
    def order_entity(self) -> Optional[dict[str, Any]]:
        return self.payload.order.entity if self.payload.order else None

    @property
    def resource_id(self) -> Optional[str]:
        for entity in (self.payment_entity, self.order_entity):
            if entity and entity.get("id"):
                return str(entity["id"])
        return None


class WebhookProcessingResult(BaseModel):
    """Body returned to the gateway for every authenticated delivery."""
    success: bool
    message: str
    processed: bool = False
    error: Optional[str] = None
    code: Optional[int] = None


class WebhookDeliveryDTO(DTOBase):
    id: int
    delivery_id: str
    gateway: str
    event_type: str
    status: str
    response: dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: int
    created_at: Optional[datetime] = None


class WebhookDeliveryStatsDTO(DTOBase):
    since: datetime
    days: int
    total: int
    success: int
    failed: int
    duplicate: int
    ignored: int
    average_processing_time_ms: int
    success_rate: int
