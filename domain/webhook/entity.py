"""
Webhook delivery log: what arrived, what happened, how long it took.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class WebhookDelivery:
    delivery_id: str
    event_type: str
    status: DeliveryStatus
    payload: dict[str, Any] = field(default_factory=dict)
    response: dict[str, Any] = field(default_factory=dict)
    processing_time_ms: int = 0
    gateway: str = "razorpay"
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class WebhookDeliveryStats:
    """Delivery counts and timings since ``since``."""
    since: datetime
    total: int = 0
    success: int = 0
    failed: int = 0
    duplicate: int = 0
    ignored: int = 0
    average_processing_time_ms: int = 0

    @property
    def success_rate(self) -> int:
        # percent of deliveries handled successfully; an idle window counts as healthy
        if not self.total:
            return 100
        return round(self.success * 100 / self.total)
