"""Webhook delivery log table."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String

from .base import Base


class WebhookDeliveryModel(Base):
    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        Index("ix_webhook_deliveries_event_created", "event_type", "created_at"),
        Index("ix_webhook_deliveries_delivery_id", "delivery_id"),
        {"comment": "Every received gateway notification and its outcome"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    gateway = Column(String(50), nullable=False, default="razorpay")
    delivery_id = Column(String(100), nullable=False)
    event_type = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, comment="success/failed/duplicate/ignored")
    payload = Column(JSON, nullable=True)
    response = Column(JSON, nullable=True)
    processing_time_ms = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
