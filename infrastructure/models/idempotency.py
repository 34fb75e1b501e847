"""Idempotency key table used by the database-backed store."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text

from .base import Base


class IdempotencyKeyModel(Base):
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        Index("ix_idempotency_keys_expires_at", "expires_at"),
        {"comment": "Claimed webhook event keys and their stored outcome"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False, unique=True, comment="webhook:<delivery>:<event>:<resource>")
    status = Column(String(20), nullable=False, default="pending", comment="pending/success/error")
    result = Column(JSON, nullable=True, comment="Stored processing result")
    error = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
