"""Audit log table: rows are inserted and read, never updated."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text

from .base import Base


class AuditLogModel(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_resource", "resource_type", "resource_id"),
        Index("ix_audit_logs_action_created", "action", "created_at"),
        Index("ix_audit_logs_actor_created", "actor_id", "created_at"),
        {"comment": "Append-only audit trail of payment and order actions"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(50), nullable=False)
    resource_type = Column(String(30), nullable=False, comment="payment/order/inventory/fraud")
    resource_id = Column(String(100), nullable=False)
    actor_id = Column(String(100), nullable=False, default="system")
    changes = Column(JSON, nullable=True)
    extra_metadata = Column("metadata", JSON, nullable=True, comment="Free-form context")
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    request_id = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default="success")
    error_message = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
