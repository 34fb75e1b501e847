"""
Audit log entries: the append-only compliance record.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

SYSTEM_ACTOR = "system"


class AuditAction(str, Enum):
    PAYMENT_AUTHORIZED = "PAYMENT_AUTHORIZED"
    PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    ORDER_PAID = "ORDER_PAID"
    ORDER_STATUS_UPDATED = "ORDER_STATUS_UPDATED"
    ORDER_FULFILLED = "ORDER_FULFILLED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_NOTE_ADDED = "ORDER_NOTE_ADDED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    INVENTORY_RESERVED = "INVENTORY_RESERVED"
    INVENTORY_INCONSISTENCY = "INVENTORY_INCONSISTENCY"
    FRAUD_ANALYSIS = "FRAUD_ANALYSIS"
    PAYMENT_DATA_ACCESSED = "PAYMENT_DATA_ACCESSED"
    PAYMENT_STATUS_SYNCED = "PAYMENT_STATUS_SYNCED"


@dataclass(frozen=True)
class AuditContext:
    """Who triggered an action and from where."""
    actor_id: str = SYSTEM_ACTOR
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class AuditLogEntry:
    action: str
    resource_type: str
    resource_id: str
    actor_id: str = SYSTEM_ACTOR
    changes: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    status: str = "success"
    error_message: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def build(
        cls,
        action: str,
        resource_type: str,
        resource_id: Any,
        context: AuditContext,
        changes: Optional[dict[str, Any]] = None,
        **extra: Any,
    ) -> "AuditLogEntry":
        return cls(
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id),
            actor_id=context.actor_id,
            changes=changes or {},
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            request_id=context.request_id,
            **extra,
        )


@dataclass(frozen=True)
class AuditQuery:
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    action: Optional[str] = None
    actor_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    skip: int = 0
    limit: int = 50
