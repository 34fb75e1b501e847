"""
Audit log DTOs.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from domain.audit.entity import AuditLogEntry
from .base import DTOBase


class AuditLogDTO(DTOBase):
    id: int
    action: str
    resource_type: str
    resource_id: str
    actor_id: str
    changes: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, entry: AuditLogEntry) -> "AuditLogDTO":
        return cls(
            id=entry.id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            actor_id=entry.actor_id,
            changes=entry.changes,
            metadata=entry.metadata,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            request_id=entry.request_id,
            status=entry.status,
            error_message=entry.error_message,
            created_at=entry.created_at,
        )
