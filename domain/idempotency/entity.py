"""
Idempotency records: one per logical gateway event.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class IdempotencyStatus(str, Enum):
    PENDING = "pending"   # claimed, handler still running
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class IdempotencyRecord:
    key: str
    status: IdempotencyStatus
    expires_at: datetime
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class ClaimResult:
    """``is_new`` is True for exactly one of any number of racing claims."""
    is_new: bool
    record: Optional[IdempotencyRecord] = None

    @property
    def prior_result(self) -> Optional[dict[str, Any]]:
        return self.record.result if self.record else None

    @property
    def status(self) -> Optional[IdempotencyStatus]:
        return self.record.status if self.record else None


def build_webhook_key(delivery_id: str, event: str, resource_id: Optional[str]) -> str:
    """Deterministic key for one gateway notification."""
    return f"webhook:{delivery_id}:{event}:{resource_id or 'unknown'}"
