"""
Idempotency store contract.

claim/save is the only mechanism turning at-least-once webhook delivery into
effectively-once processing. Implementations raise
IdempotencyStoreUnavailableException when the backend cannot be reached so
callers fail closed.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

from .entity import ClaimResult, IdempotencyStatus


class IdempotencyStore(ABC):

    @abstractmethod
    async def claim(self, key: str, ttl_minutes: int) -> ClaimResult:
        """Atomically create a pending record; existing unexpired records are returned as-is"""

    @abstractmethod
    async def save(
        self,
        key: str,
        result: dict[str, Any],
        status: IdempotencyStatus,
        error: Optional[str] = None,
    ) -> None:
        """Store the outcome of a claimed key, keeping its expiry"""

    @abstractmethod
    async def release(self, key: str) -> None:
        """Drop a claim so a redelivery can run the event again"""

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Delete expired records, returning how many were removed"""
