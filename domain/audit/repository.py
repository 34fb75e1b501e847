"""
Audit log repository: insert and read only, never update or delete.
"""
from abc import ABC, abstractmethod
from typing import List

from .entity import AuditLogEntry, AuditQuery


class AuditLogRepository(ABC):

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Insert one entry"""

    @abstractmethod
    async def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        """Entries matching the filters, newest first"""

    @abstractmethod
    async def count(self, query: AuditQuery) -> int:
        """Number of entries matching the filters (pagination ignored)"""
