"""
Audit logger: best-effort append of compliance entries.

Entries are written in their own unit of work after the business transaction
has committed. A failed append is reported to the operational log with the
complete entry so nothing is lost silently, and never propagates to the
caller.
"""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Callable, Iterable, List, Optional

from core.logging_config import get_logger
from domain.audit.entity import AuditContext, AuditLogEntry, AuditQuery
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.events import OrderEvent


logger = get_logger(__name__)


class AuditLogger:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]) -> None:
        self._uow_factory = uow_factory

    async def append(self, entry: AuditLogEntry) -> Optional[AuditLogEntry]:
        try:
            async with self._uow_factory() as uow:
                saved = await uow.audit_repository.append(entry)
        except Exception as exc:
            logger.error(
                "audit_append_failed",
                entry=asdict(entry),
                error=str(exc),
                exc_info=True,
            )
            return None
        logger.info(
            "audit_appended",
            action=saved.action,
            resource_type=saved.resource_type,
            resource_id=saved.resource_id,
            actor_id=saved.actor_id,
        )
        return saved

    async def record_events(
        self,
        events: Iterable[OrderEvent],
        context: AuditContext,
        *,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        for event in events:
            await self.append(AuditLogEntry.build(
                event.action.value,
                event.resource_type,
                event.resource_id,
                context,
                changes=event.changes,
                metadata={
                    "order_id": event.order_id,
                    "event_id": event.event_id,
                    **(metadata or {}),
                },
                created_at=event.occurred_at,
            ))

    async def query(self, query: AuditQuery) -> tuple[List[AuditLogEntry], int]:
        async with self._uow_factory(readonly=True) as uow:
            entries = await uow.audit_repository.query(query)
            total = await uow.audit_repository.count(query)
        return entries, total
