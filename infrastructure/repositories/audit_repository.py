"""
Audit log repository - SQLAlchemy implementation (insert and select only)
"""
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.audit.entity import AuditLogEntry, AuditQuery
from domain.audit.repository import AuditLogRepository
from domain.common.clock import ensure_utc, utcnow
from infrastructure.models.audit import AuditLogModel


class SQLAlchemyAuditLogRepository(AuditLogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: AuditLogModel) -> AuditLogEntry:
        return AuditLogEntry(
            id=model.id,
            action=model.action,
            resource_type=model.resource_type,
            resource_id=model.resource_id,
            actor_id=model.actor_id,
            changes=model.changes or {},
            metadata=model.extra_metadata or {},
            ip_address=model.ip_address,
            user_agent=model.user_agent,
            request_id=model.request_id,
            status=model.status,
            error_message=model.error_message,
            created_at=ensure_utc(model.created_at),
        )

    @staticmethod
    def _filters(query: AuditQuery) -> list:
        conditions = []
        if query.resource_type:
            conditions.append(AuditLogModel.resource_type == query.resource_type)
        if query.resource_id:
            conditions.append(AuditLogModel.resource_id == query.resource_id)
        if query.action:
            conditions.append(AuditLogModel.action == query.action)
        if query.actor_id:
            conditions.append(AuditLogModel.actor_id == query.actor_id)
        if query.start:
            conditions.append(AuditLogModel.created_at >= query.start)
        if query.end:
            conditions.append(AuditLogModel.created_at <= query.end)
        return conditions

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        db_entry = AuditLogModel(
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            actor_id=entry.actor_id,
            changes=entry.changes,
            extra_metadata=entry.metadata,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            request_id=entry.request_id,
            status=entry.status,
            error_message=entry.error_message,
            created_at=entry.created_at or utcnow(),
        )
        self.session.add(db_entry)
        await self.session.flush()
        return self._to_entity(db_entry)

    async def query(self, query: AuditQuery) -> List[AuditLogEntry]:
        result = await self.session.execute(
            select(AuditLogModel)
            .where(*self._filters(query))
            .order_by(AuditLogModel.created_at.desc(), AuditLogModel.id.desc())
            .offset(query.skip)
            .limit(query.limit)
        )
        return [self._to_entity(row) for row in result.scalars().all()]

    async def count(self, query: AuditQuery) -> int:
        result = await self.session.execute(
            select(func.count(AuditLogModel.id)).where(*self._filters(query))
        )
        return result.scalar_one()
