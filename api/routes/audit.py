"""
Audit log query route (read-only compliance surface).
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from application.dtos.audit import AuditLogDTO
from application.services.audit_service import AuditLogger
from core.config import settings
from core.response import paginated_response
from domain.audit.entity import AuditContext, AuditQuery
from api.dependencies import get_actor_context, get_audit_logger


router = APIRouter(prefix="/audit-logs", tags=["Audit"])


@router.get("", summary="Query audit entries, newest first")
async def query_audit_logs(
    resource_type: Optional[str] = Query(default=None),
    resource_id: Optional[str] = Query(default=None),
    action: Optional[str] = Query(default=None),
    actor_id: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    page: int = Query(default=1, ge=1),
    size: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    _: AuditContext = Depends(get_actor_context),
    audit: AuditLogger = Depends(get_audit_logger),
):
    entries, total = await audit.query(AuditQuery(
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        actor_id=actor_id,
        start=start,
        end=end,
        skip=(page - 1) * size,
        limit=size,
    ))
    return paginated_response(
        items=[AuditLogDTO.from_entity(e).model_dump(mode="json") for e in entries],
        total=total,
        page=page,
        size=size,
    )
