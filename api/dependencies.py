"""
API dependencies: the composition root.

Only this module (and the Celery tasks) read the global settings objects;
every service below receives its configuration through its constructor.
"""
from functools import partial
from typing import Callable, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from application.ports.payment_gateway import PaymentGateway
from application.services.audit_service import AuditLogger
from application.services.fraud_service import FraudScreeningService
from application.services.inventory_service import InventoryService
from application.services.order_admin_service import OrderAdminService
from application.services.order_transitions import TransitionRunner
from application.services.reconciliation_service import ReconciliationService
from application.services.webhook_dispatcher import WebhookDispatcher
from core.config import settings
from core.exceptions import UnauthorizedException
from core.settings import payment_settings
from domain.audit.entity import SYSTEM_ACTOR, AuditContext
from domain.fraud.entity import FraudThresholds
from domain.fraud.scorer import FraudRiskScorer
from domain.idempotency.store import IdempotencyStore
from infrastructure.cache import RedisIdempotencyStore, get_redis_client
from infrastructure.database import AsyncSessionLocal
from infrastructure.external.payments import get_payment_gateway
from infrastructure.repositories.fraud_history_repository import SQLAlchemyFraudHistoryRepository
from infrastructure.repositories.idempotency_store import SQLAlchemyIdempotencyStore
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """Process-wide gateway client, closed on shutdown"""
    global _gateway
    if _gateway is None:
        _gateway = get_payment_gateway(payment_settings)
    return _gateway


async def shutdown_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None


def get_session_factory() -> Callable[[], AsyncSession]:
    return AsyncSessionLocal


def get_uow_factory(session_factory: Callable[[], AsyncSession] = Depends(get_session_factory)):
    return partial(SQLAlchemyUnitOfWork, session_factory)


async def get_idempotency_store(
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
) -> IdempotencyStore:
    if payment_settings.idempotency.backend == "redis":
        client = await get_redis_client()
        return RedisIdempotencyStore(client, settings.redis.namespace)
    return SQLAlchemyIdempotencyStore(session_factory)


def get_audit_logger(uow_factory=Depends(get_uow_factory)) -> AuditLogger:
    return AuditLogger(uow_factory)


def get_fraud_service(
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
    audit: AuditLogger = Depends(get_audit_logger),
) -> FraudScreeningService:
    fraud = payment_settings.fraud
    scorer = FraudRiskScorer(
        SQLAlchemyFraudHistoryRepository(session_factory),
        thresholds=FraudThresholds(
            very_high_amount=fraud.very_high_amount,
            high_amount=fraud.high_amount,
            card_testing_amount=fraud.card_testing_amount,
            round_amount_unit=fraud.round_amount_unit,
            round_amount_min=fraud.round_amount_min,
        ),
    )
    return FraudScreeningService(scorer, audit, timeout_seconds=fraud.timeout_seconds)


def get_transition_runner(
    uow_factory=Depends(get_uow_factory),
    audit: AuditLogger = Depends(get_audit_logger),
) -> TransitionRunner:
    return TransitionRunner(
        uow_factory,
        audit,
        default_location_id=payment_settings.inventory.default_location_id,
    )


def get_reconciliation_service(
    runner: TransitionRunner = Depends(get_transition_runner),
    fraud: FraudScreeningService = Depends(get_fraud_service),
) -> ReconciliationService:
    return ReconciliationService(runner, fraud)


def get_order_admin_service(
    runner: TransitionRunner = Depends(get_transition_runner),
    audit: AuditLogger = Depends(get_audit_logger),
    uow_factory=Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_gateway),
) -> OrderAdminService:
    return OrderAdminService(runner, audit, uow_factory, gateway)


def get_inventory_service(uow_factory=Depends(get_uow_factory)) -> InventoryService:
    return InventoryService(uow_factory)


def get_webhook_dispatcher(
    gateway: PaymentGateway = Depends(get_gateway),
    store: IdempotencyStore = Depends(get_idempotency_store),
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
    uow_factory=Depends(get_uow_factory),
) -> WebhookDispatcher:
    return WebhookDispatcher(
        gateway,
        store,
        reconciliation,
        uow_factory,
        ttl_minutes=payment_settings.webhook.idempotency_ttl_minutes,
    )


def _context(request: Request, actor_id: str) -> AuditContext:
    state = request.state
    return AuditContext(
        actor_id=actor_id,
        ip_address=getattr(state, "client_ip", None) or (request.client.host if request.client else None),
        user_agent=request.headers.get("User-Agent"),
        request_id=getattr(state, "request_id", None),
    )


def get_system_context(request: Request) -> AuditContext:
    """Audit context for gateway-triggered work"""
    return _context(request, SYSTEM_ACTOR)


def get_actor_context(
    request: Request,
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> AuditContext:
    """Audit context for admin calls; the upstream auth layer sets X-Actor-Id"""
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise UnauthorizedException("X-Actor-Id header is required")
    return _context(request, actor_id)
