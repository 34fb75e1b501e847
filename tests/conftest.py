"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory webhook secret for settings validation
os.environ.setdefault("PAYMENT__WEBHOOK__SECRET", "whsec_test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

from functools import partial

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from application.services.audit_service import AuditLogger
from application.services.fraud_service import FraudScreeningService
from application.services.order_transitions import TransitionRunner
from application.services.reconciliation_service import ReconciliationService
from domain.fraud.scorer import FraudRiskScorer
from infrastructure.external.payments.razorpay_client import RazorpayClient
from infrastructure.models import Base
from infrastructure.repositories.fraud_history_repository import SQLAlchemyFraudHistoryRepository
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

from factories import WEBHOOK_SECRET


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()

@pytest.fixture
def uow_factory(session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory)

@pytest.fixture
def gateway():
    return RazorpayClient(WEBHOOK_SECRET)

@pytest.fixture
def audit(uow_factory):
    return AuditLogger(uow_factory)

@pytest.fixture
def runner(uow_factory, audit):
    return TransitionRunner(uow_factory, audit)

@pytest.fixture
def fraud_service(session_factory, audit):
    return FraudScreeningService(FraudRiskScorer(SQLAlchemyFraudHistoryRepository(session_factory)), audit)

@pytest.fixture
def reconciliation(runner, fraud_service):
    return ReconciliationService(runner, fraud_service)

