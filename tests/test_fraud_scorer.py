import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

import pytest

from application.services.fraud_service import FALLBACK_SCORE, FraudScreeningService
from domain.audit.entity import AuditAction, AuditQuery
from domain.common.clock import utcnow
from domain.fraud.entity import (
    OrderSnapshot,
    PaymentContext,
    PaymentSnapshot,
    RiskLevel,
    SignalResult,
    level_for_score,
)
from domain.fraud.repository import FraudHistoryRepository
from domain.fraud.scorer import FraudRiskScorer, reduce_signals
from domain.fraud.signals import DEFAULT_SIGNALS

from factories import seed_order


class StubHistory(FraudHistoryRepository):
    def __init__(self, orders=(), payments=(), refunds=0):
        self.orders: List[OrderSnapshot] = list(orders)
        self.payments: List[PaymentSnapshot] = list(payments)
        self.refunds = refunds

    async def orders_since(self, email, since, *, exclude_order_id=None, limit=None):
        rows = [o for o in self.orders if o.created_at >= since and o.order_id != exclude_order_id]
        rows.sort(key=lambda o: o.created_at, reverse=True)
        return rows[:limit] if limit else rows

    async def payments_since(self, email, since, *, status=None, exclude_order_id=None, limit=None):
        rows = [p for p in self.payments if p.created_at >= since and (status is None or p.status == status)]
        return rows[:limit] if limit else rows

    async def count_refunds_since(self, email, since):
        return self.refunds


def _context(**overrides) -> PaymentContext:
    values = dict(
        amount=Decimal("1500.00"),
        currency="INR",
        email="asha.verma@example.com",
        order_id=100,
        order_created_at=utcnow(),
        ip_address="49.36.10.20",
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0",
        billing_address={"country": "India", "state": "Maharashtra"},
        shipping_address={"country": "India", "state": "Maharashtra"},
        payment_method="card",
        card_brand="Visa",
    )
    values.update(overrides)
    return PaymentContext(**values)


def _orders(count: int, *, spacing: timedelta, amount: str = "1500.00", start: Optional[datetime] = None):
    start = start or utcnow() - timedelta(minutes=2)
    return [
        OrderSnapshot(
            order_id=i + 1,
            total_amount=Decimal(amount),
            created_at=start - spacing * i,
            ip_address="49.36.10.20",
            shipping_country="India",
        )
        for i in range(count)
    ]


@pytest.mark.parametrize(
    "score,level",
    [(0, RiskLevel.LOW), (29, RiskLevel.LOW), (30, RiskLevel.MEDIUM), (59, RiskLevel.MEDIUM),
     (60, RiskLevel.HIGH), (79, RiskLevel.HIGH), (80, RiskLevel.CRITICAL), (100, RiskLevel.CRITICAL)],
)
def test_level_thresholds(score, level):
    assert level_for_score(score) == level


def test_reduce_signals_clamps_score():
    high = reduce_signals([SignalResult(80, ["A"], ["a"]), SignalResult(70, ["B"], ["b"])])
    assert high.score == 100
    assert high.level == RiskLevel.CRITICAL
    assert high.recommendations[0] == "BLOCK PAYMENT - Manual review required"

    low = reduce_signals([SignalResult(-40, [], [])])
    assert low.score == 0
    assert low.level == RiskLevel.LOW


@pytest.mark.asyncio
async def test_clean_attempt_is_low_risk():
    result = await FraudRiskScorer(StubHistory()).analyze(_context())

    assert result.score == 0
    assert result.level == RiskLevel.LOW
    assert result.flags == ()
    assert result.recommendations == ("Process normally with standard monitoring",)
    assert result.degraded == ()


@pytest.mark.asyncio
async def test_bot_on_disposable_email_testing_a_card():
    context = _context(
        amount=Decimal("0.50"),
        email="x1@mailinator.com",
        user_agent="Mozilla/5.0 HeadlessChrome/120.0",
        ip_address="10.0.0.8",
    )
    result = await FraudRiskScorer(StubHistory()).analyze(context)

    for flag in ("CARD_TESTING", "DISPOSABLE_EMAIL", "SHORT_EMAIL_PREFIX", "HEADLESS_BROWSER", "PRIVATE_IP"):
        assert flag in result.flags
    assert result.score == 15 + 20 + 10 + 25 + 5
    assert result.level == RiskLevel.HIGH
    assert "Implement CAPTCHA" in result.recommendations
    assert "Require phone verification" in result.recommendations
    assert "Implement bot detection" in result.recommendations


@pytest.mark.asyncio
async def test_amount_far_above_history_average():
    history = StubHistory(orders=_orders(3, spacing=timedelta(days=2), amount="500.00"))
    result = await FraudRiskScorer(history).analyze(_context(amount=Decimal("6000.00")))

    assert "HIGH_AMOUNT_DEVIATION" in result.flags
    assert "ROUND_AMOUNT" in result.flags


@pytest.mark.asyncio
async def test_velocity_counts_current_attempt_and_rapid_succession():
    history = StubHistory(orders=_orders(5, spacing=timedelta(seconds=30), start=utcnow() - timedelta(seconds=20)))
    result = await FraudRiskScorer(history).analyze(_context())

    assert "HIGH_VELOCITY_HOUR" in result.flags
    assert "RAPID_SUCCESSION" in result.flags
    assert result.level in (RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)


@pytest.mark.asyncio
async def test_geography_and_failure_patterns():
    now = utcnow()
    failed = [PaymentSnapshot(payment_id=i, status="failed", created_at=now - timedelta(hours=1)) for i in range(6)]
    history = StubHistory(orders=_orders(2, spacing=timedelta(days=3)), payments=failed, refunds=3)
    context = _context(
        billing_address={"country": "India"},
        shipping_address={"country": "Singapore"},
    )
    result = await FraudRiskScorer(history).analyze(context)

    for flag in ("COUNTRY_MISMATCH", "NEW_SHIPPING_COUNTRY", "MULTIPLE_FAILURES", "MULTIPLE_REFUNDS"):
        assert flag in result.flags


@pytest.mark.asyncio
async def test_failing_signal_degrades_instead_of_failing():
    async def broken(_inp):
        raise RuntimeError("history unavailable")

    signals = [("broken", broken), *DEFAULT_SIGNALS]
    result = await FraudRiskScorer(StubHistory(), signals=signals).analyze(_context())

    assert result.degraded == ("broken",)
    assert "broken checks unavailable" in result.reasons
    assert result.level == RiskLevel.LOW


@pytest.mark.asyncio
async def test_timeout_falls_back_to_manual_review(audit):
    async def slow(_inp):
        await asyncio.sleep(1)
        return SignalResult()

    service = FraudScreeningService(
        FraudRiskScorer(StubHistory(), signals=[("slow", slow)]),
        audit,
        timeout_seconds=0.05,
    )
    result = await service.analyze(_context(order_id=None, email="Asha.Verma@Example.com"))

    assert result.score == FALLBACK_SCORE
    assert result.level == RiskLevel.MEDIUM
    assert result.flags == ("ANALYSIS_TIMEOUT",)
    assert result.recommendations[0] == "Manual review required"

    entries, total = await audit.query(AuditQuery(action=AuditAction.FRAUD_ANALYSIS.value))
    assert total == 1
    assert entries[0].resource_type == "customer"
    assert entries[0].resource_id == "asha.verma@example.com"
    assert entries[0].changes["score"] == FALLBACK_SCORE


@pytest.mark.asyncio
async def test_five_recent_orders_trigger_hourly_velocity(uow_factory, fraud_service, audit):
    for minutes in (10, 20, 30, 40, 50):
        await seed_order(uow_factory, gateway_order_id=None, reserve=False, created_minutes_ago=minutes)
    current, _ = await seed_order(uow_factory, gateway_order_id="order_RZP_VEL", reserve=False)

    result = await fraud_service.analyze(_context(order_id=current.id, order_created_at=current.created_at))

    assert "HIGH_VELOCITY_HOUR" in result.flags
    assert "6 orders in last hour" in result.reasons
    assert result.level in (RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)

    entries, _ = await audit.query(AuditQuery(action=AuditAction.FRAUD_ANALYSIS.value))
    assert entries[0].resource_type == "order"
    assert entries[0].resource_id == str(current.id)


class RecordingLogger:
    def __init__(self):
        self.events = []

    def _record(self, event, **fields):
        self.events.append((event, fields))

    info = warning = error = debug = _record


@pytest.mark.asyncio
async def test_completion_log_keeps_risk_level_apart_from_log_level(audit, monkeypatch):
    import application.services.fraud_service as fraud_module

    recorder = RecordingLogger()
    monkeypatch.setattr(fraud_module, "logger", recorder)
    service = FraudScreeningService(FraudRiskScorer(StubHistory()), audit)

    result = await service.analyze(_context(order_id=None))

    [(event, fields)] = [e for e in recorder.events if e[0] == "fraud_analysis_completed"]
    assert fields["risk_level"] == result.level.value
    assert "level" not in fields
