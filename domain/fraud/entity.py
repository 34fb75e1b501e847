"""
Fraud analysis value objects.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def level_for_score(score: int) -> RiskLevel:
    """Fixed thresholds: critical >= 80, high >= 60, medium >= 30."""
    if score >= 80:
        return RiskLevel.CRITICAL
    if score >= 60:
        return RiskLevel.HIGH
    if score >= 30:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _country(address: Optional[dict]) -> Optional[str]:
    if not address:
        return None
    value = address.get("country")
    return str(value) if value else None


@dataclass(frozen=True)
class PaymentContext:
    """Everything the scorer needs to know about one payment attempt."""
    amount: Decimal
    currency: str
    email: str
    order_id: Optional[int] = None
    payment_id: Optional[int] = None
    order_created_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    billing_address: Optional[dict] = None
    shipping_address: Optional[dict] = None
    payment_method: Optional[str] = None
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None

    @property
    def billing_country(self) -> Optional[str]:
        return _country(self.billing_address)

    @property
    def shipping_country(self) -> Optional[str]:
        return _country(self.shipping_address)


@dataclass
class SignalResult:
    """Score delta, flags and reasons contributed by one signal family."""
    score: int = 0
    flags: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    def add(self, score: int, flag: str, reason: str) -> None:
        self.score += score
        self.flags.append(flag)
        self.reasons.append(reason)


@dataclass(frozen=True)
class FraudAnalysisResult:
    """Immutable outcome of one analysis; persisted through the audit log only."""
    score: int
    level: RiskLevel
    flags: tuple[str, ...] = ()
    reasons: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    degraded: tuple[str, ...] = ()
    analyzed_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level.value,
            "flags": list(self.flags),
            "reasons": list(self.reasons),
            "recommendations": list(self.recommendations),
            "degraded": list(self.degraded),
        }


@dataclass(frozen=True)
class OrderSnapshot:
    order_id: int
    total_amount: Decimal
    created_at: datetime
    ip_address: Optional[str] = None
    shipping_country: Optional[str] = None


@dataclass(frozen=True)
class PaymentSnapshot:
    payment_id: int
    status: str
    created_at: datetime
    payment_method: Optional[str] = None
    card_brand: Optional[str] = None


DEFAULT_DISPOSABLE_EMAIL_DOMAINS = frozenset({
    "tempmail.org",
    "10minutemail.com",
    "guerrillamail.com",
    "mailinator.com",
    "throwaway.email",
})


@dataclass(frozen=True)
class FraudThresholds:
    """Absolute amount limits, in major currency units."""
    very_high_amount: Decimal = Decimal("100000")
    high_amount: Decimal = Decimal("50000")
    card_testing_amount: Decimal = Decimal("1")
    round_amount_unit: Decimal = Decimal("1000")
    round_amount_min: Decimal = Decimal("5000")
    disposable_email_domains: frozenset[str] = DEFAULT_DISPOSABLE_EMAIL_DOMAINS
