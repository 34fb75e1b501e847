"""
Fraud risk scorer: runs the signal families and reduces their deltas.
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence

import structlog

from domain.common.clock import Clock, utcnow
from .entity import (
    FraudAnalysisResult,
    FraudThresholds,
    PaymentContext,
    RiskLevel,
    SignalResult,
    level_for_score,
)
from .repository import FraudHistoryRepository
from .signals import DEFAULT_SIGNALS, Signal, SignalInput


logger = structlog.get_logger(__name__)

LEVEL_RECOMMENDATIONS: dict[RiskLevel, tuple[str, ...]] = {
    RiskLevel.CRITICAL: (
        "BLOCK PAYMENT - Manual review required",
        "Contact customer for verification",
        "Verify identity documents",
    ),
    RiskLevel.HIGH: (
        "Hold payment for manual review",
        "Require additional verification",
        "Contact customer",
    ),
    RiskLevel.MEDIUM: (
        "Monitor payment closely",
        "Consider additional verification",
    ),
    RiskLevel.LOW: ("Process normally with standard monitoring",),
}

FLAG_RECOMMENDATIONS: dict[str, str] = {
    "HIGH_VELOCITY_HOUR": "Implement velocity limits",
    "DISPOSABLE_EMAIL": "Require phone verification",
    "CARD_TESTING": "Implement CAPTCHA",
    "HEADLESS_BROWSER": "Implement bot detection",
}


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def build_recommendations(level: RiskLevel, flags: Iterable[str]) -> tuple[str, ...]:
    flags = set(flags)
    extra = [text for flag, text in FLAG_RECOMMENDATIONS.items() if flag in flags]
    return _unique([*LEVEL_RECOMMENDATIONS[level], *extra])


def reduce_signals(
    results: Sequence[SignalResult],
    degraded: Sequence[str] = (),
    *,
    analyzed_at=None,
) -> FraudAnalysisResult:
    """Sum deltas, clamp to [0, 100] and derive level and recommendations."""
    total = sum(r.score for r in results)
    score = max(0, min(100, total))
    level = level_for_score(score)
    flags = _unique(flag for r in results for flag in r.flags)
    reasons = list(_unique(reason for r in results for reason in r.reasons))
    reasons.extend(f"{name} checks unavailable" for name in degraded)
    return FraudAnalysisResult(
        score=score,
        level=level,
        flags=flags,
        reasons=tuple(reasons),
        recommendations=build_recommendations(level, flags),
        degraded=tuple(degraded),
        analyzed_at=analyzed_at,
    )


class FraudRiskScorer:
    """
    Multi-factor fraud scorer.

    Every family runs even when an earlier one failed: a failing family is
    logged, contributes zero and is listed in ``degraded``. The scorer never
    writes anything; ``clock`` supplies the "now" used for history windows.
    """

    def __init__(
        self,
        history: FraudHistoryRepository,
        *,
        thresholds: Optional[FraudThresholds] = None,
        signals: Optional[Sequence[tuple[str, Signal]]] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._history = history
        self._thresholds = thresholds or FraudThresholds()
        self._signals = tuple(signals) if signals is not None else DEFAULT_SIGNALS
        self._clock = clock

    async def analyze(self, context: PaymentContext) -> FraudAnalysisResult:
        now = self._clock()
        inp = SignalInput(context=context, history=self._history, now=now, thresholds=self._thresholds)
        results: list[SignalResult] = []
        degraded: list[str] = []
        # one family at a time keeps history queries from competing for connections
        for name, signal in self._signals:
            try:
                results.append(await signal(inp))
            except Exception as exc:
                logger.warning(
                    "fraud_signal_failed",
                    signal=name,
                    order_id=context.order_id,
                    error=str(exc),
                    exc_info=True,
                )
                degraded.append(name)
        return reduce_signals(results, degraded, analyzed_at=now)
