"""
Fraud screening use-case: a time-bounded run of the risk scorer whose every
decision lands in the audit log.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from core.logging_config import get_logger
from domain.audit.entity import SYSTEM_ACTOR, AuditAction, AuditContext, AuditLogEntry
from domain.common.clock import Clock, utcnow
from domain.fraud.entity import FraudAnalysisResult, PaymentContext, RiskLevel
from domain.fraud.scorer import FraudRiskScorer, build_recommendations
from .audit_service import AuditLogger


logger = get_logger(__name__)

FALLBACK_SCORE = 50


class FraudScreeningService:
    def __init__(
        self,
        scorer: FraudRiskScorer,
        audit: AuditLogger,
        *,
        timeout_seconds: float = 3.0,
        clock: Clock = utcnow,
    ) -> None:
        self._scorer = scorer
        self._audit = audit
        self._timeout = timeout_seconds
        self._clock = clock

    def _fallback(self, flag: str, reason: str) -> FraudAnalysisResult:
        """Medium risk, manual review: used when the analysis cannot finish."""
        return FraudAnalysisResult(
            score=FALLBACK_SCORE,
            level=RiskLevel.MEDIUM,
            flags=(flag,),
            reasons=(reason, "Manual review required"),
            recommendations=("Manual review required", *build_recommendations(RiskLevel.MEDIUM, ())),
            degraded=("all",),
            analyzed_at=self._clock(),
        )

    @staticmethod
    def _resource(context: PaymentContext) -> tuple[str, str]:
        if context.payment_id is not None:
            return "payment", str(context.payment_id)
        if context.order_id is not None:
            return "order", str(context.order_id)
        return "customer", context.email.lower()

    async def analyze(
        self,
        context: PaymentContext,
        *,
        audit_context: Optional[AuditContext] = None,
    ) -> FraudAnalysisResult:
        try:
            result = await asyncio.wait_for(self._scorer.analyze(context), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "fraud_analysis_timeout",
                order_id=context.order_id,
                payment_id=context.payment_id,
                timeout_seconds=self._timeout,
            )
            result = self._fallback("ANALYSIS_TIMEOUT", f"Fraud analysis exceeded {self._timeout}s")
        except Exception as exc:
            logger.error(
                "fraud_analysis_failed",
                order_id=context.order_id,
                payment_id=context.payment_id,
                error=str(exc),
                exc_info=True,
            )
            result = self._fallback("ANALYSIS_ERROR", "Fraud analysis failed")

        logger.info(
            "fraud_analysis_completed",
            order_id=context.order_id,
            payment_id=context.payment_id,
            score=result.score,
            risk_level=result.level.value,
            flags=list(result.flags),
        )
        resource_type, resource_id = self._resource(context)
        await self._audit.append(AuditLogEntry.build(
            AuditAction.FRAUD_ANALYSIS.value,
            resource_type,
            resource_id,
            audit_context or AuditContext(actor_id=SYSTEM_ACTOR),
            changes=result.to_dict(),
            metadata={
                "order_id": context.order_id,
                "amount": str(context.amount),
                "currency": context.currency,
            },
        ))
        return result
