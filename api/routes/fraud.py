"""
Fraud analysis route for checkout and monitoring consumers.
"""
from fastapi import APIRouter, Depends

from application.dtos.fraud import FraudAnalysisRequest, FraudAnalysisResponse
from application.services.fraud_service import FraudScreeningService
from core.response import success_response
from domain.audit.entity import AuditContext
from api.dependencies import get_actor_context, get_fraud_service


router = APIRouter(prefix="/fraud", tags=["Fraud"])


@router.post("/analyze", summary="Score one payment attempt")
async def analyze_payment_fraud(
    req: FraudAnalysisRequest,
    context: AuditContext = Depends(get_actor_context),
    service: FraudScreeningService = Depends(get_fraud_service),
):
    result = await service.analyze(req.to_context(), audit_context=context)
    return success_response(data=FraudAnalysisResponse.from_result(result).model_dump(mode="json"))
