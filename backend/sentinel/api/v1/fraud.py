"""Fraud check endpoint: run the detectors for an action and record findings."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sentinel.alert_dispatcher.service import failed_login_alert, fraud_alert, high_risk_order_alert
from sentinel.audit_ledger.service import AuditLedger
from sentinel.dependencies import get_audit_ledger, get_db, get_fraud_service
from sentinel.fraud_detection.service import FraudCheckResult, FraudDetectionService
from sentinel.schemas.alert import AlertData
from sentinel.schemas.audit import SecurityEventMetadata
from sentinel.schemas.fraud import (
    DetectorAssessmentResponse,
    FraudCheckRequest,
    FraudCheckResponse,
)

router = APIRouter()


def alert_for_check(request: FraudCheckRequest, result: FraudCheckResult) -> AlertData:
    """Category-specific alert for an anomalous check."""
    if request.action == "order":
        return high_risk_order_alert(
            request.user_id, request.order_id, request.amount, result.reasons, result.risk_score
        )
    if request.action == "login":
        return failed_login_alert(request.user_id, request.ip, None, result.risk_score, reasons=result.reasons)
    return fraud_alert(
        request.user_id,
        result.reasons,
        result.risk_score,
        metadata={"ip": request.ip, "order_id": request.order_id},
    )


@router.post("/check", response_model=FraudCheckResponse)
async def fraud_check(
    request: FraudCheckRequest,
    db: AsyncSession = Depends(get_db),
    service: FraudDetectionService = Depends(get_fraud_service),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> FraudCheckResponse:
    """Score an action; anomalous results are written to the ledger as ``security.fraud_detected``."""
    result = await service.perform_fraud_check(db, request.user_id, request)

    audit_entry_id = None
    if result.is_anomalous:
        # The check raises its own category alert below, not the ledger's generic one
        entry = await ledger.log_security_event(
            "security.fraud_detected",
            request.user_id,
            SecurityEventMetadata(
                ip=request.ip,
                reason="; ".join(result.reasons),
                action=request.action,
                amount=request.amount,
                detectors=[name for name, a in result.detectors if a.is_anomalous],
            ),
            risk_score=result.risk_score,
            notify=False,
        )
        if entry is not None:
            audit_entry_id = str(entry.id)
        if ledger.dispatcher is not None:
            ledger.dispatcher.dispatch(alert_for_check(request, result))

    return FraudCheckResponse(
        action=request.action,
        user_id=request.user_id,
        is_anomalous=result.is_anomalous,
        risk_score=result.risk_score,
        reasons=result.reasons,
        detectors=[
            DetectorAssessmentResponse(
                detector=name,
                is_anomalous=a.is_anomalous,
                risk_score=a.risk_score,
                reasons=a.reasons,
            )
            for name, a in result.detectors
        ],
        audit_entry_id=audit_entry_id,
    )
