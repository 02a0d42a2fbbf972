from fastapi import Request

from sentinel.audit_ledger.service import AuditLedger
from sentinel.config import settings
from sentinel.database import get_db
from sentinel.fraud_detection.service import FraudDetectionService

# Re-export get_db for use in Depends()
get_db = get_db


def get_audit_ledger(request: Request) -> AuditLedger:
    """The process-wide ledger built in the app lifespan."""
    return request.app.state.audit_ledger


def get_fraud_service() -> FraudDetectionService:
    return FraudDetectionService(settings)
