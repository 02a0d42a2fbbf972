from sentinel.schemas.alert import AlertCategory, AlertData, AlertSeverity
from sentinel.schemas.audit import AuditEntryCreate, AuditEntryResponse, ChainVerificationResponse
from sentinel.schemas.fraud import FraudCheckRequest, FraudCheckResponse
from sentinel.schemas.health import HealthResponse

__all__ = [
    "AlertCategory",
    "AlertData",
    "AlertSeverity",
    "AuditEntryCreate",
    "AuditEntryResponse",
    "ChainVerificationResponse",
    "FraudCheckRequest",
    "FraudCheckResponse",
    "HealthResponse",
]
