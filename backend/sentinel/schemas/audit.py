"""Pydantic schemas for audit entries, queries, statistics and chain checks."""

import enum
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AuditResultValue = Literal["success", "failure", "partial"]


# ── Typed metadata per event category ──
# Named fields for what detectors and reports read; extra keys are kept as-is.


class EventMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    ip: str | None = None
    user_agent: str | None = None
    location: str | None = None


class AuthEventMetadata(EventMetadata):
    email: str | None = None
    method: str | None = None


class PaymentEventMetadata(EventMetadata):
    amount: float
    currency: str = "USD"
    payment_method: str | None = None


class OrderEventMetadata(EventMetadata):
    total_amount: float | None = None
    shipping_address: str | None = None


class UserEventMetadata(EventMetadata):
    changed_by: str | None = None


class SecurityEventMetadata(EventMetadata):
    reason: str | None = None
    attempt_count: int | None = None


class ChangeSet(BaseModel):
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


class AuditEntryCreate(BaseModel):
    """Caller-supplied part of an audit entry. The ledger assigns the rest."""

    event_type: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-z0-9_]+(\.[a-z0-9_]+)+$")
    user_id: str | None = Field(None, max_length=64)
    session_id: str | None = Field(None, max_length=128)
    action: str = Field(..., min_length=1, max_length=100)
    resource: str = Field(..., min_length=1, max_length=100)
    resource_id: str | None = Field(None, max_length=128)
    changes: ChangeSet | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    result: AuditResultValue = "success"
    error_message: str | None = None
    risk_score: int | None = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def _error_only_on_failure(self) -> "AuditEntryCreate":
        if self.result == "success" and self.error_message:
            raise ValueError("error_message is only allowed when result is failure or partial")
        return self


class AuditEventRequest(BaseModel):
    """Ingestion payload used by collaborators over HTTP."""

    event_type: str
    user_id: str | None = None
    session_id: str | None = None
    action: str | None = None
    resource: str | None = None
    resource_id: str | None = None
    changes: ChangeSet | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    result: AuditResultValue = "success"
    error_message: str | None = None
    risk_score: int | None = Field(None, ge=0, le=100)


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    seq: int
    id: uuid.UUID
    timestamp: datetime
    event_type: str
    user_id: str | None = None
    session_id: str | None = None
    action: str
    resource: str
    resource_id: str | None = None
    changes: dict | None = None
    metadata: dict = Field(default_factory=dict, validation_alias="metadata_json")
    ip_address: str | None = None
    result: str
    error_message: str | None = None
    risk_score: int | None = None
    signature: str
    previous_hash: str | None = None

    @field_validator("result", mode="before")
    @classmethod
    def _result_value(cls, v):
        return v.value if isinstance(v, enum.Enum) else v


class AuditEntryListResponse(BaseModel):
    entries: list[AuditEntryResponse]
    total: int
    limit: int
    offset: int


class AuditQueryFilters(BaseModel):
    event_type: str | None = None
    user_id: str | None = None
    ip_address: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    result: AuditResultValue | None = None
    min_risk_score: int | None = Field(None, ge=0, le=100)
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)


class AuditStatsFilters(BaseModel):
    event_type: str | None = None
    user_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class EventTypeCount(BaseModel):
    event_type: str
    count: int


class AuditStatsResponse(BaseModel):
    total_events: int = 0
    success_count: int = 0
    failure_count: int = 0
    high_risk_count: int = 0
    events_by_type: list[EventTypeCount] = Field(default_factory=list)


class ChainVerifyRequest(BaseModel):
    limit: int = Field(1000, ge=1, le=100_000)


class ChainVerificationResponse(BaseModel):
    is_valid: bool
    status: str
    entries_checked: int
    failed_seq: int | None = None
    message: str


class MetricsPeriod(BaseModel):
    start: datetime
    end: datetime


class MetricsOverview(BaseModel):
    total_events: int
    success_rate: str
    failure_rate: str


class SecurityCounts(BaseModel):
    failed_logins: int
    fraud_detections: int
    high_risk_orders: int
    blocked_payments: int
    high_risk_events: int


class SecurityMetricsResponse(BaseModel):
    time_range: str
    period: MetricsPeriod
    overview: MetricsOverview
    security: SecurityCounts
    top_events: list[EventTypeCount] = Field(default_factory=list)


class UserActivityResponse(BaseModel):
    user_id: str
    entries: list[AuditEntryResponse]
    total: int


class HighRiskEventsResponse(BaseModel):
    entries: list[AuditEntryResponse]
    total: int
    min_risk_score: int
