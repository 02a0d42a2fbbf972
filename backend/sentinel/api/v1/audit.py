"""Audit ledger endpoints — ingest events, query, stats, chain verification, reports."""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from sentinel.alert_dispatcher.service import system_alert
from sentinel.audit_ledger.events import split_event_type
from sentinel.audit_ledger.service import AuditLedger
from sentinel.config import settings
from sentinel.dependencies import get_audit_ledger
from sentinel.schemas.alert import AlertSeverity
from sentinel.schemas.audit import (
    AuditEntryCreate,
    AuditEntryListResponse,
    AuditEntryResponse,
    AuditEventRequest,
    AuditQueryFilters,
    AuditStatsResponse,
    ChainVerificationResponse,
    ChainVerifyRequest,
    HighRiskEventsResponse,
    SecurityMetricsResponse,
    UserActivityResponse,
)

router = APIRouter()


@router.post("/entries", response_model=AuditEntryResponse, status_code=202)
async def record_entry(
    request: AuditEventRequest,
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> AuditEntryResponse:
    """Append one event from a collaborator service."""
    resource, action = split_event_type(request.event_type)
    try:
        entry = AuditEntryCreate(
            **request.model_dump(exclude={"action", "resource"}),
            action=request.action or action,
            resource=request.resource or resource,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )

    row = await ledger.append(entry)
    if row is None:
        raise HTTPException(status_code=503, detail="Audit entry could not be recorded")
    return AuditEntryResponse.model_validate(row)


@router.get("/entries", response_model=AuditEntryListResponse)
async def list_entries(
    event_type: str | None = None,
    user_id: str | None = None,
    ip_address: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    result: Literal["success", "failure", "partial"] | None = None,
    min_risk_score: int | None = Query(None, ge=0, le=100),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> AuditEntryListResponse:
    """List audit entries, newest first, with optional filtering."""
    filters = AuditQueryFilters(
        event_type=event_type,
        user_id=user_id,
        ip_address=ip_address,
        start_date=start_date,
        end_date=end_date,
        result=result,
        min_risk_score=min_risk_score,
        limit=limit,
        offset=offset,
    )
    entries, total = await ledger.query(filters)
    return AuditEntryListResponse(
        entries=[AuditEntryResponse.model_validate(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=AuditStatsResponse)
async def get_stats(
    event_type: str | None = None,
    user_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> AuditStatsResponse:
    stats = await ledger.statistics(
        event_type=event_type, user_id=user_id, start_date=start_date, end_date=end_date,
    )
    return AuditStatsResponse(**stats)


@router.post("/verify", response_model=ChainVerificationResponse)
async def verify_chain(
    request: ChainVerifyRequest | None = None,
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> ChainVerificationResponse:
    """Recompute links and signatures over the oldest ``limit`` entries."""
    limit = request.limit if request else settings.chain_verify_default_limit
    result = await ledger.inspect_chain(limit, timeout_seconds=settings.chain_verify_timeout_seconds)

    if result.is_valid:
        message = f"Audit chain is valid ({result.entries_checked} entries checked)"
    else:
        message = f"Audit chain integrity violation at entry {result.failed_seq}: {result.detail}"
        if ledger.dispatcher is not None:
            ledger.dispatcher.dispatch(system_alert(
                "Audit Log Integrity Violation",
                "The audit log chain has been tampered with. Immediate investigation required.",
                AlertSeverity.CRITICAL,
                metadata={
                    "status": result.status.value,
                    "failed_seq": result.failed_seq,
                    "entries_checked": result.entries_checked,
                },
            ))

    return ChainVerificationResponse(
        is_valid=result.is_valid,
        status=result.status.value,
        entries_checked=result.entries_checked,
        failed_seq=result.failed_seq,
        message=message,
    )


@router.get("/security-metrics", response_model=SecurityMetricsResponse)
async def security_metrics(
    time_range: str = "24h",
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> SecurityMetricsResponse:
    """Security rollup for the dashboard (1h, 24h, 7d or 30d)."""
    return SecurityMetricsResponse(**await ledger.security_metrics(time_range))


@router.get("/users/{user_id}/activity", response_model=UserActivityResponse)
async def user_activity(
    user_id: str,
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> UserActivityResponse:
    entries, total = await ledger.user_activity(user_id, limit=limit, offset=offset)
    return UserActivityResponse(
        user_id=user_id,
        entries=[AuditEntryResponse.model_validate(e) for e in entries],
        total=total,
    )


@router.get("/high-risk", response_model=HighRiskEventsResponse)
async def high_risk_events(
    min_risk_score: int = Query(70, ge=0, le=100),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> HighRiskEventsResponse:
    entries, total = await ledger.high_risk_events(min_risk_score, limit=limit, offset=offset)
    return HighRiskEventsResponse(
        entries=[AuditEntryResponse.model_validate(e) for e in entries],
        total=total,
        min_risk_score=min_risk_score,
    )
