"""AuditLedger — append-only, signed, hash-chained audit log.

Appends run in their own session and transaction so an audit write never
rides on (or aborts) the caller's business transaction. Append failures
are logged and alerted on, never raised.

Chain ordering uses the autoincrement ``seq`` column. The read-latest /
insert step is serialized with a process-local lock, plus a transaction
scoped advisory lock on PostgreSQL for multi-process deployments.
"""

import asyncio
import enum
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import case, func, select, text as sa_text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sentinel.alert_dispatcher.service import AlertDispatcher, alert_for_entry, system_alert
from sentinel.audit_ledger.events import (
    DEFAULT_SECURITY_RISK,
    auth_event_risk,
    is_known_event_type,
    order_event_risk,
    parse_amount,
    payment_event_risk,
    split_event_type,
    user_event_risk,
)
from sentinel.audit_ledger.exceptions import LedgerQueryError
from sentinel.audit_ledger.redaction import redact_sensitive, to_json_compatible
from sentinel.audit_ledger.signing import AuditSigner, chain_hash, truncate_to_millis
from sentinel.config import Settings
from sentinel.models.audit import AuditEntry, AuditResult
from sentinel.schemas.alert import AlertSeverity
from sentinel.schemas.audit import (
    AuditEntryCreate,
    AuditQueryFilters,
    AuditStatsFilters,
    ChangeSet,
    PaymentEventMetadata,
)

logger = logging.getLogger("sentinel.audit")

HIGH_RISK_SCORE = 70
CHAIN_LOCK_ID = 0x5E7A11ED
VERIFY_BATCH_SIZE = 500

TIME_RANGES = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


class ChainStatus(str, enum.Enum):
    VALID = "valid"
    BROKEN_LINK = "broken_link"
    SIGNATURE_MISMATCH = "signature_mismatch"
    MALFORMED_ENTRY = "malformed_entry"


@dataclass(frozen=True)
class ChainVerificationResult:
    status: ChainStatus
    entries_checked: int
    failed_seq: int | None = None
    detail: str = ""

    @property
    def is_valid(self) -> bool:
        return self.status == ChainStatus.VALID


def signed_fields(entry: AuditEntry) -> dict[str, Any]:
    """The fields of a stored entry that its signature covers."""
    return {
        "timestamp": entry.timestamp,
        "event_type": entry.event_type,
        "user_id": entry.user_id,
        "session_id": entry.session_id,
        "action": entry.action,
        "resource": entry.resource,
        "resource_id": entry.resource_id,
        "changes": entry.changes,
        "metadata": entry.metadata_json,
        "ip_address": entry.ip_address,
        "result": entry.result,
        "error_message": entry.error_message,
        "risk_score": entry.risk_score,
        "previous_hash": entry.previous_hash,
    }


def _metadata_dict(metadata: BaseModel | dict | None) -> dict:
    if metadata is None:
        return {}
    if isinstance(metadata, BaseModel):
        return metadata.model_dump(exclude_none=True)
    return dict(metadata)


def _changes_model(changes: ChangeSet | dict | None) -> ChangeSet | None:
    if changes is None or isinstance(changes, ChangeSet):
        return changes
    return ChangeSet(**changes)


def _metadata_amount(meta: dict, key: str, event_type: str) -> float | None:
    raw = meta.get(key)
    amount = parse_amount(raw)
    if raw is not None and amount is None:
        logger.warning("Non-numeric %s=%r on %s; scoring it as no amount", key, raw, event_type)
    return amount


def _check_category(category: str, event_type: str) -> None:
    if not is_known_event_type(category, event_type):
        logger.warning("Unrecognized %s event type %s; recording it anyway", category, event_type)


def _percentage(part: int, total: int) -> str:
    if total <= 0:
        return "0%"
    return f"{part / total * 100:.2f}%"


class AuditLedger:
    """Append, query and verify the audit chain."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        signer: AuditSigner,
        settings: Settings,
        dispatcher: AlertDispatcher | None = None,
    ):
        self._session_factory = session_factory
        self.signer = signer
        self.dispatcher = dispatcher
        self.query_timeout = settings.query_timeout_seconds
        self.alert_threshold = settings.alert_risk_threshold
        self._append_lock = asyncio.Lock()

    # ── Write path ──

    async def append(self, entry: AuditEntryCreate, *, notify: bool = True) -> AuditEntry | None:
        """Sign, chain and persist one entry. Returns None if the write failed."""
        try:
            row = await self._append(entry)
        except Exception as e:
            logger.error(
                "Failed to append audit entry event_type=%s user=%s: %s",
                entry.event_type,
                entry.user_id or "-",
                e,
                exc_info=True,
            )
            self._alert(
                system_alert(
                    "Audit ledger append failed",
                    f"An audit entry could not be written; the ledger may contain a gap. {type(e).__name__}: {e}",
                    AlertSeverity.CRITICAL,
                    metadata={"event_type": entry.event_type, "user_id": entry.user_id},
                )
            )
            return None

        if notify and row.risk_score is not None and row.risk_score >= self.alert_threshold:
            logger.warning(
                "High-risk event logged: event_type=%s user=%s risk=%d action=%s",
                row.event_type,
                row.user_id or "-",
                row.risk_score,
                row.action,
            )
            self._alert(
                alert_for_entry(
                    row.event_type,
                    row.risk_score,
                    action=row.action,
                    resource=row.resource,
                    user_id=row.user_id,
                    metadata=row.metadata_json,
                )
            )
        return row

    async def _append(self, entry: AuditEntryCreate) -> AuditEntry:
        metadata = to_json_compatible(redact_sensitive(entry.metadata)) or {}
        changes = None
        if entry.changes is not None:
            changes = to_json_compatible(redact_sensitive(entry.changes.model_dump()))
        ip = metadata.get("ip")
        ip_address = str(ip)[:45] if ip else None

        async with self._append_lock:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._lock_chain(session)

                    previous = (await session.execute(
                        select(AuditEntry.signature, AuditEntry.timestamp)
                        .order_by(AuditEntry.seq.desc())
                        .limit(1)
                    )).first()

                    timestamp = truncate_to_millis(datetime.now(timezone.utc))
                    previous_hash = None
                    if previous is not None:
                        # Wall clocks can step backwards; keep timestamps non-decreasing.
                        timestamp = max(timestamp, previous.timestamp)
                        previous_hash = chain_hash(previous.signature, previous.timestamp)

                    row = AuditEntry(
                        timestamp=timestamp,
                        event_type=entry.event_type,
                        user_id=entry.user_id,
                        session_id=entry.session_id,
                        action=entry.action,
                        resource=entry.resource,
                        resource_id=entry.resource_id,
                        changes=changes,
                        metadata_json=metadata,
                        ip_address=ip_address,
                        result=AuditResult(entry.result),
                        error_message=entry.error_message,
                        risk_score=entry.risk_score,
                        previous_hash=previous_hash,
                    )
                    row.signature = self.signer.sign(signed_fields(row))
                    session.add(row)
                    await session.flush()
        return row

    @staticmethod
    async def _lock_chain(session: AsyncSession) -> None:
        bind = session.get_bind()
        if bind.dialect.name == "postgresql":
            await session.execute(sa_text("SELECT pg_advisory_xact_lock(:lock_id)"), {"lock_id": CHAIN_LOCK_ID})
        # SQLite: single writer, the process lock is enough.

    def _alert(self, alert) -> None:
        if self.dispatcher is not None:
            self.dispatcher.dispatch(alert)

    # ── Collaborator entry points ──

    async def log_event(
        self,
        event_type: str,
        user_id: str | None = None,
        metadata: BaseModel | dict | None = None,
        result: str = "success",
        error_message: str | None = None,
        *,
        action: str | None = None,
        resource: str | None = None,
        resource_id: str | None = None,
        changes: ChangeSet | dict | None = None,
        session_id: str | None = None,
        risk_score: int | None = None,
        notify: bool = True,
    ) -> AuditEntry | None:
        """Record one business event. Never raises."""
        # pydantic's ValidationError is a ValueError
        try:
            default_resource, default_action = split_event_type(event_type)
            entry = AuditEntryCreate(
                event_type=event_type,
                user_id=user_id,
                session_id=session_id,
                action=action or default_action,
                resource=resource or default_resource,
                resource_id=resource_id,
                changes=_changes_model(changes),
                metadata=_metadata_dict(metadata),
                result=result,
                error_message=error_message,
                risk_score=risk_score,
            )
        except (AttributeError, TypeError, ValueError) as e:
            logger.error("Rejected malformed audit event %s: %s", event_type, e)
            return None
        return await self.append(entry, notify=notify)

    async def log_auth_event(
        self,
        event_type: str,
        user_id: str | None,
        metadata: BaseModel | dict | None,
        result: str,
        error_message: str | None = None,
        *,
        risk_score: int | None = None,
    ) -> AuditEntry | None:
        _check_category("auth", event_type)
        return await self.log_event(
            event_type,
            user_id,
            metadata,
            result,
            error_message,
            resource="authentication",
            risk_score=risk_score if risk_score is not None else auth_event_risk(result),
        )

    async def log_payment_event(
        self,
        event_type: str,
        user_id: str,
        order_id: str,
        metadata: PaymentEventMetadata | dict,
        result: str,
        error_message: str | None = None,
        *,
        risk_score: int | None = None,
    ) -> AuditEntry | None:
        _check_category("payment", event_type)
        try:
            meta = _metadata_dict(metadata)
            if risk_score is None:
                risk_score = payment_event_risk(_metadata_amount(meta, "amount", event_type), result)
        except (TypeError, ValueError) as e:
            logger.error("Rejected malformed audit event %s: %s", event_type, e)
            return None
        return await self.log_event(
            event_type,
            user_id,
            meta,
            result,
            error_message,
            resource="payment",
            resource_id=order_id,
            risk_score=risk_score,
        )

    async def log_order_event(
        self,
        event_type: str,
        user_id: str,
        order_id: str,
        changes: ChangeSet | dict | None = None,
        metadata: BaseModel | dict | None = None,
        result: str = "success",
        *,
        risk_score: int | None = None,
    ) -> AuditEntry | None:
        _check_category("order", event_type)
        try:
            meta = _metadata_dict(metadata)
            change_set = _changes_model(changes)
            if risk_score is None:
                risk_score = order_event_risk(
                    change_set.before if change_set else None,
                    change_set.after if change_set else None,
                    _metadata_amount(meta, "total_amount", event_type),
                )
        except (TypeError, ValueError) as e:
            logger.error("Rejected malformed audit event %s: %s", event_type, e)
            return None
        return await self.log_event(
            event_type,
            user_id,
            meta,
            result,
            resource="order",
            resource_id=order_id,
            changes=change_set,
            risk_score=risk_score,
        )

    async def log_user_event(
        self,
        event_type: str,
        user_id: str,
        changes: ChangeSet | dict | None = None,
        metadata: BaseModel | dict | None = None,
        result: str = "success",
    ) -> AuditEntry | None:
        _check_category("user", event_type)
        return await self.log_event(
            event_type,
            user_id,
            metadata,
            result,
            resource="user",
            resource_id=user_id,
            changes=changes,
            risk_score=user_event_risk(event_type),
        )

    async def log_security_event(
        self,
        event_type: str,
        user_id: str | None,
        metadata: BaseModel | dict | None,
        risk_score: int = DEFAULT_SECURITY_RISK,
        *,
        notify: bool = True,
    ) -> AuditEntry | None:
        """Record a security finding.

        ``notify=False`` suppresses the ledger's generic high-risk alert for
        callers that raise a more specific one themselves.
        """
        _check_category("security", event_type)
        try:
            meta = _metadata_dict(metadata)
        except (TypeError, ValueError) as e:
            logger.error("Rejected malformed audit event %s: %s", event_type, e)
            return None
        reason = meta.get("reason")
        return await self.log_event(
            event_type,
            user_id,
            meta,
            "failure",
            str(reason) if reason is not None else None,
            resource="security",
            risk_score=risk_score,
            notify=notify,
        )

    # ── Read path ──

    async def query(
        self, filters: AuditQueryFilters | None = None, **criteria: Any
    ) -> tuple[list[AuditEntry], int]:
        """Filtered page of entries, newest first, plus the total match count."""
        filters = filters or AuditQueryFilters(**criteria)
        return await self._bounded(self._query(filters), "query")

    async def _query(self, filters: AuditQueryFilters) -> tuple[list[AuditEntry], int]:
        conditions = []
        if filters.event_type:
            conditions.append(AuditEntry.event_type == filters.event_type)
        if filters.user_id:
            conditions.append(AuditEntry.user_id == filters.user_id)
        if filters.ip_address:
            conditions.append(AuditEntry.ip_address == filters.ip_address)
        if filters.start_date:
            conditions.append(AuditEntry.timestamp >= filters.start_date)
        if filters.end_date:
            conditions.append(AuditEntry.timestamp <= filters.end_date)
        if filters.result:
            conditions.append(AuditEntry.result == AuditResult(filters.result))
        if filters.min_risk_score is not None:
            conditions.append(AuditEntry.risk_score >= filters.min_risk_score)

        async with self._session_factory() as session:
            total = (await session.execute(
                select(func.count(AuditEntry.seq)).where(*conditions)
            )).scalar_one()
            result = await session.execute(
                select(AuditEntry)
                .where(*conditions)
                .order_by(AuditEntry.seq.desc())
                .offset(filters.offset)
                .limit(filters.limit)
            )
            entries = list(result.scalars().all())
        return entries, total

    async def statistics(self, filters: AuditStatsFilters | None = None, **criteria: Any) -> dict:
        """Aggregate counts for the filtered window."""
        filters = filters or AuditStatsFilters(**criteria)
        return await self._bounded(self._statistics(filters), "statistics")

    async def _statistics(self, filters: AuditStatsFilters) -> dict:
        conditions = []
        if filters.event_type:
            conditions.append(AuditEntry.event_type == filters.event_type)
        if filters.user_id:
            conditions.append(AuditEntry.user_id == filters.user_id)
        if filters.start_date:
            conditions.append(AuditEntry.timestamp >= filters.start_date)
        if filters.end_date:
            conditions.append(AuditEntry.timestamp <= filters.end_date)

        async with self._session_factory() as session:
            totals = (await session.execute(
                select(
                    func.count(AuditEntry.seq),
                    func.sum(case((AuditEntry.result == AuditResult.SUCCESS, 1), else_=0)),
                    func.sum(case((AuditEntry.result == AuditResult.FAILURE, 1), else_=0)),
                    func.sum(case((AuditEntry.risk_score >= HIGH_RISK_SCORE, 1), else_=0)),
                ).where(*conditions)
            )).one()

            count_col = func.count(AuditEntry.seq).label("count")
            by_type_rows = (await session.execute(
                select(AuditEntry.event_type, count_col)
                .where(*conditions)
                .group_by(AuditEntry.event_type)
                .order_by(count_col.desc(), AuditEntry.event_type.asc())
            )).all()

        return {
            "total_events": totals[0] or 0,
            "success_count": totals[1] or 0,
            "failure_count": totals[2] or 0,
            "high_risk_count": totals[3] or 0,
            "events_by_type": [{"event_type": row[0], "count": row[1]} for row in by_type_rows],
        }

    async def _bounded(self, coro, operation: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.query_timeout)
        except asyncio.TimeoutError as e:
            logger.error("Audit %s timed out after %.1fs", operation, self.query_timeout)
            raise LedgerQueryError(f"Audit {operation} timed out") from e
        except SQLAlchemyError as e:
            logger.error("Audit %s failed: %s", operation, e)
            raise LedgerQueryError(f"Audit {operation} failed: {e}") from e

    # ── Integrity ──

    async def inspect_chain(
        self, limit: int = 1000, *, timeout_seconds: float | None = None
    ) -> ChainVerificationResult:
        """Walk the first ``limit`` entries in append order and check every link.

        Read-only. A violation is returned as a result, not raised; only a
        storage failure or an exceeded timeout raises ``LedgerQueryError``.
        """
        try:
            result = await asyncio.wait_for(self._inspect_chain(limit), timeout=timeout_seconds)
        except asyncio.TimeoutError as e:
            raise LedgerQueryError(f"Chain verification exceeded {timeout_seconds}s") from e
        except SQLAlchemyError as e:
            logger.error("Chain verification failed to read the ledger: %s", e)
            raise LedgerQueryError(f"Chain verification failed: {e}") from e

        if not result.is_valid:
            logger.critical(
                "Audit chain integrity violation: status=%s seq=%s checked=%d detail=%s",
                result.status.value,
                result.failed_seq,
                result.entries_checked,
                result.detail,
            )
        return result

    async def _inspect_chain(self, limit: int) -> ChainVerificationResult:
        checked = 0
        last_seq = 0
        previous: AuditEntry | None = None

        async with self._session_factory() as session:
            while checked < limit:
                batch = list((await session.execute(
                    select(AuditEntry)
                    .where(AuditEntry.seq > last_seq)
                    .order_by(AuditEntry.seq.asc())
                    .limit(min(VERIFY_BATCH_SIZE, limit - checked))
                )).scalars().all())
                if not batch:
                    break

                for entry in batch:
                    failure = self._check_entry(entry, previous)
                    if failure is not None:
                        status, detail = failure
                        return ChainVerificationResult(status, checked, entry.seq, detail)
                    previous = entry
                    last_seq = entry.seq
                    checked += 1

                # Let other tasks run between batches of a long walk.
                await asyncio.sleep(0)

        return ChainVerificationResult(ChainStatus.VALID, checked)

    def _check_entry(
        self, entry: AuditEntry, previous: AuditEntry | None
    ) -> tuple[ChainStatus, str] | None:
        if (
            entry.timestamp is None
            or not entry.signature
            or not _HEX64.match(entry.signature)
            or (entry.previous_hash is not None and not _HEX64.match(entry.previous_hash))
        ):
            return ChainStatus.MALFORMED_ENTRY, "missing or malformed chain fields"

        expected = None if previous is None else chain_hash(previous.signature, previous.timestamp)
        if entry.previous_hash != expected:
            return (
                ChainStatus.BROKEN_LINK,
                f"expected previous_hash={expected}, got={entry.previous_hash}",
            )

        try:
            signature_ok = self.signer.verify(signed_fields(entry), entry.signature)
        except (TypeError, ValueError) as e:
            return ChainStatus.MALFORMED_ENTRY, f"entry cannot be serialized: {e}"
        if not signature_ok:
            return ChainStatus.SIGNATURE_MISMATCH, "stored signature does not match entry contents"
        return None

    async def verify_chain_integrity(self, limit: int = 1000) -> bool:
        return (await self.inspect_chain(limit)).is_valid

    # ── Reporting compositions ──

    async def security_metrics(self, time_range: str = "24h", *, now: datetime | None = None) -> dict:
        """Security rollup over a named window, built from query and statistics."""
        if time_range not in TIME_RANGES:
            time_range = "24h"
        end = now or datetime.now(timezone.utc)
        start = end - TIME_RANGES[time_range]

        stats = await self.statistics(start_date=start, end_date=end)
        window = {"start_date": start, "end_date": end, "limit": 1}
        _, failed_logins = await self.query(event_type="security.failed_login", **window)
        _, fraud_detections = await self.query(event_type="security.fraud_detected", **window)
        _, high_risk_orders = await self.query(event_type="order.created", min_risk_score=70, **window)
        _, blocked_payments = await self.query(event_type="payment.failed", min_risk_score=60, **window)

        total = stats["total_events"]
        return {
            "time_range": time_range,
            "period": {"start": start, "end": end},
            "overview": {
                "total_events": total,
                "success_rate": _percentage(stats["success_count"], total),
                "failure_rate": _percentage(stats["failure_count"], total),
            },
            "security": {
                "failed_logins": failed_logins,
                "fraud_detections": fraud_detections,
                "high_risk_orders": high_risk_orders,
                "blocked_payments": blocked_payments,
                "high_risk_events": stats["high_risk_count"],
            },
            "top_events": stats["events_by_type"][:10],
        }

    async def user_activity(self, user_id: str, *, limit: int = 50, offset: int = 0) -> tuple[list[AuditEntry], int]:
        return await self.query(user_id=user_id, limit=limit, offset=offset)

    async def high_risk_events(
        self, min_risk_score: int = HIGH_RISK_SCORE, *, limit: int = 100, offset: int = 0
    ) -> tuple[list[AuditEntry], int]:
        return await self.query(min_risk_score=min_risk_score, limit=limit, offset=offset)
