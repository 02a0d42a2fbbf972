"""ORM model for audit entries: immutable, signed, hash-chained ledger.

Immutability is enforced twice: mapper events refuse ORM updates and
deletes, and database triggers (created with the table) reject raw
``UPDATE``/``DELETE`` statements.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DDL,
    JSON,
    CheckConstraint,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from sentinel.models.base import Base, UTCDateTime


class ImmutableEntryError(Exception):
    """Raised when code attempts to modify or delete a stored audit entry."""


class AuditResult(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class AuditEntry(Base):
    __tablename__ = "audit_entries"

    # Append-order sequence; the chain predecessor is always max(seq).
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), unique=True, nullable=False, default=uuid.uuid4
    )
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    changes: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    result: Mapped[AuditResult] = mapped_column(
        SAEnum(AuditResult, name="audit_result", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    risk_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    signature: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "risk_score IS NULL OR (risk_score >= 0 AND risk_score <= 100)",
            name="ck_audit_entries_risk_score_range",
        ),
        Index("ix_audit_entries_event_type_timestamp", "event_type", "timestamp"),
        Index("ix_audit_entries_user_timestamp", "user_id", "timestamp"),
        Index("ix_audit_entries_ip_timestamp", "ip_address", "timestamp"),
        Index("ix_audit_entries_timestamp", "timestamp"),
        Index("ix_audit_entries_risk_score", "risk_score"),
        Index("ix_audit_entries_result", "result"),
    )


@event.listens_for(AuditEntry, "before_update")
def _reject_update(mapper, connection, target: AuditEntry) -> None:
    raise ImmutableEntryError(f"Audit entry {target.seq} is immutable and cannot be updated")


@event.listens_for(AuditEntry, "before_delete")
def _reject_delete(mapper, connection, target: AuditEntry) -> None:
    raise ImmutableEntryError(f"Audit entry {target.seq} is immutable and cannot be deleted")


# Storage-level guards. Kept in sync with alembic/versions/001_audit_ledger.py.
SQLITE_IMMUTABILITY_TRIGGERS = (
    "CREATE TRIGGER IF NOT EXISTS audit_entries_no_update BEFORE UPDATE ON audit_entries "
    "BEGIN SELECT RAISE(ABORT, 'audit entries are immutable'); END",
    "CREATE TRIGGER IF NOT EXISTS audit_entries_no_delete BEFORE DELETE ON audit_entries "
    "BEGIN SELECT RAISE(ABORT, 'audit entries are immutable'); END",
)

POSTGRES_IMMUTABILITY_TRIGGERS = (
    """
    CREATE OR REPLACE FUNCTION audit_entries_reject_mutation() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'audit entries are immutable';
    END;
    $$ LANGUAGE plpgsql
    """,
    "CREATE TRIGGER audit_entries_no_update BEFORE UPDATE ON audit_entries "
    "FOR EACH ROW EXECUTE FUNCTION audit_entries_reject_mutation()",
    "CREATE TRIGGER audit_entries_no_delete BEFORE DELETE ON audit_entries "
    "FOR EACH ROW EXECUTE FUNCTION audit_entries_reject_mutation()",
)

for _statement in SQLITE_IMMUTABILITY_TRIGGERS:
    event.listen(
        AuditEntry.__table__, "after_create", DDL(_statement).execute_if(dialect="sqlite")
    )
for _statement in POSTGRES_IMMUTABILITY_TRIGGERS:
    event.listen(
        AuditEntry.__table__, "after_create", DDL(_statement).execute_if(dialect="postgresql")
    )
