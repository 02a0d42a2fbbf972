"""Audit ledger and order history tables with immutability triggers

Revision ID: 001_audit_ledger
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_audit_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "audit_entries",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("id", UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("session_id", sa.String(128), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource", sa.String(100), nullable=False),
        sa.Column("resource_id", sa.String(128), nullable=True),
        sa.Column("changes", sa.JSON, nullable=True),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column(
            "result",
            sa.Enum("success", "failure", "partial", name="audit_result"),
            nullable=False,
        ),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("risk_score", sa.Integer, nullable=True),
        sa.Column("signature", sa.String(64), nullable=False),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.CheckConstraint(
            "risk_score IS NULL OR (risk_score >= 0 AND risk_score <= 100)",
            name="ck_audit_entries_risk_score_range",
        ),
    )
    op.create_index("ix_audit_entries_event_type_timestamp", "audit_entries", ["event_type", "timestamp"])
    op.create_index("ix_audit_entries_user_timestamp", "audit_entries", ["user_id", "timestamp"])
    op.create_index("ix_audit_entries_ip_timestamp", "audit_entries", ["ip_address", "timestamp"])
    op.create_index("ix_audit_entries_timestamp", "audit_entries", ["timestamp"])
    op.create_index("ix_audit_entries_risk_score", "audit_entries", ["risk_score"])
    op.create_index("ix_audit_entries_result", "audit_entries", ["result"])

    # Storage-level append-only guarantee
    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_entries_reject_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit entries are immutable';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        "CREATE TRIGGER audit_entries_no_update BEFORE UPDATE ON audit_entries "
        "FOR EACH ROW EXECUTE FUNCTION audit_entries_reject_mutation()"
    )
    op.execute(
        "CREATE TRIGGER audit_entries_no_delete BEFORE DELETE ON audit_entries "
        "FOR EACH ROW EXECUTE FUNCTION audit_entries_reject_mutation()"
    )

    op.create_table(
        "orders",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("total_amount", sa.Float, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column(
            "status",
            sa.Enum("pending", "paid", "shipped", "delivered", "cancelled", "refunded", name="order_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("shipping_address", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_orders_user_created", "orders", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_orders_user_created", table_name="orders")
    op.drop_table("orders")
    op.execute("DROP TYPE IF EXISTS order_status")

    op.execute("DROP TRIGGER IF EXISTS audit_entries_no_delete ON audit_entries")
    op.execute("DROP TRIGGER IF EXISTS audit_entries_no_update ON audit_entries")
    op.execute("DROP FUNCTION IF EXISTS audit_entries_reject_mutation()")
    op.drop_table("audit_entries")
    op.execute("DROP TYPE IF EXISTS audit_result")
