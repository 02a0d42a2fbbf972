"""History loaders feeding the pure detectors.

Each loader is one indexed query on the caller's session. Loaders run one
after another: an AsyncSession does not support concurrent use.
"""

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sentinel.models.audit import AuditEntry
from sentinel.models.order import Order

FAILED_LOGIN_EVENT = "security.failed_login"
PAYMENT_INITIATED = "payment.initiated"
PAYMENT_OUTCOMES = {"payment.failed": "failed", "payment.completed": "completed"}


async def load_order_history(db: AsyncSession, user_id: str, limit: int = 100) -> list[dict]:
    """Most recent orders for a user, as dicts for ``detect_high_value_order``."""
    result = await db.execute(
        select(Order.total_amount, Order.status, Order.shipping_address)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .limit(limit)
    )
    return [
        {
            "total_amount": row.total_amount,
            "status": row.status.value,
            "shipping_address": row.shipping_address,
        }
        for row in result.all()
    ]


async def load_order_times(db: AsyncSession, user_id: str, since: datetime) -> list[datetime]:
    result = await db.execute(
        select(Order.created_at).where(Order.user_id == user_id, Order.created_at >= since)
    )
    return list(result.scalars().all())


async def load_failed_login_times(
    db: AsyncSession,
    since: datetime,
    *,
    user_id: str | None = None,
    ip: str | None = None,
) -> list[datetime]:
    """Failed-login timestamps since ``since``, filtered by user or by source IP."""
    if user_id is None and ip is None:
        return []
    stmt = select(AuditEntry.timestamp).where(
        AuditEntry.event_type == FAILED_LOGIN_EVENT,
        AuditEntry.timestamp >= since,
    )
    if user_id is not None:
        stmt = stmt.where(AuditEntry.user_id == user_id)
    if ip is not None:
        stmt = stmt.where(AuditEntry.ip_address == ip)
    result = await db.execute(stmt.order_by(AuditEntry.seq.asc()))
    return list(result.scalars().all())


async def load_payment_activity(db: AsyncSession, user_id: str, since: datetime) -> dict:
    """Payment events for a user since ``since``.

    Returns a dict with ``attempt_times`` (initiated events), ``ips`` (every
    IP seen on payment events) and ``outcomes`` (``failed`` / ``completed``).
    """
    result = await db.execute(
        select(AuditEntry.event_type, AuditEntry.timestamp, AuditEntry.ip_address)
        .where(
            AuditEntry.user_id == user_id,
            AuditEntry.timestamp >= since,
            or_(
                AuditEntry.event_type == PAYMENT_INITIATED,
                AuditEntry.event_type.in_(list(PAYMENT_OUTCOMES)),
            ),
        )
        .order_by(AuditEntry.seq.asc())
    )

    activity: dict = {"attempt_times": [], "ips": [], "outcomes": []}
    for event_type, timestamp, ip_address in result.all():
        if ip_address:
            activity["ips"].append(ip_address)
        if event_type == PAYMENT_INITIATED:
            activity["attempt_times"].append(timestamp)
        else:
            activity["outcomes"].append(PAYMENT_OUTCOMES[event_type])
    return activity
