from sentinel.models.base import Base, TimestampMixin, UTCDateTime
from sentinel.models.audit import AuditEntry, AuditResult, ImmutableEntryError
from sentinel.models.order import Order, OrderStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "AuditEntry",
    "AuditResult",
    "ImmutableEntryError",
    "Order",
    "OrderStatus",
]
