"""Event taxonomy and the risk heuristics attached to category events.

Pure functions, no DB dependency. These give every auth, payment, order
and user event a baseline score even when no detector ran for it.
"""

import math
from typing import Any

AUTH_EVENT_TYPES = {
    "auth.login",
    "auth.logout",
    "auth.register",
    "auth.password_reset",
    "auth.email_verify",
    "auth.2fa_enable",
    "auth.2fa_disable",
}
PAYMENT_EVENT_TYPES = {"payment.initiated", "payment.completed", "payment.failed", "payment.refunded"}
ORDER_EVENT_TYPES = {"order.created", "order.updated", "order.cancelled", "order.shipped"}
USER_EVENT_TYPES = {"user.profile_update", "user.address_change", "user.role_change", "user.account_locked"}
SECURITY_EVENT_TYPES = {
    "security.failed_login",
    "security.rate_limit_exceeded",
    "security.suspicious_activity",
    "security.fraud_detected",
}

EVENT_TYPES_BY_CATEGORY = {
    "auth": AUTH_EVENT_TYPES,
    "payment": PAYMENT_EVENT_TYPES,
    "order": ORDER_EVENT_TYPES,
    "user": USER_EVENT_TYPES,
    "security": SECURITY_EVENT_TYPES,
}

DEFAULT_SECURITY_RISK = 70


def split_event_type(event_type: str) -> tuple[str, str]:
    """``"order.created"`` -> ``("order", "created")``."""
    resource, _, action = event_type.partition(".")
    return resource, action or resource


def is_known_event_type(category: str, event_type: str) -> bool:
    return isinstance(event_type, str) and event_type in EVENT_TYPES_BY_CATEGORY.get(category, ())


def parse_amount(value: Any) -> float | None:
    """Numeric value of a free-form metadata amount, or None when it has none."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if math.isfinite(amount) else None


def auth_event_risk(result: str) -> int | None:
    return 50 if result == "failure" else None


def payment_event_risk(amount: float | None, result: str) -> int:
    score = 0
    amount = amount or 0
    if amount > 1000:
        score += 30
    if amount > 5000:
        score += 20
    if result == "failure":
        score += 25
    return min(score, 100)


def order_event_risk(
    before: dict | None,
    after: dict | None,
    total_amount: float | None,
) -> int:
    score = 0
    old_address = (before or {}).get("shipping_address")
    new_address = (after or {}).get("shipping_address")
    if old_address and new_address and old_address != new_address:
        score = 60
    if total_amount is not None and total_amount > 10000:
        score += 30
    return min(score, 100)


def user_event_risk(event_type: str) -> int:
    if event_type == "user.role_change":
        return 80
    if event_type == "user.address_change":
        return 40
    return 0
