"""Pure fraud detection functions — no DB dependency, easy to unit test.

Every detector returns a RiskAssessment with a score capped at 100. A rule
may carry its own anomaly floor: firing it flags the assessment anomalous
regardless of the score.
"""

import statistics
from dataclasses import dataclass, field
from datetime import datetime, timedelta

ANOMALY_THRESHOLD = 60
MAX_RISK_SCORE = 100

SETTLED_STATUSES = ("paid", "shipped", "delivered")


@dataclass
class RiskAssessment:
    is_anomalous: bool = False
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)


def _finish(score: float, reasons: list[str], floor_hit: bool = False) -> RiskAssessment:
    score = int(min(max(score, 0), MAX_RISK_SCORE))
    return RiskAssessment(
        is_anomalous=floor_hit or score >= ANOMALY_THRESHOLD,
        risk_score=score,
        reasons=reasons,
    )


def _format_multiple(multiple: float) -> str:
    rounded = round(multiple, 1)
    return str(int(rounded)) if rounded == int(rounded) else str(rounded)


def _normalize_address(address: str) -> str:
    return " ".join(address.lower().split())


def detect_high_value_order(
    amount: float,
    shipping_address: str | None,
    history: list[dict],
    *,
    high_value_threshold: float = 1000.0,
    absolute_ceiling: float = 10000.0,
    multiple_threshold: float = 3.0,
) -> RiskAssessment:
    """Score an order against the user's order history.

    Args:
        amount: Requested order total
        shipping_address: Destination of the new order, if known
        history: Past orders as dicts with keys: total_amount, status, shipping_address

    Value tiers (first-order, multiple-of-average, absolute ceiling) combine
    by max. A new shipping address on an order that fired the multiple rule
    adds an independent concern.
    """
    score = 0
    reasons: list[str] = []
    floor_hit = False
    multiple_fired = False

    if not history and amount > high_value_threshold:
        score = max(score, 50)
        reasons.append("First order with high value")
        floor_hit = True

    settled = [float(o.get("total_amount") or 0) for o in history if o.get("status") in SETTLED_STATUSES]
    if settled:
        average = sum(settled) / len(settled)
        if average > 0:
            multiple = amount / average
            if multiple >= multiple_threshold:
                score = max(score, min(40 + (multiple - multiple_threshold) * 10, 90))
                reasons.append(f"Order is {_format_multiple(multiple)}x higher than average")
                multiple_fired = True

    if amount > absolute_ceiling:
        score = max(score, 70)
        reasons.append("Order amount exceeds $10,000 absolute threshold")

    if multiple_fired and shipping_address:
        known = {_normalize_address(o["shipping_address"]) for o in history if o.get("shipping_address")}
        if known and _normalize_address(shipping_address) not in known:
            score = max(score + 20, 60)
            reasons.append("New shipping address on high-value order")

    return _finish(score, reasons, floor_hit)


def detect_rapid_order_creation(
    order_times: list[datetime],
    now: datetime,
    *,
    per_hour_limit: int = 5,
    per_day_limit: int = 20,
) -> RiskAssessment:
    """Flag bursts of order creation by one user."""
    last_hour = sum(1 for t in order_times if t >= now - timedelta(hours=1))
    last_day = sum(1 for t in order_times if t >= now - timedelta(hours=24))

    score = 0
    reasons: list[str] = []
    floor_hit = False

    if last_hour > per_hour_limit:
        score += 70
        reasons.append(f"{last_hour} orders created in the last hour")

    if last_day > per_day_limit:
        score += 50
        reasons.append(f"{last_day} orders created in the last 24 hours")
        floor_hit = True

    return _finish(score, reasons, floor_hit)


def is_automated_pattern(attempt_times: list[datetime], min_attempts: int = 5, max_cv: float = 0.1) -> bool:
    """Near-constant spacing between attempts suggests a script.

    Uses the coefficient of variation (stdev / mean) of the intervals.
    """
    if len(attempt_times) < min_attempts:
        return False
    ordered = sorted(attempt_times)
    intervals = [(b - a).total_seconds() for a, b in zip(ordered, ordered[1:])]
    mean = sum(intervals) / len(intervals)
    if mean <= 0:
        return False
    return statistics.pstdev(intervals) / mean < max_cv


def detect_failed_login_pattern(
    user_attempts: list[datetime],
    ip_attempts: list[datetime],
    ip: str | None,
    *,
    threshold: int = 10,
) -> RiskAssessment:
    """Score failed logins inside the detection window.

    Args:
        user_attempts: Failure timestamps for the user (empty for anonymous attempts)
        ip_attempts: Failure timestamps from the source IP
        ip: Source IP, used in the reason text
    """
    score = 0
    reasons: list[str] = []

    if len(user_attempts) >= threshold:
        score = max(score, 60)
        reasons.append(f"{len(user_attempts)} failed login attempts")

    if ip and len(ip_attempts) >= threshold:
        score = max(score, 70)
        reasons.append(f"{len(ip_attempts)} failed login attempts from IP {ip}")

    if ip and is_automated_pattern(ip_attempts):
        score += 80
        reasons.append("Automated brute force pattern detected")

    return _finish(score, reasons)


def detect_payment_fraud(
    attempt_times: list[datetime],
    ip_history: list[str],
    outcomes: list[str],
    current_ip: str | None,
    now: datetime,
    *,
    attempts_per_hour: int = 4,
    distinct_ip_threshold: int = 4,
    failure_rate_threshold: float = 0.7,
    min_samples: int = 5,
) -> RiskAssessment:
    """Score a payment against the user's recent payment activity.

    Args:
        attempt_times: ``payment.initiated`` timestamps (lookback window)
        ip_history: IPs seen on the user's payment events in the last 24 hours
        outcomes: ``"failed"`` / ``"completed"`` for settled payments in the lookback window
        current_ip: IP of the payment being checked
    """
    score = 0
    reasons: list[str] = []
    floor_hit = False

    recent = sum(1 for t in attempt_times if t >= now - timedelta(hours=1))
    if recent > attempts_per_hour:
        score += 40
        reasons.append(f"{recent} payment attempts in the last hour")
        floor_hit = True

    ips = {ip for ip in ip_history if ip}
    if current_ip:
        ips.add(current_ip)
    if len(ips) >= distinct_ip_threshold:
        score += 30
        reasons.append(f"Payments from multiple IP addresses ({len(ips)} in 24 hours)")
        floor_hit = True

    failed = sum(1 for o in outcomes if o == "failed")
    completed = sum(1 for o in outcomes if o == "completed")
    samples = failed + completed
    if samples >= min_samples:
        rate = failed / samples
        if rate >= failure_rate_threshold:
            score += 50
            reasons.append(f"{round(rate * 100)}% payment failure rate")
            floor_hit = True

    return _finish(score, reasons, floor_hit)
