"""AlertTriggers — pure functions deciding severity, delivery and remediation.

No DB or network dependencies, easy to unit test.
"""

from sentinel.schemas.alert import AlertCategory, AlertSeverity

CRITICAL_RISK_SCORE = 80
HIGH_RISK_SCORE = 70
MEDIUM_RISK_SCORE = 30

RECOMMENDATIONS: dict[AlertCategory, list[str]] = {
    AlertCategory.FRAUD: [
        "Review user account immediately",
        "Check transaction history for patterns",
        "Contact user to verify activity",
        "Consider temporarily locking account",
        "Monitor for additional suspicious activity",
    ],
    AlertCategory.HIGH_RISK: [
        "Hold order for manual review",
        "Contact customer to verify order",
        "Check shipping address history",
        "Verify payment method",
        "Review user's order history",
    ],
    AlertCategory.SECURITY: [
        "Block IP address immediately",
        "Enable CAPTCHA on login page",
        "Notify affected user (if identified)",
        "Review firewall rules",
        "Monitor for distributed attack patterns",
    ],
    AlertCategory.SYSTEM: [
        "Check service and database health",
        "Review error logs around the alert timestamp",
        "Verify audit ledger integrity once the service recovers",
    ],
}


def classify_severity(risk_score: int | None) -> AlertSeverity:
    """Map a 0-100 risk score onto an alert severity band."""
    if risk_score is None:
        return AlertSeverity.LOW
    if risk_score >= CRITICAL_RISK_SCORE:
        return AlertSeverity.CRITICAL
    if risk_score >= HIGH_RISK_SCORE:
        return AlertSeverity.HIGH
    if risk_score >= MEDIUM_RISK_SCORE:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def should_send(severity: AlertSeverity, *, send_medium: bool = False) -> tuple[bool, str]:
    """Determine if an alert leaves the process.

    Returns (send, reason). Medium alerts are always logged, sent only by policy.
    """
    if severity in (AlertSeverity.CRITICAL, AlertSeverity.HIGH):
        return True, f"{severity.value.capitalize()} severity"

    if severity == AlertSeverity.MEDIUM:
        if send_medium:
            return True, "Medium severity, delivery enabled by policy"
        return False, "Medium severity, log only"

    return False, "Low severity, never sent"


def category_for_event(event_type: str | None) -> AlertCategory:
    if not event_type:
        return AlertCategory.HIGH_RISK
    if event_type.startswith("payment.") or event_type == "security.fraud_detected":
        return AlertCategory.FRAUD
    if event_type.startswith("security."):
        return AlertCategory.SECURITY
    return AlertCategory.HIGH_RISK


def recommendations_for(category: AlertCategory) -> list[str]:
    return list(RECOMMENDATIONS.get(category, []))
