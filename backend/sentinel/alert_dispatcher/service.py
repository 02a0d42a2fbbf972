"""AlertDispatcher — out-of-band notifications for high-risk findings.

Alerts are rendered to a plain-text body and POSTed as JSON to the
configured webhook with an HMAC-SHA256 signature header. Retries up to 3
times with exponential backoff.

INVARIANT: dispatch is fire-and-forget. ``send`` never raises and
``dispatch`` returns before any network I/O happens.
"""

import asyncio
import hashlib
import hmac
import json
import logging

import httpx

from sentinel.alert_dispatcher.triggers import (
    category_for_event,
    classify_severity,
    recommendations_for,
    should_send,
)
from sentinel.config import Settings
from sentinel.schemas.alert import AlertCategory, AlertData, AlertSeverity

logger = logging.getLogger("sentinel.alerts")

_MAX_ATTEMPTS = 3


def render_alert_text(alert: AlertData) -> str:
    """Plain-text notification body."""
    lines = [
        "===========================================",
        f"SECURITY ALERT - {alert.severity.value.upper()}",
        "===========================================",
        "",
        f"Alert Type: {alert.type.value.upper()}",
        f"Title: {alert.title}",
        f"Severity: {alert.severity.value.upper()}",
        f"Timestamp: {alert.timestamp.isoformat()}",
        "",
        "Description:",
        alert.description,
    ]
    if alert.user_id:
        lines.append(f"User ID: {alert.user_id}")
    if alert.event_type:
        lines.append(f"Event Type: {alert.event_type}")
    if alert.risk_score is not None:
        lines.append(f"Risk Score: {alert.risk_score}/100")

    if alert.metadata:
        lines += ["", "Additional Information:"]
        lines += [f"  - {key}: {value}" for key, value in alert.metadata.items()]

    if alert.recommendations:
        lines += ["", "Recommended Actions:"]
        lines += [f"  {i}. {rec}" for i, rec in enumerate(alert.recommendations, start=1)]

    lines += ["", "===========================================", "This is an automated security alert."]
    return "\n".join(lines)


# ── Alert builders ──


def fraud_alert(user_id: str | None, reasons: list[str], risk_score: int, metadata: dict | None = None) -> AlertData:
    severity = AlertSeverity.CRITICAL if risk_score >= 80 else AlertSeverity.HIGH
    return AlertData(
        type=AlertCategory.FRAUD,
        severity=severity,
        title="Fraud Detection Alert",
        description=f"Fraudulent activity detected with risk score {risk_score}/100. {'; '.join(reasons)}",
        user_id=user_id,
        risk_score=risk_score,
        metadata=metadata or {},
        recommendations=recommendations_for(AlertCategory.FRAUD),
    )


def high_risk_order_alert(
    user_id: str | None,
    order_id: str | None,
    amount: float | None,
    reasons: list[str],
    risk_score: int,
) -> AlertData:
    severity = AlertSeverity.CRITICAL if risk_score >= 80 else AlertSeverity.HIGH
    subject = f"Order {order_id}" if order_id else "Order"
    metadata = {"order_id": order_id, "amount": amount, "reasons": "; ".join(reasons)}
    if amount is not None:
        metadata["amount_formatted"] = f"${amount:,.2f}"
    return AlertData(
        type=AlertCategory.HIGH_RISK,
        severity=severity,
        title="High-Risk Order Detected",
        description=f"{subject} flagged as high-risk. {'; '.join(reasons)}",
        user_id=user_id,
        event_type="order.created",
        risk_score=risk_score,
        metadata=metadata,
        recommendations=recommendations_for(AlertCategory.HIGH_RISK),
    )


def failed_login_alert(
    user_id: str | None,
    ip: str | None,
    attempt_count: int | None,
    risk_score: int,
    *,
    reasons: list[str] | None = None,
) -> AlertData:
    severity = AlertSeverity.CRITICAL if risk_score >= 80 else AlertSeverity.HIGH
    description = f"Multiple failed login attempts detected from IP {ip or 'unknown'}. Potential brute force attack."
    if reasons:
        description += f" {'; '.join(reasons)}"
    return AlertData(
        type=AlertCategory.SECURITY,
        severity=severity,
        title="Brute Force Attack Detected",
        description=description,
        user_id=user_id,
        event_type="security.failed_login",
        risk_score=risk_score,
        metadata={"ip": ip, "attempt_count": attempt_count, "attack_type": "Brute Force"},
        recommendations=recommendations_for(AlertCategory.SECURITY),
    )


def system_alert(
    title: str,
    description: str,
    severity: AlertSeverity = AlertSeverity.MEDIUM,
    metadata: dict | None = None,
) -> AlertData:
    return AlertData(
        type=AlertCategory.SYSTEM,
        severity=severity,
        title=title,
        description=description,
        metadata=metadata or {},
        recommendations=recommendations_for(AlertCategory.SYSTEM),
    )


def alert_for_entry(
    event_type: str,
    risk_score: int,
    *,
    action: str,
    resource: str,
    user_id: str | None = None,
    metadata: dict | None = None,
) -> AlertData:
    """Alert for a freshly appended high-risk ledger entry."""
    category = category_for_event(event_type)
    severity = classify_severity(risk_score)
    label = "Critical" if severity == AlertSeverity.CRITICAL else "High-Risk"
    return AlertData(
        type=category,
        severity=severity,
        title=f"{label} Event: {event_type}",
        description=f"High-risk event detected (score: {risk_score}/100). {action} on {resource}.",
        user_id=user_id,
        event_type=event_type,
        risk_score=risk_score,
        metadata=metadata or {},
        recommendations=recommendations_for(category),
    )


class AlertDispatcher:
    """Sends alerts to the configured webhook without ever blocking callers."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        *,
        backoff_base: float = 1.0,
    ):
        self.webhook_url = settings.alert_webhook_url
        self.webhook_secret = settings.alert_webhook_secret
        self.send_medium = settings.alert_send_medium
        self.backoff_base = backoff_base
        self._client = http_client or httpx.AsyncClient(timeout=settings.alert_timeout_seconds)
        self._owns_client = http_client is None
        self._pending: set[asyncio.Task] = set()

    def dispatch(self, alert: AlertData) -> asyncio.Task | None:
        """Schedule delivery in the background and return immediately."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running event loop; alert dropped: %s", alert.title)
            return None
        task = loop.create_task(self.send(alert))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def send(self, alert: AlertData) -> str:
        """Deliver one alert. Returns the outcome; never raises."""
        try:
            deliver, reason = should_send(alert.severity, send_medium=self.send_medium)
            if not deliver:
                if alert.severity == AlertSeverity.MEDIUM:
                    logger.warning("Alert not sent (%s): %s - %s", reason, alert.title, alert.description)
                    return "logged"
                logger.debug("Alert suppressed (%s): %s", reason, alert.title)
                return "suppressed"

            if not self.webhook_url:
                logger.warning(
                    "Alert channel not configured, skipping delivery:\n%s", render_alert_text(alert)
                )
                return "skipped"

            return await self._deliver(alert)
        except Exception as e:
            logger.error("Failed to send alert %r: %s", alert.title, e)
            return "failed"

    async def _deliver(self, alert: AlertData) -> str:
        payload = alert.model_dump(mode="json")
        payload["text"] = render_alert_text(alert)
        body = json.dumps(payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Sentinel-Severity": alert.severity.value,
        }
        if self.webhook_secret:
            digest = hmac.new(self.webhook_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
            headers["X-Sentinel-Signature"] = f"sha256={digest}"

        last_error: str | None = None
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            try:
                response = await self._client.post(self.webhook_url, content=body, headers=headers)
                if 200 <= response.status_code < 300:
                    logger.info(
                        "Alert delivered: type=%s severity=%s attempt=%d",
                        alert.type.value,
                        alert.severity.value,
                        attempt,
                    )
                    return "delivered"
                last_error = f"HTTP {response.status_code}"
            except httpx.TimeoutException:
                last_error = "timeout"
            except httpx.RequestError as e:
                last_error = str(e)

            logger.warning("Alert delivery failed: %s attempt=%d/%d", last_error, attempt, _MAX_ATTEMPTS)
            if attempt < _MAX_ATTEMPTS:
                await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))

        logger.error("Alert delivery exhausted retries: title=%r error=%s", alert.title, last_error)
        return "failed"

    async def drain(self) -> None:
        """Wait for in-flight alerts (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client:
            await self._client.aclose()
