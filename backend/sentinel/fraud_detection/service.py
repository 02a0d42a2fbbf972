"""FraudDetectionService — orchestrates the detectors relevant to an action.

Actions:
1. order   -> high-value order (when an amount is given) + rapid order creation
2. payment -> payment fraud
3. login   -> failed login pattern

The headline score is the max across detectors. The check is anomalous when
that max reaches ``fraud_anomaly_threshold`` or when enough detectors flag
independently (``fraud_compounding_min_signals``, capped at the number of
detectors that ran).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from sentinel.config import Settings
from sentinel.fraud_detection.detectors import (
    RiskAssessment,
    detect_failed_login_pattern,
    detect_high_value_order,
    detect_payment_fraud,
    detect_rapid_order_creation,
)
from sentinel.fraud_detection.history import (
    load_failed_login_times,
    load_order_history,
    load_order_times,
    load_payment_activity,
)
from sentinel.schemas.fraud import FraudCheckRequest

logger = logging.getLogger("sentinel.fraud")


@dataclass
class FraudCheckResult:
    action: str
    user_id: str | None
    is_anomalous: bool = False
    risk_score: int = 0
    reasons: list[str] = field(default_factory=list)
    detectors: list[tuple[str, RiskAssessment]] = field(default_factory=list)


class FraudDetectionService:
    """Loads history for each detector and combines their assessments."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.anomaly_threshold = settings.fraud_anomaly_threshold
        self.compounding_min_signals = settings.fraud_compounding_min_signals

    async def perform_fraud_check(
        self,
        db: AsyncSession,
        user_id: str | None,
        request: FraudCheckRequest,
        *,
        now: datetime | None = None,
    ) -> FraudCheckResult:
        """Run the detectors for ``request.action`` and aggregate their findings."""
        now = now or datetime.now(timezone.utc)
        detectors: list[tuple[str, RiskAssessment]] = []

        if request.action == "order":
            if request.amount is not None:
                detectors.append((
                    "high_value_order",
                    await self.detect_high_value_order(db, user_id, request.amount, request.shipping_address),
                ))
            detectors.append(("rapid_order_creation", await self.detect_rapid_order_creation(db, user_id, now=now)))
        elif request.action == "payment":
            detectors.append(("payment_fraud", await self.detect_payment_fraud(db, user_id, request.ip, now=now)))
        elif request.action == "login":
            detectors.append((
                "failed_login_pattern",
                await self.detect_failed_login_pattern(db, user_id, request.ip, now=now),
            ))
        else:
            raise ValueError(f"Unknown fraud check action: {request.action}")

        result = self.combine(request.action, user_id, detectors)
        if result.is_anomalous:
            logger.warning(
                "Fraud check flagged: action=%s user=%s risk=%d reasons=%s",
                request.action,
                user_id or "-",
                result.risk_score,
                "; ".join(result.reasons),
            )
        return result

    def combine(
        self,
        action: str,
        user_id: str | None,
        detectors: list[tuple[str, RiskAssessment]],
    ) -> FraudCheckResult:
        """Aggregate per-detector assessments into one decision."""
        scores = [a.risk_score for _, a in detectors]
        risk_score = min(max(scores, default=0), 100)
        reasons = [reason for _, a in detectors for reason in a.reasons]
        flagged = sum(1 for _, a in detectors if a.is_anomalous)

        # With a single detector selected, its own verdict (floor rules included) stands.
        required = min(self.compounding_min_signals, len(detectors)) if detectors else 1
        is_anomalous = risk_score >= self.anomaly_threshold or flagged >= required

        return FraudCheckResult(
            action=action,
            user_id=user_id,
            is_anomalous=is_anomalous,
            risk_score=risk_score,
            reasons=reasons,
            detectors=detectors,
        )

    # ── DB-backed detectors ──

    async def detect_high_value_order(
        self,
        db: AsyncSession,
        user_id: str | None,
        amount: float,
        shipping_address: str | None = None,
    ) -> RiskAssessment:
        history = await load_order_history(db, user_id) if user_id else []
        return detect_high_value_order(
            amount,
            shipping_address,
            history,
            high_value_threshold=self.settings.high_value_order_threshold,
            absolute_ceiling=self.settings.absolute_order_ceiling,
            multiple_threshold=self.settings.order_average_multiple,
        )

    async def detect_rapid_order_creation(
        self,
        db: AsyncSession,
        user_id: str | None,
        *,
        now: datetime | None = None,
    ) -> RiskAssessment:
        now = now or datetime.now(timezone.utc)
        order_times = await load_order_times(db, user_id, now - timedelta(hours=24)) if user_id else []
        return detect_rapid_order_creation(
            order_times,
            now,
            per_hour_limit=self.settings.rapid_orders_per_hour,
            per_day_limit=self.settings.rapid_orders_per_day,
        )

    async def detect_failed_login_pattern(
        self,
        db: AsyncSession,
        user_id: str | None,
        ip: str | None,
        *,
        now: datetime | None = None,
    ) -> RiskAssessment:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(minutes=self.settings.failed_login_window_minutes)
        user_attempts = await load_failed_login_times(db, since, user_id=user_id) if user_id else []
        ip_attempts = await load_failed_login_times(db, since, ip=ip) if ip else []
        return detect_failed_login_pattern(
            user_attempts,
            ip_attempts,
            ip,
            threshold=self.settings.failed_login_threshold,
        )

    async def detect_payment_fraud(
        self,
        db: AsyncSession,
        user_id: str | None,
        ip: str | None,
        *,
        now: datetime | None = None,
    ) -> RiskAssessment:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=self.settings.payment_lookback_hours)
        if user_id:
            activity = await load_payment_activity(db, user_id, since)
        else:
            activity = {"attempt_times": [], "ips": [], "outcomes": []}
        return detect_payment_fraud(
            activity["attempt_times"],
            activity["ips"],
            activity["outcomes"],
            ip,
            now,
            attempts_per_hour=self.settings.payment_attempts_per_hour,
            distinct_ip_threshold=self.settings.payment_distinct_ip_threshold,
            failure_rate_threshold=self.settings.payment_failure_rate_threshold,
            min_samples=self.settings.payment_failure_min_samples,
        )
