"""Tests for FraudDetectionService: history loading and aggregate decisions."""

from datetime import datetime, timedelta, timezone

import pytest

from sentinel.fraud_detection.detectors import RiskAssessment
from sentinel.fraud_detection.service import FraudDetectionService
from sentinel.models.order import Order, OrderStatus
from sentinel.schemas.fraud import FraudCheckRequest


@pytest.fixture
def service(test_settings) -> FraudDetectionService:
    return FraudDetectionService(test_settings)


async def _seed_orders(
    db_session,
    user_id: str,
    count: int,
    *,
    amount: float = 100.0,
    address: str = "1 Main St",
    created_at: datetime | None = None,
    status: OrderStatus = OrderStatus.DELIVERED,
) -> None:
    created_at = created_at or datetime.now(timezone.utc) - timedelta(days=10)
    for _ in range(count):
        db_session.add(Order(
            user_id=user_id,
            total_amount=amount,
            status=status,
            shipping_address=address,
            created_at=created_at,
        ))
    # Commit so the ledger's own sessions are not blocked by an open write
    await db_session.commit()


class TestOrderChecks:
    @pytest.mark.asyncio
    async def test_multiple_of_average(self, service, db_session):
        await _seed_orders(db_session, "user-1", 5)

        result = await service.perform_fraud_check(
            db_session, "user-1", FraudCheckRequest(action="order", amount=500, shipping_address="1 Main St")
        )

        assert result.is_anomalous
        assert result.risk_score == 60
        assert "Order is 5x higher than average" in result.reasons
        assert [name for name, _ in result.detectors] == ["high_value_order", "rapid_order_creation"]

    @pytest.mark.asyncio
    async def test_new_address(self, service, db_session):
        await _seed_orders(db_session, "user-1", 5)

        result = await service.perform_fraud_check(
            db_session, "user-1", FraudCheckRequest(action="order", amount=350, shipping_address="77 Harbor Way")
        )

        assert result.risk_score >= 60
        assert "New shipping address on high-value order" in result.reasons

    @pytest.mark.asyncio
    async def test_absolute_ceiling_without_history(self, service, db_session):
        result = await service.perform_fraud_check(
            db_session, "new-user", FraudCheckRequest(action="order", amount=15000)
        )
        assert result.risk_score >= 70
        assert result.is_anomalous

    @pytest.mark.asyncio
    async def test_other_users_history_is_ignored(self, service, db_session):
        await _seed_orders(db_session, "someone-else", 5, amount=10)

        result = await service.perform_fraud_check(
            db_session, "user-1", FraudCheckRequest(action="order", amount=500)
        )
        assert result.risk_score == 0
        assert not result.is_anomalous

    @pytest.mark.asyncio
    async def test_rapid_creation(self, service, db_session):
        now = datetime.now(timezone.utc)
        await _seed_orders(db_session, "user-1", 6, created_at=now - timedelta(minutes=10))

        assessment = await service.detect_rapid_order_creation(db_session, "user-1", now=now)

        assert assessment.risk_score >= 70
        assert "6 orders created in the last hour" in assessment.reasons

    @pytest.mark.asyncio
    async def test_order_without_amount_runs_velocity_only(self, service, db_session):
        result = await service.perform_fraud_check(db_session, "user-1", FraudCheckRequest(action="order"))
        assert [name for name, _ in result.detectors] == ["rapid_order_creation"]
        assert result.risk_score == 0


class TestLoginChecks:
    @pytest.mark.asyncio
    async def test_failed_logins_from_ip(self, service, ledger, db_session):
        for _ in range(12):
            await ledger.log_security_event("security.failed_login", None, {"ip": "203.0.113.7", "reason": "bad password"})

        result = await service.perform_fraud_check(
            db_session, None, FraudCheckRequest(action="login", ip="203.0.113.7")
        )

        assert result.is_anomalous
        assert result.risk_score >= 70
        assert "12 failed login attempts from IP 203.0.113.7" in result.reasons

    @pytest.mark.asyncio
    async def test_failed_logins_for_user(self, service, ledger, db_session):
        for i in range(10):
            await ledger.log_security_event("security.failed_login", "user-1", {"ip": f"198.51.100.{i}"})

        assessment = await service.detect_failed_login_pattern(db_session, "user-1", "192.0.2.1")
        assert assessment.risk_score == 60
        assert assessment.reasons == ["10 failed login attempts"]

    @pytest.mark.asyncio
    async def test_old_failures_fall_outside_window(self, service, ledger, db_session):
        for _ in range(12):
            await ledger.log_security_event("security.failed_login", "user-1", {"ip": "203.0.113.7"})

        later = datetime.now(timezone.utc) + timedelta(minutes=30)
        assessment = await service.detect_failed_login_pattern(db_session, "user-1", "203.0.113.7", now=later)
        assert assessment.risk_score == 0


class TestPaymentChecks:
    @pytest.mark.asyncio
    async def test_velocity_and_ip_spread(self, service, ledger, db_session):
        for i in range(5):
            await ledger.log_payment_event(
                "payment.initiated", "user-1", f"order-{i}", {"amount": 20, "ip": f"10.0.0.{i % 4 + 1}"}, "success"
            )

        result = await service.perform_fraud_check(
            db_session, "user-1", FraudCheckRequest(action="payment", ip="10.0.0.1")
        )

        assert result.is_anomalous
        assert result.risk_score == 70
        assert "5 payment attempts in the last hour" in result.reasons
        assert "Payments from multiple IP addresses (4 in 24 hours)" in result.reasons

    @pytest.mark.asyncio
    async def test_failure_rate(self, service, ledger, db_session):
        for i in range(4):
            await ledger.log_payment_event("payment.failed", "user-1", f"order-{i}", {"amount": 20}, "failure")
        await ledger.log_payment_event("payment.completed", "user-1", "order-9", {"amount": 20}, "success")

        assessment = await service.detect_payment_fraud(db_session, "user-1", None)
        assert assessment.risk_score == 50
        assert assessment.is_anomalous
        assert assessment.reasons == ["80% payment failure rate"]

    @pytest.mark.asyncio
    async def test_anonymous_payment_has_no_history(self, service, db_session):
        result = await service.perform_fraud_check(
            db_session, None, FraudCheckRequest(action="payment", ip="10.0.0.1")
        )
        assert result.risk_score == 0
        assert not result.is_anomalous


class TestAggregation:
    """Max-of-scores headline plus the multi-signal compounding rule."""

    def _assessment(self, score: int, anomalous: bool, reason: str) -> RiskAssessment:
        return RiskAssessment(is_anomalous=anomalous, risk_score=score, reasons=[reason])

    def test_headline_is_max_and_reasons_are_concatenated(self, service):
        result = service.combine("order", "user-1", [
            ("high_value_order", self._assessment(45, False, "a")),
            ("rapid_order_creation", self._assessment(70, True, "b")),
        ])
        assert result.risk_score == 70
        assert result.reasons == ["a", "b"]
        assert result.is_anomalous

    def test_two_weak_signals_compound(self, service):
        result = service.combine("order", "user-1", [
            ("high_value_order", self._assessment(50, True, "first order")),
            ("rapid_order_creation", self._assessment(50, True, "daily volume")),
        ])
        assert result.risk_score == 50
        assert result.is_anomalous

    def test_one_weak_signal_of_two_does_not(self, service):
        result = service.combine("order", "user-1", [
            ("high_value_order", self._assessment(50, True, "first order")),
            ("rapid_order_creation", self._assessment(0, False, "")),
        ])
        assert not result.is_anomalous

    def test_single_detector_verdict_stands(self, service):
        result = service.combine("payment", "user-1", [
            ("payment_fraud", self._assessment(40, True, "velocity")),
        ])
        assert result.is_anomalous

    def test_compounding_is_configurable(self, test_settings):
        test_settings.fraud_compounding_min_signals = 1
        eager = FraudDetectionService(test_settings)
        result = eager.combine("order", "user-1", [
            ("high_value_order", self._assessment(50, True, "a")),
            ("rapid_order_creation", self._assessment(0, False, "")),
        ])
        assert result.is_anomalous

        test_settings.fraud_compounding_min_signals = 3
        strict = FraudDetectionService(test_settings)
        result = strict.combine("order", "user-1", [
            ("high_value_order", self._assessment(50, True, "a")),
            ("rapid_order_creation", self._assessment(50, True, "b")),
        ])
        # Capped at the number of detectors that ran
        assert result.is_anomalous

        test_settings.fraud_anomaly_threshold = 40
        lenient = FraudDetectionService(test_settings)
        assert lenient.combine("payment", None, [("payment_fraud", self._assessment(45, False, "x"))]).is_anomalous

    @pytest.mark.asyncio
    async def test_unknown_action_raises(self, service, db_session):
        request = FraudCheckRequest.model_construct(action="refund", user_id=None, amount=None, shipping_address=None, ip=None)
        with pytest.raises(ValueError):
            await service.perform_fraud_check(db_session, "user-1", request)
