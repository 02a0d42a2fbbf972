import pytest

from sentinel.audit_ledger.exceptions import ConfigurationError
from sentinel.audit_ledger.service import AuditLedger
from sentinel.config import settings
from sentinel.main import app


@pytest.mark.asyncio
async def test_health_endpoint_returns_200(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_endpoint_has_required_fields(client):
    response = await client.get("/api/v1/health")
    data = response.json()
    assert "status" in data
    assert "database" in data
    assert "timestamp" in data
    assert "environment" in data
    assert "version" in data


@pytest.mark.asyncio
async def test_health_endpoint_reports_healthy_database(client):
    response = await client.get("/api/v1/health")
    data = response.json()
    assert data["database"] == "healthy"
    assert data["status"] == "healthy"
    assert data["version"] == "0.1.0"


@pytest.mark.asyncio
async def test_responses_carry_request_id(client):
    response = await client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
    assert response.headers["X-Request-ID"] == "abc123"


@pytest.mark.asyncio
@pytest.mark.parametrize("signing_key", ["", "too-short"])
async def test_startup_refuses_unusable_signing_key(monkeypatch, signing_key):
    monkeypatch.setattr(settings, "audit_signing_key", signing_key)

    with pytest.raises(ConfigurationError):
        async with app.router.lifespan_context(app):
            pass


@pytest.mark.asyncio
async def test_startup_builds_ledger_with_valid_key(monkeypatch):
    monkeypatch.setattr(settings, "audit_signing_key", "k" * 32)
    monkeypatch.setattr(settings, "sentry_dsn", "")

    async with app.router.lifespan_context(app):
        assert isinstance(app.state.audit_ledger, AuditLedger)
