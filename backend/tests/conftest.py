import os

# Must be set before sentinel.config is imported.
TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef-0123456789abcdef"
os.environ.setdefault("AUDIT_SIGNING_KEY", TEST_SIGNING_KEY)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./sentinel_test.db")
os.environ.setdefault("ALERT_WEBHOOK_URL", "")

from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

# Import all models so they register with Base.metadata for create_all
import sentinel.models  # noqa: E402, F401
from sentinel.alert_dispatcher.service import AlertDispatcher  # noqa: E402
from sentinel.audit_ledger.service import AuditLedger  # noqa: E402
from sentinel.audit_ledger.signing import AuditSigner  # noqa: E402
from sentinel.config import Settings  # noqa: E402
from sentinel.models.base import Base  # noqa: E402


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        audit_signing_key=TEST_SIGNING_KEY,
        alert_webhook_url="",
        alert_webhook_secret="",
        query_timeout_seconds=5.0,
    )


# SQLite file per test: the ledger opens its own sessions, so an in-memory
# database would not be shared between them.
@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def signer() -> AuditSigner:
    return AuditSigner(TEST_SIGNING_KEY)


@pytest.fixture
def mock_dispatcher():
    """Records dispatched alerts without sending anything."""
    return MagicMock(spec=AlertDispatcher)


@pytest.fixture
def ledger(session_factory, signer, test_settings, mock_dispatcher) -> AuditLedger:
    return AuditLedger(session_factory, signer, test_settings, mock_dispatcher)


@pytest.fixture
async def client(db_session, ledger):
    from sentinel.dependencies import get_audit_ledger, get_db
    from sentinel.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_ledger] = lambda: ledger

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
