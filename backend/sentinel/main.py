import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sentinel.alert_dispatcher.service import AlertDispatcher
from sentinel.api.router import api_router
from sentinel.audit_ledger.exceptions import ConfigurationError, LedgerQueryError
from sentinel.audit_ledger.service import AuditLedger
from sentinel.audit_ledger.signing import AuditSigner
from sentinel.config import settings
from sentinel.database import async_session_factory, engine
from sentinel.middleware.logging import RequestLoggingMiddleware

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)

logger = logging.getLogger("sentinel")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize Sentry if DSN is configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.environment,
            )
            logger.info("Sentry initialized (env=%s)", settings.environment)
        except Exception as e:
            logger.warning("Failed to initialize Sentry: %s", e)

    # No signing key, no service: an unsigned ledger is worse than none.
    try:
        signer = AuditSigner(settings.audit_signing_key, min_key_length=settings.audit_min_key_length)
    except ConfigurationError as e:
        logger.critical("Refusing to start: %s", e)
        raise

    dispatcher = AlertDispatcher(settings)
    app.state.audit_ledger = AuditLedger(async_session_factory, signer, settings, dispatcher)
    if not settings.alert_webhook_url:
        logger.warning("ALERT_WEBHOOK_URL is not set; alerts will only be logged")

    logger.info("Starting Sentinel audit service (env=%s)", settings.environment)
    yield
    logger.info("Shutting down Sentinel audit service")
    await dispatcher.aclose()
    await engine.dispose()


app = FastAPI(
    title="Sentinel - Audit Ledger and Fraud Detection",
    description="Tamper-evident audit logging, heuristic fraud scoring and security alerting",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(LedgerQueryError)
async def ledger_query_error_handler(request: Request, exc: LedgerQueryError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router, prefix="/api")
