"""
LedgerMatch Application.

Ingests bank statements and company ledger exports, and reconciles them
through a review workflow: matches are proposed, optionally annotated by the
anomaly detector, and confirmed or rejected by a person.
"""
from contextlib import asynccontextmanager

import uvicorn
from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

# Logging is configured before the application modules create their loggers
from ledgermatch.customLogging import app_logger, setup_logging
setup_logging()

from ledgermatch.config.settings import settings
from ledgermatch.controller import operations, reconcile, transactions, upload
from ledgermatch.customLogging.RequestLogger import RequestLoggingMiddleware
from ledgermatch.database.db_configs import Base, dispose_engine, engine, get_database
from ledgermatch.exceptions.exceptions import MainException
from ledgermatch.exceptions.handlers import (
    global_exception_handler,
    main_exception_handler,
    validation_exception_handler,
)
from ledgermatch.middleware.security import (
    SecurityHeadersMiddleware,
    limiter,
    rate_limit_exceeded_handler,
)

# Registers every entity with Base.metadata
import ledgermatch.sqlModels  # noqa: F401

logger = app_logger

ROUTERS = (upload.router, reconcile.router, transactions.router, operations.router)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Starting {settings.APP_NAME} v{settings.APP_VERSION}",
        extra={
            "environment": settings.ENVIRONMENT,
            "max_upload_size_mb": settings.MAX_UPLOAD_SIZE_MB,
            "bank_extensions": settings.BANK_UPLOAD_EXTENSIONS,
            "company_extensions": settings.COMPANY_UPLOAD_EXTENSIONS,
            "matching_timeout_seconds": settings.MATCHING_TIMEOUT_SECONDS,
            "match_score_threshold": settings.MATCH_SCORE_THRESHOLD,
            "anomaly_window_days": settings.ANOMALY_WINDOW_DAYS,
        }
    )
    if settings.ENABLE_TEST_DATA_DELETION:
        logger.warning(
            "Aged data deletion is ENABLED",
            extra={"min_days_old": settings.DELETION_MIN_DAYS_OLD}
        )

    try:
        Base.metadata.create_all(engine)
    except OperationalError as e:
        logger.critical(f"Could not create ledger tables: {e}", exc_info=True)
        raise
    logger.info("Ledger tables ready")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")
    dispose_engine()


def register_middleware(app: FastAPI) -> None:
    """Add middleware; the last one added runs first."""
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
        expose_headers=["X-Correlation-ID", "Retry-After"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name="X-Correlation-ID",
        update_request_header=True,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(MainException, main_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)


_show_docs = not settings.is_production

app = FastAPI(
    title=settings.APP_NAME,
    description="Bank statement and company ledger reconciliation",
    version=settings.APP_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if _show_docs else None,
    redoc_url="/redoc" if _show_docs else None,
    openapi_url="/openapi.json" if _show_docs else None,
)
app.state.limiter = limiter

register_middleware(app)
register_exception_handlers(app)
for router in ROUTERS:
    app.include_router(router)


@app.get("/health", tags=["Health"])
async def health_check(db: Session = Depends(get_database)):
    """Liveness plus a database round trip; 503 when the database is unreachable."""
    payload = {
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }
    try:
        db.execute(text("SELECT 1"))
    except OperationalError as e:
        logger.warning(f"Health check failed: database unreachable ({e})")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "unavailable", **payload},
        )
    return {"status": "healthy", "database": "ok", **payload}


if __name__ == "__main__":
    uvicorn.run(
        "ledgermatch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.effective_log_level.lower(),
    )
