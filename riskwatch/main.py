"""FastAPI application entry point.

@module main
@description Builds the SecurityMonitor at startup, mounts the security API
and exposes liveness/readiness checks.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from riskwatch.config import get_settings
from riskwatch.database import check_db_health, close_db, init_db
from riskwatch.dependencies import build_security_monitor
from riskwatch.routers import security

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")

    # A missing database is not fatal; the monitor falls back per call.
    try:
        await init_db(create_tables=settings.DATABASE_CREATE_TABLES)
    except Exception as e:
        logger.warning(f"Database unavailable at startup, serving degraded results: {e}")

    app.state.security_monitor = build_security_monitor(settings)
    logger.info(
        f"Security monitor ready: event store "
        f"{'enabled' if settings.SECURITY_EVENT_STORE_ENABLED else 'disabled (audit fallback)'}, "
        f"alerts {'enabled' if settings.ALERTS_ENABLED else 'disabled'}"
    )

    yield

    await close_db()
    logger.info(f"{settings.APP_NAME} stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Threat detection and risk scoring for authentication and user activity",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Security", "description": "Security events, detectors, alert lifecycle and metrics."},
    ],
)

app.include_router(security.router, prefix=settings.API_V1_PREFIX, tags=["Security"])


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    content = {"detail": "Internal server error"}
    if settings.DEBUG:
        content = {"detail": str(exc), "type": type(exc).__name__}
    return JSONResponse(status_code=500, content=content)


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness check."""
    return {"status": "healthy", "version": settings.APP_VERSION}


@app.get("/health/ready", tags=["health"])
async def readiness_check():
    """Readiness check.

    Ready as long as the database answers. A missing ``security_events``
    table only degrades event reads to audit-log approximations, so it is
    reported but does not fail the check.
    """
    health = await check_db_health()
    body = {
        "status": "ready" if health["database"] else "not ready",
        "database": "connected" if health["database"] else "disconnected",
        "event_store": "available" if health["security_events"] else "degraded",
        "audit_log": "available" if health["audit_logs"] else "unavailable",
    }
    if not health["database"]:
        return JSONResponse(status_code=503, content=body)
    return body
