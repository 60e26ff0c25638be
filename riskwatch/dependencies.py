"""Dependency injection providers for FastAPI."""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from riskwatch.config import Settings
from riskwatch.services.audit_log import SafeAuditTrail, SqlAuditLog
from riskwatch.services.event_store import build_event_store
from riskwatch.services.fallback import FallbackProvider
from riskwatch.services.notifications import CeleryAlertNotifier, NullAlertNotifier
from riskwatch.services.security_monitor import SecurityMonitor


def build_security_monitor(
    settings: Settings,
    session_factory: Optional[async_sessionmaker] = None,
) -> SecurityMonitor:
    """Construct the engine with SQL-backed ports selected from settings."""
    if session_factory is None:
        from riskwatch.database import async_session_factory
        session_factory = async_session_factory

    audit_log = SqlAuditLog(session_factory)
    audit_trail = SafeAuditTrail(audit_log)
    provider = FallbackProvider()
    return SecurityMonitor(
        activity_log=audit_log,
        event_store=build_event_store(settings, session_factory, audit_trail, provider),
        audit_trail=audit_trail,
        notifier=CeleryAlertNotifier() if settings.ALERTS_ENABLED else NullAlertNotifier(),
        config=settings.DETECTION,
        provider=provider,
    )


async def get_security_monitor(request: Request) -> SecurityMonitor:
    """The engine instance built at startup."""
    monitor = getattr(request.app.state, "security_monitor", None)
    if monitor is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Security monitor not initialized",
        )
    return monitor


# Type aliases for dependency injection
SecurityMonitorDep = Annotated[SecurityMonitor, Depends(get_security_monitor)]
