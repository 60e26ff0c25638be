"""Periodic security scans.

Runs anomaly detection for recently active users and logs a metrics
snapshot for operators.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskwatch.config import get_settings
from riskwatch.services.security_monitor import SecurityMonitor
from riskwatch.tasks import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run async coroutine in sync Celery context.

    Uses asyncio.run() so each task gets a clean event loop in forked workers.
    """
    return asyncio.run(coro)


@asynccontextmanager
async def _task_monitor() -> AsyncGenerator[SecurityMonitor, None]:
    """A monitor on a fresh engine bound to the task's event loop."""
    from riskwatch.database import create_engine_from_settings
    from riskwatch.dependencies import build_security_monitor

    settings = get_settings()
    engine = create_engine_from_settings(settings)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield build_security_monitor(settings, session_factory)
    finally:
        await engine.dispose()


async def _scan_anomalous_behavior() -> dict:
    async with _task_monitor() as monitor:
        events = await monitor.scan_active_users()
    return {
        "events": len(events),
        "event_ids": [e.id for e in events],
    }


async def _snapshot_security_metrics(days: int) -> dict:
    async with _task_monitor() as monitor:
        metrics = await monitor.get_security_metrics(days)

    logger.info(
        f"Security metrics ({days}d): total={metrics.total_events} "
        f"open={metrics.open_alerts} investigating={metrics.investigating_alerts} "
        f"resolved={metrics.resolved_alerts} fallback={metrics.is_fallback}"
    )
    return {
        "total_events": metrics.total_events,
        "open_alerts": metrics.open_alerts,
        "is_fallback": metrics.is_fallback,
    }


@celery_app.task
def scan_anomalous_behavior():
    """Check every user active in the last day against their baseline."""
    result = _run_async(_scan_anomalous_behavior())
    logger.info(f"Anomalous behavior scan complete: {result['events']} events")
    return result


@celery_app.task
def snapshot_security_metrics(days: Optional[int] = None):
    """Log a metrics snapshot for the configured window."""
    return _run_async(_snapshot_security_metrics(days or get_settings().METRICS_SNAPSHOT_DAYS))
