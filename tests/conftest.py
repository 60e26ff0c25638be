"""
@module conftest
@description Pytest fixtures for Riskwatch tests.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["ALERTS_ENABLED"] = "false"
os.environ["SECURITY_EVENT_STORE_ENABLED"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"

from riskwatch.config import get_settings

# Clear settings cache to ensure test environment variables take effect
get_settings.cache_clear()

from riskwatch.database import Base
from riskwatch.exceptions import StoreUnavailableError
from riskwatch.models.audit_logs import AuditAction
from riskwatch.schemas.security import ActivityRecord, SecurityEvent
from riskwatch.services.audit_log import InMemoryAuditLog
from riskwatch.services.event_store import InMemoryEventStore
from riskwatch.services.security_monitor import SecurityMonitor

# Monday, mid-afternoon UTC
FIXED_NOW = datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)


class FixedClock:
    """Controllable clock for engine components."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Collects notified events."""

    def __init__(self):
        self.events: List[SecurityEvent] = []

    async def notify(self, event: SecurityEvent) -> None:
        self.events.append(event)


class FailingNotifier:
    async def notify(self, event: SecurityEvent) -> None:
        raise ConnectionError("broker unreachable")


class BrokenEventStore:
    """Event store whose every call fails."""

    def __init__(self):
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise StoreUnavailableError("security_events table missing")

    create_event = _fail
    get_event = _fail
    query_events = _fail
    update_status = _fail


class BrokenAuditTrail:
    """Audit trail whose every call fails."""

    async def _fail(self, *args, **kwargs):
        raise StoreUnavailableError("audit_logs unreachable")

    record = _fail
    query_security_alerts = _fail
    find_security_alert = _fail


def make_activity(
    action: str,
    at: datetime,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    success: Optional[bool] = None,
    **details,
) -> ActivityRecord:
    return ActivityRecord(
        action=action,
        created_at=at,
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent,
        success=success,
        details=details,
    )


@pytest.fixture(scope="function", autouse=True)
def clear_settings_cache():
    """Clear settings cache before each test to ensure env vars take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def activity_log(clock: FixedClock) -> InMemoryAuditLog:
    return InMemoryAuditLog(clock=clock)


@pytest.fixture
def event_store(clock: FixedClock) -> InMemoryEventStore:
    return InMemoryEventStore(clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def monitor(activity_log, event_store, notifier, clock) -> SecurityMonitor:
    """Engine over in-memory ports; the activity log doubles as audit trail."""
    return SecurityMonitor(
        activity_log=activity_log,
        event_store=event_store,
        audit_trail=activity_log,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def failed_logins(activity_log: InMemoryAuditLog, clock: FixedClock):
    """Seed ``count`` failed logins from ``ip`` spread over the last minutes."""

    def _seed(ip: str, count: int, user_agent: str = "curl/8.0") -> None:
        for i in range(count):
            activity_log.add(make_activity(
                AuditAction.LOGIN_FAILED.value,
                clock.now - timedelta(minutes=i + 1),
                ip_address=ip,
                user_agent=user_agent,
                success=False,
            ))

    return _seed


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """In-memory SQLite database with all tables created."""
    from riskwatch import models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
