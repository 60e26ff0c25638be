"""Tests for the SQL-backed adapters against in-memory SQLite."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from riskwatch.config import Settings
from riskwatch.exceptions import EventNotFoundError, StoreUnavailableError
from riskwatch.models.audit_logs import AuditAction, AuditSeverity
from riskwatch.models.security_events import AlertStatus, SecurityEventType, ThreatLevel
from riskwatch.schemas.security import ActivityFilter, SecurityEventCreate, SecurityEventFilter
from riskwatch.services.audit_log import SqlAuditLog
from riskwatch.services.event_store import (
    FallbackEventStore,
    ResilientEventStore,
    SqlEventStore,
    build_event_store,
)
from tests.conftest import make_activity


def _draft(**overrides) -> SecurityEventCreate:
    fields = dict(
        type=SecurityEventType.BRUTE_FORCE_ATTACK,
        title="Brute Force Attack Detected",
        description="6 failed login attempts",
        ip_address="10.0.0.5",
        risk_score=60,
        indicators=["Multiple failed login attempts", "Short time window", "Same IP address"],
        affected_resources=["authentication_system"],
        details={"attempt_count": 6},
    )
    fields.update(overrides)
    return SecurityEventCreate(**fields)


class TestSqlEventStore:
    """Tests for SqlEventStore."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, session_factory, clock):
        store = SqlEventStore(session_factory, clock)
        created = await store.create_event(_draft(), ThreatLevel.MEDIUM)

        fetched = await store.get_event(created.id)
        assert fetched.id == created.id
        assert fetched.type == SecurityEventType.BRUTE_FORCE_ATTACK
        assert fetched.threat_level == ThreatLevel.MEDIUM
        assert fetched.indicators == _draft().indicators
        assert fetched.details == {"attempt_count": 6}
        assert fetched.status == AlertStatus.OPEN
        assert fetched.timestamp == clock.now
        assert fetched.resolved_at is None

    @pytest.mark.asyncio
    async def test_get_unknown(self, session_factory):
        with pytest.raises(EventNotFoundError):
            await SqlEventStore(session_factory).get_event("missing")

    @pytest.mark.asyncio
    async def test_query_filters_and_paging(self, session_factory, clock):
        store = SqlEventStore(session_factory, clock)
        for i in range(3):
            clock.advance(minutes=1)
            await store.create_event(_draft(risk_score=50 + i), ThreatLevel.MEDIUM)
        await store.create_event(
            _draft(type=SecurityEventType.SUSPICIOUS_LOGIN, user_id="u-1", ip_address="1.2.3.4"),
            ThreatLevel.MEDIUM,
        )

        result = await store.query_events(
            SecurityEventFilter(type=SecurityEventType.BRUTE_FORCE_ATTACK), limit=2,
        )
        assert result.total == 3
        assert [e.risk_score for e in result.events] == [52, 51]
        assert result.degraded is False

        by_user = await store.query_events(SecurityEventFilter(user_id="u-1"))
        assert by_user.total == 1
        assert by_user.events[0].ip_address == "1.2.3.4"

    @pytest.mark.asyncio
    async def test_query_time_range(self, session_factory, clock):
        store = SqlEventStore(session_factory, clock)
        await store.create_event(_draft(), ThreatLevel.MEDIUM)
        start = clock.advance(days=2)
        await store.create_event(_draft(), ThreatLevel.MEDIUM)

        result = await store.query_events(SecurityEventFilter(start_date=start))
        assert result.total == 1

    @pytest.mark.asyncio
    async def test_update_status(self, session_factory, clock):
        store = SqlEventStore(session_factory, clock)
        created = await store.create_event(_draft(), ThreatLevel.MEDIUM)

        resolved_at = clock.advance(hours=2)
        updated = await store.update_status(
            created.id, AlertStatus.RESOLVED,
            assigned_to="analyst-1", resolved_at=resolved_at, resolution_notes="Blocked IP",
        )
        assert updated.status == AlertStatus.RESOLVED
        assert updated.resolved_at == resolved_at
        assert updated.risk_score == 60

        fetched = await store.get_event(created.id)
        assert fetched.assigned_to == "analyst-1"
        assert fetched.resolution_notes == "Blocked IP"

    @pytest.mark.asyncio
    async def test_update_unknown(self, session_factory):
        with pytest.raises(EventNotFoundError):
            await SqlEventStore(session_factory).update_status("missing", AlertStatus.RESOLVED)

    @pytest.mark.asyncio
    async def test_database_errors_wrapped(self):
        class ExplodingSession:
            async def __aenter__(self):
                raise OperationalError("SELECT 1", {}, Exception("connection refused"))

            async def __aexit__(self, *exc):
                return False

        store = SqlEventStore(lambda: ExplodingSession())
        with pytest.raises(StoreUnavailableError):
            await store.query_events(SecurityEventFilter())


class TestSqlAuditLog:
    """Tests for SqlAuditLog as activity log and audit trail."""

    @pytest.mark.asyncio
    async def test_append_and_query(self, session_factory, clock):
        log = SqlAuditLog(session_factory, clock)
        for i in range(3):
            await log.append(make_activity(
                AuditAction.LOGIN_FAILED.value, clock.now - timedelta(minutes=i),
                ip_address="10.0.0.5", success=False,
            ))
        await log.append(make_activity(
            AuditAction.LOGIN_SUCCESS.value, clock.now, ip_address="10.0.0.5", success=True,
        ))

        failures = await log.query_activity(ActivityFilter(
            action=AuditAction.LOGIN_FAILED.value,
            ip_address="10.0.0.5",
            success=False,
            start_date=clock.now - timedelta(minutes=15),
            end_date=clock.now,
        ))
        assert len(failures) == 3
        assert failures[0].created_at == clock.now
        assert failures[0].created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_query_limit_newest_first(self, session_factory, clock):
        log = SqlAuditLog(session_factory, clock)
        for i in range(5):
            await log.append(make_activity("view_report", clock.now - timedelta(hours=i), user_id="u-1"))
        records = await log.query_activity(ActivityFilter(user_id="u-1", limit=2))
        assert [r.created_at for r in records] == [clock.now, clock.now - timedelta(hours=1)]

    @pytest.mark.asyncio
    async def test_list_active_users(self, session_factory, clock):
        log = SqlAuditLog(session_factory, clock)
        await log.append(make_activity("view_report", clock.now, user_id="u-1"))
        await log.append(make_activity("view_report", clock.now, user_id="u-1"))
        await log.append(make_activity("view_report", clock.now - timedelta(days=3), user_id="u-2"))
        await log.append(make_activity("view_report", clock.now))

        users = await log.list_active_users(clock.now - timedelta(days=1))
        assert users == ["u-1"]

    @pytest.mark.asyncio
    async def test_engine_records_excluded(self, session_factory, clock):
        log = SqlAuditLog(session_factory, clock)
        await log.append(make_activity("view_report", clock.now, user_id="u-1"))
        await log.record(
            AuditAction.SECURITY_ALERT.value, "Security event created",
            details={"security_event_id": "evt-1"}, user_id="u-1",
        )
        await log.record(AuditAction.SECURITY_ALERT_ESCALATED.value, "Security alert triggered", user_id="u-2")

        records = await log.query_activity(ActivityFilter(
            user_id="u-1", exclude_actions=[AuditAction.SECURITY_ALERT.value],
        ))
        assert [r.action for r in records] == ["view_report"]
        assert await log.list_active_users(clock.now - timedelta(days=1)) == ["u-1"]

    @pytest.mark.asyncio
    async def test_security_alert_trail(self, session_factory, clock):
        log = SqlAuditLog(session_factory, clock)
        await log.record(
            AuditAction.SECURITY_ALERT.value,
            "Security event created: Brute Force Attack Detected",
            severity=AuditSeverity.MEDIUM,
            details={"security_event_id": "evt-42"},
            user_id="u-1",
        )
        await log.record(AuditAction.CONFIG_CHANGED.value, "Threshold changed", user_id="u-1")

        entries, total = await log.query_security_alerts(user_id="u-1")
        assert total == 1
        assert entries[0].severity == AuditSeverity.MEDIUM

        found = await log.find_security_alert("evt-42")
        assert found is not None
        assert found.details["security_event_id"] == "evt-42"
        assert await log.find_security_alert("evt-0") is None


class TestBuildEventStore:
    """Tests for startup adapter selection."""

    def test_enabled_uses_resilient_sql(self, session_factory, activity_log):
        settings = Settings(SECURITY_EVENT_STORE_ENABLED=True)
        assert isinstance(build_event_store(settings, session_factory, activity_log), ResilientEventStore)

    def test_disabled_uses_fallback(self, session_factory, activity_log):
        settings = Settings(SECURITY_EVENT_STORE_ENABLED=False)
        assert isinstance(build_event_store(settings, session_factory, activity_log), FallbackEventStore)

    @pytest.mark.asyncio
    async def test_missing_table_falls_back(self, session_factory, activity_log, clock):
        """A database without the security_events table still serves creates."""
        from riskwatch.models.security_events import SecurityEventRecord

        async with session_factory() as session:
            conn = await session.connection()
            await conn.run_sync(lambda c: SecurityEventRecord.__table__.drop(c))
            await session.commit()

        store = ResilientEventStore(
            SqlEventStore(session_factory, clock),
            FallbackEventStore(activity_log, clock=clock),
        )
        event = await store.create_event(_draft(), ThreatLevel.MEDIUM)
        assert event.id.startswith("security_")

        result = await store.query_events(SecurityEventFilter())
        assert result.degraded is True
