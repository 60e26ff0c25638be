"""Security event storage adapters.

``SqlEventStore`` persists to the ``security_events`` table. When the
table is not provisioned (``SECURITY_EVENT_STORE_ENABLED=false``) the
``FallbackEventStore`` serves approximations from the audit trail, and
``ResilientEventStore`` switches to it per call whenever the primary store
fails.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from riskwatch.config import Settings
from riskwatch.database import session_scope
from riskwatch.exceptions import EventNotFoundError, StoreUnavailableError
from riskwatch.models.security_events import AlertStatus, SecurityEventRecord, ThreatLevel
from riskwatch.schemas.security import SecurityEvent, SecurityEventCreate, SecurityEventFilter
from riskwatch.services.fallback import FallbackProvider
from riskwatch.services.ports import AuditTrailPort, EventQueryResult, EventStorePort
from riskwatch.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


def _to_event(row: SecurityEventRecord) -> SecurityEvent:
    return SecurityEvent(
        id=row.id,
        type=row.event_type,
        threat_level=row.threat_level,
        title=row.title,
        description=row.description,
        user_id=row.user_id,
        user_email=row.user_email,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        session_id=row.session_id,
        timestamp=as_utc(row.timestamp),
        risk_score=row.risk_score,
        indicators=list(row.indicators or []),
        affected_resources=list(row.affected_resources or []),
        mitigation_actions=list(row.mitigation_actions or []),
        details=dict(row.details or {}),
        status=row.status,
        assigned_to=row.assigned_to,
        resolved_at=as_utc(row.resolved_at),
        resolution_notes=row.resolution_notes,
    )


def _matches(event: SecurityEvent, query: SecurityEventFilter) -> bool:
    if query.type is not None and event.type != query.type:
        return False
    if query.threat_level is not None and event.threat_level != query.threat_level:
        return False
    if query.status is not None and event.status != query.status:
        return False
    if query.user_id is not None and event.user_id != query.user_id:
        return False
    if query.ip_address is not None and event.ip_address != query.ip_address:
        return False
    if query.start_date is not None and event.timestamp < query.start_date:
        return False
    if query.end_date is not None and event.timestamp > query.end_date:
        return False
    return True


class SqlEventStore:
    """Event store backed by the ``security_events`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def create_event(
        self,
        draft: SecurityEventCreate,
        threat_level: ThreatLevel,
    ) -> SecurityEvent:
        row = SecurityEventRecord(
            id=str(uuid.uuid4()),
            event_type=draft.type.value,
            threat_level=threat_level.value,
            title=draft.title,
            description=draft.description,
            user_id=draft.user_id,
            user_email=draft.user_email,
            ip_address=draft.ip_address,
            user_agent=draft.user_agent,
            session_id=draft.session_id,
            risk_score=draft.risk_score,
            indicators=list(draft.indicators),
            affected_resources=list(draft.affected_resources),
            mitigation_actions=list(draft.mitigation_actions),
            details=dict(draft.details),
            status=AlertStatus.OPEN.value,
            timestamp=self._clock(),
        )
        try:
            async with session_scope(self._session_factory) as session:
                session.add(row)
                await session.flush()
                return _to_event(row)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Security event insert failed: {e}") from e

    async def get_event(self, event_id: str) -> SecurityEvent:
        try:
            async with session_scope(self._session_factory) as session:
                row = await session.get(SecurityEventRecord, event_id)
                if row is None:
                    raise EventNotFoundError(event_id)
                return _to_event(row)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Security event lookup failed: {e}") from e

    async def query_events(
        self,
        query: SecurityEventFilter,
        limit: int = 50,
        offset: int = 0,
    ) -> EventQueryResult:
        stmt = select(SecurityEventRecord)
        if query.type is not None:
            stmt = stmt.where(SecurityEventRecord.event_type == query.type.value)
        if query.threat_level is not None:
            stmt = stmt.where(SecurityEventRecord.threat_level == query.threat_level.value)
        if query.status is not None:
            stmt = stmt.where(SecurityEventRecord.status == query.status.value)
        if query.user_id is not None:
            stmt = stmt.where(SecurityEventRecord.user_id == query.user_id)
        if query.ip_address is not None:
            stmt = stmt.where(SecurityEventRecord.ip_address == query.ip_address)
        if query.start_date is not None:
            stmt = stmt.where(SecurityEventRecord.timestamp >= query.start_date)
        if query.end_date is not None:
            stmt = stmt.where(SecurityEventRecord.timestamp <= query.end_date)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        page_stmt = (
            stmt.order_by(desc(SecurityEventRecord.timestamp))
            .offset(offset)
            .limit(limit)
        )

        try:
            async with session_scope(self._session_factory) as session:
                total = (await session.execute(count_stmt)).scalar() or 0
                rows = (await session.execute(page_stmt)).scalars().all()
                return EventQueryResult(events=[_to_event(r) for r in rows], total=total)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Security event query failed: {e}") from e

    async def update_status(
        self,
        event_id: str,
        status: AlertStatus,
        assigned_to: Optional[str] = None,
        resolved_at: Optional[datetime] = None,
        resolution_notes: Optional[str] = None,
    ) -> SecurityEvent:
        try:
            async with session_scope(self._session_factory) as session:
                row = await session.get(SecurityEventRecord, event_id)
                if row is None:
                    raise EventNotFoundError(event_id)
                row.status = status.value
                row.assigned_to = assigned_to
                row.resolved_at = resolved_at
                row.resolution_notes = resolution_notes
                await session.flush()
                return _to_event(row)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Security event update failed: {e}") from e


class InMemoryEventStore:
    """Process-local event store."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self.events: Dict[str, SecurityEvent] = {}
        self.writes = 0

    async def create_event(
        self,
        draft: SecurityEventCreate,
        threat_level: ThreatLevel,
    ) -> SecurityEvent:
        event = SecurityEvent(
            id=str(uuid.uuid4()),
            threat_level=threat_level,
            timestamp=self._clock(),
            status=AlertStatus.OPEN,
            **draft.model_dump(),
        )
        self.events[event.id] = event
        self.writes += 1
        return event

    async def get_event(self, event_id: str) -> SecurityEvent:
        try:
            return self.events[event_id]
        except KeyError:
            raise EventNotFoundError(event_id) from None

    async def query_events(
        self,
        query: SecurityEventFilter,
        limit: int = 50,
        offset: int = 0,
    ) -> EventQueryResult:
        matched: List[SecurityEvent] = sorted(
            (e for e in self.events.values() if _matches(e, query)),
            key=lambda e: e.timestamp,
            reverse=True,
        )
        return EventQueryResult(events=matched[offset:offset + limit], total=len(matched))

    async def update_status(
        self,
        event_id: str,
        status: AlertStatus,
        assigned_to: Optional[str] = None,
        resolved_at: Optional[datetime] = None,
        resolution_notes: Optional[str] = None,
    ) -> SecurityEvent:
        current = await self.get_event(event_id)
        updated = current.model_copy(update={
            "status": status,
            "assigned_to": assigned_to,
            "resolved_at": resolved_at,
            "resolution_notes": resolution_notes,
        })
        self.events[event_id] = updated
        self.writes += 1
        return updated


class FallbackEventStore:
    """Event store used when no persistent store is available.

    Nothing is persisted: creates return local events, reads are
    approximated from the audit trail.
    """

    def __init__(
        self,
        audit_trail: AuditTrailPort,
        provider: Optional[FallbackProvider] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._audit_trail = audit_trail
        self._provider = provider or FallbackProvider()
        self._clock = clock

    async def create_event(
        self,
        draft: SecurityEventCreate,
        threat_level: ThreatLevel,
    ) -> SecurityEvent:
        return self._provider.build_event(draft, threat_level, self._clock())

    async def get_event(self, event_id: str) -> SecurityEvent:
        return await self._provider.recover_event(self._audit_trail, event_id, self._clock())

    async def query_events(
        self,
        query: SecurityEventFilter,
        limit: int = 50,
        offset: int = 0,
    ) -> EventQueryResult:
        return await self._provider.query_from_audit(self._audit_trail, query, limit, offset)

    async def update_status(
        self,
        event_id: str,
        status: AlertStatus,
        assigned_to: Optional[str] = None,
        resolved_at: Optional[datetime] = None,
        resolution_notes: Optional[str] = None,
    ) -> SecurityEvent:
        event = await self.get_event(event_id)
        return event.model_copy(update={
            "status": status,
            "assigned_to": assigned_to,
            "resolved_at": resolved_at,
            "resolution_notes": resolution_notes,
        })


class ResilientEventStore:
    """Primary store with per-call fallback.

    Unknown ids still raise ``EventNotFoundError``; any other failure of the
    primary is logged and answered by the fallback store.
    """

    def __init__(self, primary: EventStorePort, fallback: EventStorePort):
        self._primary = primary
        self._fallback = fallback

    async def create_event(
        self,
        draft: SecurityEventCreate,
        threat_level: ThreatLevel,
    ) -> SecurityEvent:
        try:
            return await self._primary.create_event(draft, threat_level)
        except Exception as e:
            logger.warning(f"Event store unavailable, creating local event: {e}")
            return await self._fallback.create_event(draft, threat_level)

    async def get_event(self, event_id: str) -> SecurityEvent:
        try:
            return await self._primary.get_event(event_id)
        except EventNotFoundError:
            raise
        except Exception as e:
            logger.warning(f"Event store unavailable, approximating {event_id}: {e}")
            return await self._fallback.get_event(event_id)

    async def query_events(
        self,
        query: SecurityEventFilter,
        limit: int = 50,
        offset: int = 0,
    ) -> EventQueryResult:
        try:
            return await self._primary.query_events(query, limit, offset)
        except Exception as e:
            logger.warning(f"Event store unavailable, using audit log fallback: {e}")
            return await self._fallback.query_events(query, limit, offset)

    async def update_status(
        self,
        event_id: str,
        status: AlertStatus,
        assigned_to: Optional[str] = None,
        resolved_at: Optional[datetime] = None,
        resolution_notes: Optional[str] = None,
    ) -> SecurityEvent:
        try:
            return await self._primary.update_status(
                event_id, status, assigned_to, resolved_at, resolution_notes
            )
        except EventNotFoundError:
            raise
        except Exception as e:
            logger.warning(f"Event store unavailable, status change for {event_id} not persisted: {e}")
            return await self._fallback.update_status(
                event_id, status, assigned_to, resolved_at, resolution_notes
            )


def build_event_store(
    settings: Settings,
    session_factory: async_sessionmaker,
    audit_trail: AuditTrailPort,
    provider: Optional[FallbackProvider] = None,
    clock: Callable[[], datetime] = utcnow,
) -> EventStorePort:
    """Select the event store once at startup."""
    fallback = FallbackEventStore(audit_trail, provider, clock)
    if not settings.SECURITY_EVENT_STORE_ENABLED:
        logger.warning("Security event store disabled, using audit log fallback")
        return fallback
    return ResilientEventStore(SqlEventStore(session_factory, clock), fallback)
