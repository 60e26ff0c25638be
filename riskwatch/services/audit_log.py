"""Activity log and audit trail adapters.

Both concerns live in the ``audit_logs`` table: user activity (logins,
privileged actions) read by the detectors, and the engine's own security
alerts and status changes. ``SqlAuditLog`` serves both ports;
``InMemoryAuditLog`` mirrors it for tests and local runs.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import desc, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from riskwatch.database import session_scope
from riskwatch.exceptions import StoreUnavailableError
from riskwatch.models.audit_logs import ENGINE_ACTIONS, AuditAction, AuditLog, AuditSeverity
from riskwatch.schemas.security import ActivityFilter, ActivityRecord
from riskwatch.services.ports import AuditTrailPort
from riskwatch.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


def _to_record(row: AuditLog) -> ActivityRecord:
    record = ActivityRecord.model_validate(row)
    record.created_at = as_utc(record.created_at)
    return record


def _matches(record: ActivityRecord, query: ActivityFilter) -> bool:
    if query.user_id is not None and record.user_id != query.user_id:
        return False
    if query.ip_address is not None and record.ip_address != query.ip_address:
        return False
    if query.action is not None and record.action != query.action:
        return False
    if record.action in query.exclude_actions:
        return False
    if query.success is not None and record.success != query.success:
        return False
    if query.start_date is not None and record.created_at < query.start_date:
        return False
    if query.end_date is not None and record.created_at > query.end_date:
        return False
    return True


class SqlAuditLog:
    """Activity log and audit trail backed by the ``audit_logs`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    # -- activity log -------------------------------------------------------

    async def append(self, record: ActivityRecord) -> ActivityRecord:
        row = AuditLog(
            action=record.action,
            severity=record.severity.value,
            user_id=record.user_id,
            user_email=record.user_email,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            session_id=record.session_id,
            success=record.success,
            message=record.message,
            details=record.details,
            created_at=record.created_at,
        )
        if record.id:
            row.id = record.id
        try:
            async with session_scope(self._session_factory) as session:
                session.add(row)
                await session.flush()
                return _to_record(row)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Activity append failed: {e}") from e

    async def query_activity(self, query: ActivityFilter) -> List[ActivityRecord]:
        stmt = select(AuditLog).order_by(desc(AuditLog.created_at))
        if query.user_id is not None:
            stmt = stmt.where(AuditLog.user_id == query.user_id)
        if query.ip_address is not None:
            stmt = stmt.where(AuditLog.ip_address == query.ip_address)
        if query.action is not None:
            stmt = stmt.where(AuditLog.action == query.action)
        if query.exclude_actions:
            stmt = stmt.where(AuditLog.action.not_in(query.exclude_actions))
        if query.success is not None:
            stmt = stmt.where(AuditLog.success == query.success)
        if query.start_date is not None:
            stmt = stmt.where(AuditLog.created_at >= query.start_date)
        if query.end_date is not None:
            stmt = stmt.where(AuditLog.created_at <= query.end_date)
        if query.limit:
            stmt = stmt.limit(query.limit)

        try:
            async with session_scope(self._session_factory) as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [_to_record(r) for r in rows]
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Activity query failed: {e}") from e

    async def list_active_users(self, since: datetime) -> List[str]:
        stmt = select(distinct(AuditLog.user_id)).where(
            AuditLog.created_at >= since,
            AuditLog.user_id.is_not(None),
            AuditLog.action.not_in(sorted(ENGINE_ACTIONS)),
        )
        try:
            async with session_scope(self._session_factory) as session:
                return [uid for uid in (await session.execute(stmt)).scalars().all()]
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Active user query failed: {e}") from e

    # -- audit trail --------------------------------------------------------

    async def record(
        self,
        action: str,
        message: str,
        severity: AuditSeverity = AuditSeverity.INFO,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        await self.append(ActivityRecord(
            action=action,
            severity=severity,
            message=message,
            details=details or {},
            user_id=user_id,
            user_email=user_email,
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            created_at=self._clock(),
        ))

    async def query_security_alerts(
        self,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ActivityRecord], int]:
        stmt = select(AuditLog).where(AuditLog.action == AuditAction.SECURITY_ALERT.value)
        if user_id:
            stmt = stmt.where(AuditLog.user_id == user_id)
        if ip_address:
            stmt = stmt.where(AuditLog.ip_address == ip_address)
        if start_date:
            stmt = stmt.where(AuditLog.created_at >= start_date)
        if end_date:
            stmt = stmt.where(AuditLog.created_at <= end_date)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        page_stmt = stmt.order_by(desc(AuditLog.created_at)).offset(offset).limit(limit)

        try:
            async with session_scope(self._session_factory) as session:
                total = (await session.execute(count_stmt)).scalar() or 0
                rows = (await session.execute(page_stmt)).scalars().all()
                return [_to_record(r) for r in rows], total
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Security alert query failed: {e}") from e

    async def find_security_alert(self, event_id: str) -> Optional[ActivityRecord]:
        stmt = (
            select(AuditLog)
            .where(
                AuditLog.action == AuditAction.SECURITY_ALERT.value,
                AuditLog.details["security_event_id"].as_string() == event_id,
            )
            .order_by(AuditLog.created_at)
            .limit(1)
        )
        try:
            async with session_scope(self._session_factory) as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
                return _to_record(row) if row else None
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailableError(f"Security alert lookup failed: {e}") from e


class InMemoryAuditLog:
    """Process-local activity log and audit trail."""

    def __init__(
        self,
        records: Optional[List[ActivityRecord]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._clock = clock
        self.records: List[ActivityRecord] = []
        self._next_id = 1
        for record in records or []:
            self.add(record)

    def add(self, record: ActivityRecord) -> ActivityRecord:
        stored = record.model_copy(update={
            "id": record.id or f"audit-{self._next_id}",
            "created_at": as_utc(record.created_at),
        })
        self._next_id += 1
        self.records.append(stored)
        return stored

    async def append(self, record: ActivityRecord) -> ActivityRecord:
        return self.add(record)

    async def query_activity(self, query: ActivityFilter) -> List[ActivityRecord]:
        matched = sorted(
            (r for r in self.records if _matches(r, query)),
            key=lambda r: r.created_at,
            reverse=True,
        )
        if query.limit:
            matched = matched[: query.limit]
        return matched

    async def list_active_users(self, since: datetime) -> List[str]:
        seen: List[str] = []
        for r in self.records:
            if r.action in ENGINE_ACTIONS:
                continue
            if r.user_id and r.created_at >= since and r.user_id not in seen:
                seen.append(r.user_id)
        return seen

    async def record(
        self,
        action: str,
        message: str,
        severity: AuditSeverity = AuditSeverity.INFO,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.add(ActivityRecord(
            action=action,
            severity=severity,
            message=message,
            details=details or {},
            user_id=user_id,
            user_email=user_email,
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            created_at=self._clock(),
        ))

    async def query_security_alerts(
        self,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ActivityRecord], int]:
        matched = await self.query_activity(ActivityFilter(
            action=AuditAction.SECURITY_ALERT.value,
            user_id=user_id or None,
            ip_address=ip_address or None,
            start_date=start_date,
            end_date=end_date,
        ))
        return matched[offset:offset + limit], len(matched)

    async def find_security_alert(self, event_id: str) -> Optional[ActivityRecord]:
        for r in self.records:
            if (
                r.action == AuditAction.SECURITY_ALERT.value
                and r.details.get("security_event_id") == event_id
            ):
                return r
        return None


class SafeAuditTrail:
    """Audit trail wrapper whose writes never fail the caller.

    Reads pass through unchanged; the fallback layer decides what to do
    when they fail.
    """

    def __init__(self, inner: AuditTrailPort):
        self._inner = inner

    async def record(self, action: str, message: str, **kwargs: Any) -> None:
        try:
            await self._inner.record(action, message, **kwargs)
        except Exception as e:
            logger.warning(f"Audit trail write failed ({action}): {e}")

    async def query_security_alerts(self, **kwargs: Any) -> Tuple[List[ActivityRecord], int]:
        return await self._inner.query_security_alerts(**kwargs)

    async def find_security_alert(self, event_id: str) -> Optional[ActivityRecord]:
        return await self._inner.find_security_alert(event_id)
