"""Collaborator interfaces consumed by the detection engine.

The engine only talks to storage, the audit trail and alert delivery
through these protocols, so real adapters, in-memory adapters and the
fallback adapter are interchangeable at construction time.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from riskwatch.models.audit_logs import AuditSeverity
from riskwatch.models.security_events import AlertStatus, ThreatLevel
from riskwatch.schemas.security import (
    ActivityFilter,
    ActivityRecord,
    SecurityEvent,
    SecurityEventCreate,
    SecurityEventFilter,
)


@dataclass
class EventQueryResult:
    """Events matching a query, the unpaged total, and whether the data is degraded."""

    events: List[SecurityEvent] = field(default_factory=list)
    total: int = 0
    degraded: bool = False


@runtime_checkable
class ActivityLogPort(Protocol):
    """Append-only record of user actions."""

    async def append(self, record: ActivityRecord) -> ActivityRecord:
        ...

    async def query_activity(self, query: ActivityFilter) -> List[ActivityRecord]:
        """Return matching records, newest first."""
        ...

    async def list_active_users(self, since: datetime) -> List[str]:
        """Distinct user ids with activity at or after ``since``."""
        ...


@runtime_checkable
class EventStorePort(Protocol):
    """Persistence for security events."""

    async def create_event(
        self,
        draft: SecurityEventCreate,
        threat_level: ThreatLevel,
    ) -> SecurityEvent:
        ...

    async def get_event(self, event_id: str) -> SecurityEvent:
        """Raises ``EventNotFoundError`` for unknown ids."""
        ...

    async def query_events(
        self,
        query: SecurityEventFilter,
        limit: int = 50,
        offset: int = 0,
    ) -> EventQueryResult:
        """Return matching events, newest first."""
        ...

    async def update_status(
        self,
        event_id: str,
        status: AlertStatus,
        assigned_to: Optional[str] = None,
        resolved_at: Optional[datetime] = None,
        resolution_notes: Optional[str] = None,
    ) -> SecurityEvent:
        ...


@runtime_checkable
class AuditTrailPort(Protocol):
    """Where the engine records its own decisions."""

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
        ...

    async def query_security_alerts(
        self,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[ActivityRecord], int]:
        ...

    async def find_security_alert(self, event_id: str) -> Optional[ActivityRecord]:
        """The creation entry recorded for ``event_id``, if any."""
        ...


@runtime_checkable
class AlertNotifier(Protocol):
    """Delivers High/Critical alerts. Callers treat delivery as fire-and-forget."""

    async def notify(self, event: SecurityEvent) -> None:
        ...
