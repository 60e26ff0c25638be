"""Alert lifecycle: Open -> Investigating -> Resolved | FalsePositive.

Any status may be entered from any other, so resolved or dismissed alerts
can be reopened. Only the lifecycle fields change.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from riskwatch.models.audit_logs import AuditAction, AuditSeverity
from riskwatch.models.security_events import TERMINAL_STATUSES, AlertStatus
from riskwatch.schemas.security import SecurityEvent
from riskwatch.services.ports import AuditTrailPort, EventStorePort
from riskwatch.utils.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


class AlertLifecycleManager:
    """Applies status transitions and records them on the audit trail."""

    def __init__(
        self,
        event_store: EventStorePort,
        audit_trail: AuditTrailPort,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.event_store = event_store
        self.audit_trail = audit_trail
        self._clock = clock

    async def transition(
        self,
        event_id: str,
        status: AlertStatus,
        *,
        actor: str = "system",
        assigned_to: Optional[str] = None,
        notes: Optional[str] = None,
        justification: Optional[str] = None,
    ) -> SecurityEvent:
        """Move an event to ``status``.

        Re-applying the current status with no new assignee or notes
        returns the event untouched. Raises ``EventNotFoundError`` for
        unknown ids.
        """
        current = await self.event_store.get_event(event_id)

        new_assignee = assigned_to if assigned_to is not None else current.assigned_to
        if status in TERMINAL_STATUSES:
            new_notes = notes if notes is not None else current.resolution_notes
        else:
            new_notes = None

        if (
            status == current.status
            and new_assignee == current.assigned_to
            and new_notes == current.resolution_notes
        ):
            return current

        if status == AlertStatus.RESOLVED:
            if current.status == AlertStatus.RESOLVED and current.resolved_at is not None:
                resolved_at = current.resolved_at
            else:
                resolved_at = max(self._clock(), as_utc(current.timestamp))
        else:
            resolved_at = None

        updated = await self.event_store.update_status(
            event_id,
            status,
            assigned_to=new_assignee,
            resolved_at=resolved_at,
            resolution_notes=new_notes,
        )

        logger.info(f"Security event {event_id}: {current.status.value} -> {status.value} by {actor}")

        await self.audit_trail.record(
            AuditAction.SECURITY_EVENT_UPDATED.value,
            f"Security event status updated to {status.value}",
            severity=AuditSeverity.MEDIUM,
            details={
                "security_event_id": event_id,
                "previous_status": current.status.value,
                "new_status": status.value,
                "actor": actor,
                "justification": justification,
                "assigned_to": new_assignee,
                "resolution_notes": new_notes,
            },
        )
        return updated
