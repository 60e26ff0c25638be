"""Security monitoring engine.

``SecurityMonitor`` wires the detectors, risk scorer, alert lifecycle and
metrics aggregation to injected storage, audit and alerting ports. It is
constructed explicitly (see ``riskwatch.main``) rather than held as a
module-level singleton.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from riskwatch.config import DetectionConfig
from riskwatch.exceptions import StoreUnavailableError, ValidationError
from riskwatch.models.audit_logs import AuditAction, AuditSeverity
from riskwatch.models.security_events import AlertStatus, ThreatLevel
from riskwatch.schemas.security import (
    ActivityRecord,
    SecurityEvent,
    SecurityEventCreate,
    SecurityEventFilter,
    SecurityEventPage,
    SecurityMetrics,
    SuspiciousActivity,
)
from riskwatch.services import detectors
from riskwatch.services.audit_log import SafeAuditTrail
from riskwatch.services.event_store import FallbackEventStore, ResilientEventStore
from riskwatch.services.fallback import FallbackProvider
from riskwatch.services.lifecycle import AlertLifecycleManager
from riskwatch.services.metrics import aggregate_metrics, build_suspicious_activity, window_start
from riskwatch.services.notifications import NullAlertNotifier
from riskwatch.services.ports import (
    ActivityLogPort,
    AlertNotifier,
    AuditTrailPort,
    EventStorePort,
)
from riskwatch.services.risk_scoring import classify_threat_level
from riskwatch.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

AUDIT_SEVERITY_BY_LEVEL: Dict[ThreatLevel, AuditSeverity] = {
    ThreatLevel.LOW: AuditSeverity.LOW,
    ThreatLevel.MEDIUM: AuditSeverity.MEDIUM,
    ThreatLevel.HIGH: AuditSeverity.HIGH,
    ThreatLevel.CRITICAL: AuditSeverity.CRITICAL,
}


class SecurityMonitor:
    """
    Threat detection and risk scoring engine.

    Provides:
    - Brute force, suspicious login, privilege escalation and anomalous
      behavior detection
    - Security event creation with derived threat levels
    - Alert lifecycle transitions
    - Security metrics and per-user suspicious activity rollups

    Storage failures never reach callers: the event store is always used
    through ``ResilientEventStore`` and audit writes through
    ``SafeAuditTrail``.
    """

    def __init__(
        self,
        activity_log: ActivityLogPort,
        event_store: EventStorePort,
        audit_trail: AuditTrailPort,
        notifier: Optional[AlertNotifier] = None,
        config: Optional[DetectionConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        provider: Optional[FallbackProvider] = None,
    ):
        self.activity_log = activity_log
        self.audit_trail = (
            audit_trail if isinstance(audit_trail, SafeAuditTrail) else SafeAuditTrail(audit_trail)
        )
        self.provider = provider or FallbackProvider()
        if isinstance(event_store, (ResilientEventStore, FallbackEventStore)):
            self.event_store = event_store
        else:
            self.event_store = ResilientEventStore(
                event_store,
                FallbackEventStore(self.audit_trail, self.provider, clock),
            )
        self.notifier = notifier or NullAlertNotifier()
        self.config = config or DetectionConfig()
        self.clock = clock
        self.lifecycle = AlertLifecycleManager(self.event_store, self.audit_trail, clock)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def create_security_event(self, draft: SecurityEventCreate) -> SecurityEvent:
        """Classify, store and audit a new event; alert on High or Critical."""
        threat_level = classify_threat_level(draft.risk_score, self.config.thresholds)
        event = await self.event_store.create_event(draft, threat_level)

        logger.info(
            f"Security event {event.id}: {event.type.value} "
            f"({threat_level.value}, score {event.risk_score})"
        )

        await self.audit_trail.record(
            AuditAction.SECURITY_ALERT.value,
            f"Security event created: {event.title}",
            severity=AUDIT_SEVERITY_BY_LEVEL[threat_level],
            details={
                "security_event_id": event.id,
                "event_type": event.type.value,
                "threat_level": threat_level.value,
                "risk_score": event.risk_score,
                "indicators": event.indicators,
            },
            user_id=event.user_id,
            user_email=event.user_email,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            session_id=event.session_id,
        )

        if threat_level.rank >= ThreatLevel.HIGH.rank:
            await self._trigger_alert(event)

        return event

    async def _trigger_alert(self, event: SecurityEvent) -> None:
        try:
            await self.notifier.notify(event)
        except Exception as e:
            logger.warning(f"Alert notification failed for {event.id}: {e}")

        await self.audit_trail.record(
            AuditAction.SECURITY_ALERT_ESCALATED.value,
            f"Security alert triggered: {event.title}",
            severity=AuditSeverity.CRITICAL,
            details={
                "security_event_id": event.id,
                "threat_level": event.threat_level.value,
                "risk_score": event.risk_score,
            },
            user_id=event.user_id,
            ip_address=event.ip_address,
        )

    async def get_security_events(
        self,
        query: Optional[SecurityEventFilter] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SecurityEventPage:
        """Events matching ``query``, newest first."""
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        result = await self.event_store.query_events(query or SecurityEventFilter(), limit, offset)
        return SecurityEventPage(
            events=result.events,
            total=result.total,
            has_more=offset + len(result.events) < result.total,
            is_fallback=result.degraded,
        )

    async def get_security_event(self, event_id: str) -> SecurityEvent:
        return await self.event_store.get_event(event_id)

    async def update_security_event_status(
        self,
        event_id: str,
        status: AlertStatus,
        *,
        actor: str = "system",
        assigned_to: Optional[str] = None,
        resolution_notes: Optional[str] = None,
        justification: Optional[str] = None,
    ) -> SecurityEvent:
        return await self.lifecycle.transition(
            event_id,
            status,
            actor=actor,
            assigned_to=assigned_to,
            notes=resolution_notes,
            justification=justification,
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def _window_events(
        self,
        start: datetime,
        user_id: Optional[str] = None,
    ) -> Optional[List[SecurityEvent]]:
        """Every event since ``start``, or ``None`` if only degraded data is available."""
        page_size = self.config.metrics.page_size
        query = SecurityEventFilter(start_date=start, user_id=user_id)
        events: List[SecurityEvent] = []
        offset = 0
        while True:
            result = await self.event_store.query_events(query, page_size, offset)
            if result.degraded:
                return None
            events.extend(result.events)
            offset += len(result.events)
            if not result.events or offset >= result.total:
                return events

    async def get_security_metrics(self, days: int = 30) -> SecurityMetrics:
        """Metrics for the last ``days`` days.

        Estimated from the audit trail when the event store is degraded.
        """
        if days < 1:
            raise ValidationError("days must be at least 1")
        now = self.clock()
        try:
            events = await self._window_events(window_start(days, now))
            if events is not None:
                return aggregate_metrics(events, days, now, self.config.metrics)
        except Exception as e:
            logger.warning(f"Security metrics unavailable: {e}")

        logger.warning("Security event store degraded, estimating metrics from the audit trail")
        return await self.provider.metrics_from_audit(
            self.audit_trail, days, now, self.config.metrics,
        )

    async def get_suspicious_activity(
        self,
        user_id: str,
        days: int = 30,
    ) -> Optional[SuspiciousActivity]:
        """Rollup of one user's events in the window, or ``None``."""
        if not user_id:
            raise ValidationError("user_id is required")
        start = self.clock() - timedelta(days=days)
        try:
            events = await self._window_events(start, user_id=user_id)
        except Exception as e:
            logger.warning(f"Suspicious activity for {user_id} unavailable: {e}")
            return None
        if not events:
            return None
        return build_suspicious_activity(user_id, events)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def _emit(self, draft: Optional[SecurityEventCreate]) -> Optional[SecurityEvent]:
        if draft is None:
            return None
        return await self.create_security_event(draft)

    async def analyze_brute_force_attempts(
        self,
        ip_address: str,
        user_id: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        try:
            draft = await detectors.detect_brute_force(
                self.activity_log,
                ip_address,
                now=self.clock(),
                user_id=user_id,
                config=self.config,
            )
        except StoreUnavailableError as e:
            logger.warning(f"Brute force analysis skipped for {ip_address}: {e}")
            return None
        return await self._emit(draft)

    async def detect_suspicious_login(
        self,
        user_id: str,
        user_email: Optional[str],
        ip_address: str,
        user_agent: str,
        location: Optional[Dict[str, str]] = None,
    ) -> Optional[SecurityEvent]:
        try:
            draft = await detectors.detect_suspicious_login(
                self.activity_log,
                user_id,
                ip_address,
                user_agent,
                now=self.clock(),
                user_email=user_email,
                location=location,
                config=self.config,
            )
        except StoreUnavailableError as e:
            logger.warning(f"Suspicious login check skipped for {user_id}: {e}")
            return None
        return await self._emit(draft)

    async def monitor_privilege_escalation(
        self,
        user_id: str,
        user_email: Optional[str],
        attempted_action: str,
        required_role: str,
        user_role: str,
    ) -> Optional[SecurityEvent]:
        draft = detectors.detect_privilege_escalation(
            user_id,
            attempted_action,
            required_role,
            user_role,
            now=self.clock(),
            user_email=user_email,
            config=self.config,
        )
        return await self._emit(draft)

    async def detect_anomalous_behavior(
        self,
        user_id: str,
        user_email: Optional[str] = None,
    ) -> Optional[SecurityEvent]:
        try:
            draft = await detectors.detect_anomalous_behavior(
                self.activity_log,
                user_id,
                now=self.clock(),
                user_email=user_email,
                config=self.config,
            )
        except StoreUnavailableError as e:
            logger.warning(f"Anomaly check skipped for {user_id}: {e}")
            return None
        return await self._emit(draft)

    async def scan_active_users(self) -> List[SecurityEvent]:
        """Run anomaly detection for every user active in the recent window."""
        since = self.clock() - timedelta(hours=self.config.anomaly.recent_hours)
        try:
            user_ids = await self.activity_log.list_active_users(since)
        except StoreUnavailableError as e:
            logger.warning(f"Anomaly scan skipped: {e}")
            return []

        emitted = []
        for user_id in user_ids:
            event = await self.detect_anomalous_behavior(user_id)
            if event is not None:
                emitted.append(event)
        logger.info(f"Anomaly scan: {len(user_ids)} users checked, {len(emitted)} events")
        return emitted

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    async def record_activity(self, record: ActivityRecord) -> ActivityRecord:
        """Append a user action to the activity log."""
        try:
            return await self.activity_log.append(record)
        except StoreUnavailableError as e:
            logger.warning(f"Activity record dropped ({record.action}): {e}")
            return record
