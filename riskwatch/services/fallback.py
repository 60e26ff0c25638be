"""Degraded data for when the event store is unreachable.

Everything returned from here is structurally valid so callers never see a
storage failure, but none of it is persisted.
"""

import logging
import math
import secrets
import string
from datetime import datetime, timedelta
from typing import List, Optional

from riskwatch.config import MetricsConfig
from riskwatch.models.security_events import (
    THREAT_LEVEL_ORDER,
    AlertStatus,
    SecurityEventType,
    ThreatLevel,
)
from riskwatch.schemas.security import (
    ActivityRecord,
    RiskTrendPoint,
    SecurityEvent,
    SecurityEventCreate,
    SecurityEventFilter,
    SecurityMetrics,
    TopThreat,
)
from riskwatch.services.metrics import aggregate_metrics, window_start
from riskwatch.services.ports import AuditTrailPort, EventQueryResult
from riskwatch.services.risk_scoring import clamp_score, classify_threat_level
from riskwatch.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_EVENT_TYPES = {t.value for t in SecurityEventType}
_THREAT_LEVELS = {level.value for level in ThreatLevel}

# Shape of an event rebuilt from a bare audit entry
APPROXIMATE_TYPE = SecurityEventType.SUSPICIOUS_LOGIN
APPROXIMATE_LEVEL = ThreatLevel.MEDIUM
APPROXIMATE_SCORE = 50
APPROXIMATE_STATUS = AlertStatus.OPEN

# Low-baseline template served when metrics cannot be computed
SYNTHETIC_BASE_RISK = 15
SYNTHETIC_RISK_AMPLITUDE = 10
SYNTHETIC_EVENTS_BY_TYPE = {
    SecurityEventType.SUSPICIOUS_LOGIN.value: 5,
    SecurityEventType.BRUTE_FORCE_ATTACK.value: 2,
    SecurityEventType.ANOMALOUS_BEHAVIOR.value: 3,
    SecurityEventType.UNAUTHORIZED_ACCESS.value: 2,
}
SYNTHETIC_EVENTS_BY_LEVEL = {
    ThreatLevel.LOW.value: 6,
    ThreatLevel.MEDIUM.value: 4,
    ThreatLevel.HIGH.value: 2,
    ThreatLevel.CRITICAL.value: 0,
}
SYNTHETIC_TOP_THREATS = [
    (SecurityEventType.SUSPICIOUS_LOGIN, 5, 45.0),
    (SecurityEventType.ANOMALOUS_BEHAVIOR, 3, 35.0),
    (SecurityEventType.BRUTE_FORCE_ATTACK, 2, 75.0),
]


def generate_local_event_id(now: Optional[datetime] = None) -> str:
    """Local id: ``security_<epoch-ms>_<9 base36 chars>``."""
    now = now or utcnow()
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"security_{int(now.timestamp() * 1000)}_{suffix}"


class FallbackProvider:
    """Builds approximate events and synthetic metrics."""

    def build_event(
        self,
        draft: SecurityEventCreate,
        threat_level: ThreatLevel,
        now: Optional[datetime] = None,
    ) -> SecurityEvent:
        """In-memory event for a create that could not be stored."""
        now = now or utcnow()
        return SecurityEvent(
            id=generate_local_event_id(now),
            threat_level=threat_level,
            timestamp=now,
            status=AlertStatus.OPEN,
            **draft.model_dump(),
        )

    def event_from_audit(self, entry: ActivityRecord) -> SecurityEvent:
        """Approximate an event from its ``security_alert`` audit entry."""
        details = entry.details or {}
        return SecurityEvent(
            id=details.get("security_event_id") or entry.id or generate_local_event_id(),
            type=APPROXIMATE_TYPE,
            threat_level=APPROXIMATE_LEVEL,
            title=entry.message or "Security Alert",
            description=entry.message or "Security event detected",
            user_id=entry.user_id,
            user_email=entry.user_email or details.get("user_email"),
            ip_address=entry.ip_address,
            timestamp=entry.created_at,
            risk_score=APPROXIMATE_SCORE,
            indicators=["Audit log entry"],
            affected_resources=[f"user:{entry.user_id}"] if entry.user_id else [],
            mitigation_actions=["Review activity"],
            details=details,
            status=APPROXIMATE_STATUS,
        )

    def estimate_from_audit(self, entry: ActivityRecord) -> SecurityEvent:
        """Like ``event_from_audit``, but keeps the type, level and score the
        entry recorded at creation time. Used for metrics only."""
        event = self.event_from_audit(entry)
        details = event.details
        update = {}
        if str(details.get("event_type")) in _EVENT_TYPES:
            update["type"] = SecurityEventType(details["event_type"])
        score = details.get("risk_score")
        if isinstance(score, (int, float)) and not isinstance(score, bool):
            update["risk_score"] = clamp_score(score)
            update["threat_level"] = classify_threat_level(update["risk_score"])
        if str(details.get("threat_level")) in _THREAT_LEVELS:
            update["threat_level"] = ThreatLevel(details["threat_level"])
        return event.model_copy(update=update)

    def placeholder_event(self, event_id: str, now: Optional[datetime] = None) -> SecurityEvent:
        """Stand-in for an event nothing is known about."""
        return SecurityEvent(
            id=event_id,
            type=APPROXIMATE_TYPE,
            threat_level=ThreatLevel.LOW,
            title="Security event unavailable",
            description="Event details could not be loaded",
            timestamp=now or utcnow(),
            risk_score=0,
            indicators=["Event store unavailable"],
            status=APPROXIMATE_STATUS,
        )

    @staticmethod
    def _can_match(query: SecurityEventFilter) -> bool:
        if query.type is not None and query.type != APPROXIMATE_TYPE:
            return False
        if query.threat_level is not None and query.threat_level != APPROXIMATE_LEVEL:
            return False
        if query.status is not None and query.status != APPROXIMATE_STATUS:
            return False
        return True

    async def query_from_audit(
        self,
        audit_trail: AuditTrailPort,
        query: SecurityEventFilter,
        limit: int = 50,
        offset: int = 0,
    ) -> EventQueryResult:
        """Events approximated from the audit trail; empty if it is down too."""
        if not self._can_match(query):
            return EventQueryResult(degraded=True)

        try:
            entries, total = await audit_trail.query_security_alerts(
                user_id=query.user_id,
                ip_address=query.ip_address,
                start_date=query.start_date,
                end_date=query.end_date,
                limit=limit,
                offset=offset,
            )
        except Exception as e:
            logger.warning(f"Audit trail unavailable, returning empty event page: {e}")
            return EventQueryResult(degraded=True)

        return EventQueryResult(
            events=[self.event_from_audit(e) for e in entries],
            total=total,
            degraded=True,
        )

    async def recover_event(
        self,
        audit_trail: AuditTrailPort,
        event_id: str,
        now: Optional[datetime] = None,
    ) -> SecurityEvent:
        """Best-effort view of ``event_id`` from the audit trail."""
        try:
            entry = await audit_trail.find_security_alert(event_id)
        except Exception as e:
            logger.warning(f"Audit trail unavailable while recovering {event_id}: {e}")
            entry = None
        if entry is None:
            return self.placeholder_event(event_id, now)
        return self.event_from_audit(entry)

    def synthetic_metrics(self, days: int, now: Optional[datetime] = None) -> SecurityMetrics:
        """Deterministic low-baseline template, for when no store can be read."""
        now = now or utcnow()
        trend: List[RiskTrendPoint] = []
        for i in range(days - 1, -1, -1):
            day = (now - timedelta(days=i)).date()
            score = clamp_score(
                SYNTHETIC_BASE_RISK + SYNTHETIC_RISK_AMPLITUDE * math.sin(i / 7)
            )
            trend.append(RiskTrendPoint(date=day.isoformat(), risk_score=score))

        return SecurityMetrics(
            total_events=sum(SYNTHETIC_EVENTS_BY_TYPE.values()),
            events_by_type=dict(SYNTHETIC_EVENTS_BY_TYPE),
            events_by_threat_level={
                level.value: SYNTHETIC_EVENTS_BY_LEVEL[level.value]
                for level in THREAT_LEVEL_ORDER
            },
            open_alerts=3,
            investigating_alerts=0,
            resolved_alerts=9,
            false_positive_alerts=0,
            average_resolution_time=2.5,
            top_threats=[
                TopThreat(type=t, count=c, avg_risk_score=avg)
                for t, c, avg in SYNTHETIC_TOP_THREATS
            ],
            risk_trend=trend,
            suspicious_users=[],
            window_days=days,
            generated_at=now,
            is_fallback=True,
        )

    async def metrics_from_audit(
        self,
        audit_trail: AuditTrailPort,
        days: int,
        now: Optional[datetime] = None,
        config: Optional[MetricsConfig] = None,
    ) -> SecurityMetrics:
        """Metrics estimated from the window's ``security_alert`` audit entries.

        Every entry counts as one Open event of the type, level and score it
        recorded. Falls back to ``synthetic_metrics`` when the audit trail
        cannot be read either.
        """
        now = now or utcnow()
        page_size = (config or MetricsConfig()).page_size
        start = window_start(days, now)
        entries: List[ActivityRecord] = []
        try:
            while True:
                page, total = await audit_trail.query_security_alerts(
                    start_date=start, end_date=now, limit=page_size, offset=len(entries),
                )
                entries.extend(page)
                if not page or len(entries) >= total:
                    break
        except Exception as e:
            logger.warning(f"Audit trail unavailable, using synthetic metrics: {e}")
            return self.synthetic_metrics(days, now)

        events = [self.estimate_from_audit(entry) for entry in entries]
        metrics = aggregate_metrics(events, days, now, config)
        return metrics.model_copy(update={"is_fallback": True})
