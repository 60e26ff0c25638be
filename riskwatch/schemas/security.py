"""Pydantic schemas for security events, activity records and metrics."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from riskwatch.models.audit_logs import AuditSeverity
from riskwatch.models.security_events import AlertStatus, SecurityEventType, ThreatLevel


# ---------------------------------------------------------------------------
# Security events
# ---------------------------------------------------------------------------

class SecurityEventCreate(BaseModel):
    """Input for a new security event.

    Threat level, id, timestamp and status are assigned by the engine.
    """

    type: SecurityEventType
    title: str = Field(..., min_length=1, max_length=255)
    description: str
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    risk_score: int
    indicators: List[str] = Field(..., min_length=1)
    affected_resources: List[str] = Field(default_factory=list)
    mitigation_actions: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("risk_score")
    @classmethod
    def clamp_risk_score(cls, v: int) -> int:
        return max(0, min(100, v))


class SecurityEvent(BaseModel):
    """A classified security event."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: SecurityEventType
    threat_level: ThreatLevel
    title: str
    description: str
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: datetime
    risk_score: int = Field(..., ge=0, le=100)
    indicators: List[str]
    affected_resources: List[str] = Field(default_factory=list)
    mitigation_actions: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)
    status: AlertStatus = AlertStatus.OPEN
    assigned_to: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


class SecurityEventFilter(BaseModel):
    """Filter for security event queries. Unset fields do not constrain."""

    type: Optional[SecurityEventType] = None
    threat_level: Optional[ThreatLevel] = None
    status: Optional[AlertStatus] = None
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class SecurityEventPage(BaseModel):
    """A page of security events."""

    events: List[SecurityEvent]
    total: int
    has_more: bool
    is_fallback: bool = False


class SecurityEventListResponse(BaseModel):
    """Schema for paginated security event list."""

    items: List[SecurityEvent]
    total: int
    page: int
    page_size: int
    pages: int
    is_fallback: bool = False


class StatusUpdateRequest(BaseModel):
    """Schema for a lifecycle transition."""

    status: AlertStatus
    assigned_to: Optional[str] = Field(None, max_length=255)
    resolution_notes: Optional[str] = Field(
        None,
        max_length=2000,
        description="Optional notes explaining the resolution",
    )
    actor: str = Field("system", max_length=255, description="User applying the transition")
    justification: Optional[str] = Field(None, max_length=2000)


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------

class ActivityRecord(BaseModel):
    """One entry of the activity log / audit trail."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    action: str
    severity: AuditSeverity = AuditSeverity.INFO
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    success: Optional[bool] = None
    message: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class ActivityFilter(BaseModel):
    """Activity log query. ``start_date`` and ``end_date`` are inclusive.

    ``exclude_actions`` drops entries whose action is listed, e.g. the
    engine's own audit records when reading user behavior.
    """

    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    action: Optional[str] = None
    success: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    exclude_actions: List[str] = Field(default_factory=list)
    limit: Optional[int] = Field(None, ge=1)


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------

class SuspiciousActivity(BaseModel):
    """Per-user rollup of security events over a window."""

    user_id: str
    user_email: str = "Unknown"
    activity_type: str = "Multiple security events"
    risk_score: float
    indicators: List[str] = Field(default_factory=list)
    first_seen: datetime
    last_seen: datetime
    occurrence_count: int
    ip_addresses: List[str] = Field(default_factory=list)
    user_agents: List[str] = Field(default_factory=list)
    affected_resources: List[str] = Field(default_factory=list)


class TopThreat(BaseModel):
    type: SecurityEventType
    count: int
    avg_risk_score: float


class RiskTrendPoint(BaseModel):
    date: str  # YYYY-MM-DD (UTC)
    risk_score: int


class SecurityMetrics(BaseModel):
    """Aggregated security metrics for a time window."""

    total_events: int = 0
    events_by_type: Dict[str, int] = Field(default_factory=dict)
    events_by_threat_level: Dict[str, int] = Field(default_factory=dict)
    open_alerts: int = 0
    investigating_alerts: int = 0
    resolved_alerts: int = 0
    false_positive_alerts: int = 0
    average_resolution_time: float = 0.0  # hours
    top_threats: List[TopThreat] = Field(default_factory=list)
    risk_trend: List[RiskTrendPoint] = Field(default_factory=list)
    suspicious_users: List[SuspiciousActivity] = Field(default_factory=list)
    window_days: int
    generated_at: datetime
    is_fallback: bool = False


# ---------------------------------------------------------------------------
# Detector requests
# ---------------------------------------------------------------------------

class BruteForceCheckRequest(BaseModel):
    ip_address: str = Field(..., min_length=1)
    user_id: Optional[str] = None


class SuspiciousLoginCheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    user_email: Optional[str] = None
    ip_address: str = Field(..., min_length=1)
    user_agent: str = ""
    location: Optional[Dict[str, str]] = None


class PrivilegeEscalationCheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    user_email: Optional[str] = None
    attempted_action: str = Field(..., min_length=1)
    required_role: str = Field(..., min_length=1)
    user_role: str


class AnomalyCheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    user_email: Optional[str] = None


class DetectionResponse(BaseModel):
    """Outcome of a detector run."""

    detected: bool
    event: Optional[SecurityEvent] = None
