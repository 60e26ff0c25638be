"""Security monitoring API endpoints.

Thin adapter over ``SecurityMonitor``: event listing and lookup, the alert
lifecycle, metrics, per-user rollups, and on-demand detector runs.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from riskwatch.dependencies import SecurityMonitorDep
from riskwatch.exceptions import EventNotFoundError, ValidationError
from riskwatch.models.security_events import AlertStatus, SecurityEventType, ThreatLevel
from riskwatch.schemas.security import (
    ActivityRecord,
    AnomalyCheckRequest,
    BruteForceCheckRequest,
    DetectionResponse,
    PrivilegeEscalationCheckRequest,
    SecurityEvent,
    SecurityEventCreate,
    SecurityEventFilter,
    SecurityEventListResponse,
    SecurityMetrics,
    StatusUpdateRequest,
    SuspiciousActivity,
    SuspiciousLoginCheckRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/security")


def _bad_request(exc: ValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _not_found(exc: EventNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


# -----------------------------------------------------------------------
# Security events
# -----------------------------------------------------------------------

@router.get("/events", response_model=SecurityEventListResponse)
async def list_security_events(
    monitor: SecurityMonitorDep,
    event_type: Optional[SecurityEventType] = Query(None, alias="type", description="Filter by event type"),
    threat_level: Optional[ThreatLevel] = Query(None, description="Filter by threat level"),
    status_filter: Optional[AlertStatus] = Query(None, alias="status", description="Filter by alert status"),
    user_id: Optional[str] = Query(None),
    ip_address: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
):
    """List security events, newest first."""
    query = SecurityEventFilter(
        type=event_type,
        threat_level=threat_level,
        status=status_filter,
        user_id=user_id,
        ip_address=ip_address,
        start_date=start_date,
        end_date=end_date,
    )
    result = await monitor.get_security_events(query, limit=page_size, offset=(page - 1) * page_size)

    return SecurityEventListResponse(
        items=result.events,
        total=result.total,
        page=page,
        page_size=page_size,
        pages=math.ceil(result.total / page_size) if result.total > 0 else 0,
        is_fallback=result.is_fallback,
    )


@router.post("/events", response_model=SecurityEvent, status_code=status.HTTP_201_CREATED)
async def create_security_event(
    draft: SecurityEventCreate,
    monitor: SecurityMonitorDep,
):
    """Record a security event raised outside the built-in detectors."""
    return await monitor.create_security_event(draft)


@router.get("/events/{event_id}", response_model=SecurityEvent)
async def get_security_event(event_id: str, monitor: SecurityMonitorDep):
    """Get a single security event by ID."""
    try:
        return await monitor.get_security_event(event_id)
    except EventNotFoundError as e:
        raise _not_found(e)


@router.post("/events/{event_id}/status", response_model=SecurityEvent)
async def update_security_event_status(
    event_id: str,
    request: StatusUpdateRequest,
    monitor: SecurityMonitorDep,
):
    """Move a security event through the alert lifecycle."""
    try:
        return await monitor.update_security_event_status(
            event_id,
            request.status,
            actor=request.actor,
            assigned_to=request.assigned_to,
            resolution_notes=request.resolution_notes,
            justification=request.justification,
        )
    except EventNotFoundError as e:
        raise _not_found(e)


# -----------------------------------------------------------------------
# Metrics and rollups
# -----------------------------------------------------------------------

@router.get("/metrics", response_model=SecurityMetrics)
async def get_security_metrics(
    monitor: SecurityMonitorDep,
    days: int = Query(30, ge=1, le=365),
):
    """Aggregated security metrics for the last ``days`` days."""
    return await monitor.get_security_metrics(days)


@router.get("/users/{user_id}/activity", response_model=Optional[SuspiciousActivity])
async def get_suspicious_activity(
    user_id: str,
    monitor: SecurityMonitorDep,
    days: int = Query(30, ge=1, le=365),
):
    """Rollup of one user's security events, or null if there are none."""
    return await monitor.get_suspicious_activity(user_id, days)


@router.post("/activity", response_model=ActivityRecord, status_code=status.HTTP_201_CREATED)
async def record_activity(record: ActivityRecord, monitor: SecurityMonitorDep):
    """Append a user action to the activity log."""
    return await monitor.record_activity(record)


# -----------------------------------------------------------------------
# Detectors
# -----------------------------------------------------------------------

@router.post("/detect/brute-force", response_model=DetectionResponse)
async def check_brute_force(request: BruteForceCheckRequest, monitor: SecurityMonitorDep):
    try:
        event = await monitor.analyze_brute_force_attempts(request.ip_address, request.user_id)
    except ValidationError as e:
        raise _bad_request(e)
    return DetectionResponse(detected=event is not None, event=event)


@router.post("/detect/suspicious-login", response_model=DetectionResponse)
async def check_suspicious_login(request: SuspiciousLoginCheckRequest, monitor: SecurityMonitorDep):
    try:
        event = await monitor.detect_suspicious_login(
            request.user_id,
            request.user_email,
            request.ip_address,
            request.user_agent,
            request.location,
        )
    except ValidationError as e:
        raise _bad_request(e)
    return DetectionResponse(detected=event is not None, event=event)


@router.post("/detect/privilege-escalation", response_model=DetectionResponse)
async def check_privilege_escalation(
    request: PrivilegeEscalationCheckRequest,
    monitor: SecurityMonitorDep,
):
    try:
        event = await monitor.monitor_privilege_escalation(
            request.user_id,
            request.user_email,
            request.attempted_action,
            request.required_role,
            request.user_role,
        )
    except ValidationError as e:
        raise _bad_request(e)
    return DetectionResponse(detected=event is not None, event=event)


@router.post("/detect/anomalous-behavior", response_model=DetectionResponse)
async def check_anomalous_behavior(request: AnomalyCheckRequest, monitor: SecurityMonitorDep):
    try:
        event = await monitor.detect_anomalous_behavior(request.user_id, request.user_email)
    except ValidationError as e:
        raise _bad_request(e)
    return DetectionResponse(detected=event is not None, event=event)
