"""Rule-based threat detectors.

Each detector reads the activity log, scores what it finds and returns a
``SecurityEventCreate`` draft, or ``None`` when nothing crosses the
reporting threshold. Detectors never persist anything; the security
monitor does that.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from riskwatch.config import DetectionConfig
from riskwatch.exceptions import ValidationError
from riskwatch.models.audit_logs import ENGINE_ACTIONS, AuditAction
from riskwatch.models.security_events import SecurityEventType
from riskwatch.schemas.security import ActivityFilter, ActivityRecord, SecurityEventCreate
from riskwatch.services.ports import ActivityLogPort
from riskwatch.services.risk_scoring import Indicator, assess, clamp_score
from riskwatch.utils.timeutils import hour_distance

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = DetectionConfig()


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} is required")
    return value


def _distinct(values) -> List[str]:
    seen: List[str] = []
    for v in values:
        if v and v not in seen:
            seen.append(v)
    return seen


# ---------------------------------------------------------------------------
# Brute force
# ---------------------------------------------------------------------------

async def detect_brute_force(
    activity_log: ActivityLogPort,
    ip_address: str,
    *,
    now: datetime,
    user_id: Optional[str] = None,
    config: Optional[DetectionConfig] = None,
) -> Optional[SecurityEventCreate]:
    """Flag an IP with too many failed logins inside the window."""
    _require(ip_address, "ip_address")
    cfg = (config or _DEFAULT_CONFIG).brute_force

    failures = await activity_log.query_activity(ActivityFilter(
        action=AuditAction.LOGIN_FAILED.value,
        ip_address=ip_address,
        success=False,
        start_date=now - timedelta(minutes=cfg.window_minutes),
        end_date=now,
    ))
    attempts = len(failures)
    if attempts < cfg.threshold:
        return None

    score = clamp_score(cfg.base_score + cfg.per_attempt_score * (attempts - cfg.threshold))
    logger.info(f"Brute force pattern from {ip_address}: {attempts} failures, score {score}")

    return SecurityEventCreate(
        type=SecurityEventType.BRUTE_FORCE_ATTACK,
        title="Brute Force Attack Detected",
        description=(
            f"{attempts} failed login attempts from IP {ip_address} "
            f"in the last {cfg.window_minutes} minutes"
        ),
        user_id=user_id,
        ip_address=ip_address,
        risk_score=score,
        indicators=[
            "Multiple failed login attempts",
            "Short time window",
            "Same IP address",
        ],
        affected_resources=["authentication_system"],
        mitigation_actions=[
            "Block IP address",
            "Increase login delay",
            "Notify security team",
        ],
        details={
            "attempt_count": attempts,
            "time_window": f"{cfg.window_minutes} minutes",
            "user_agents": _distinct(r.user_agent for r in failures),
        },
    )


# ---------------------------------------------------------------------------
# Suspicious login
# ---------------------------------------------------------------------------

async def detect_suspicious_login(
    activity_log: ActivityLogPort,
    user_id: str,
    ip_address: str,
    user_agent: str,
    *,
    now: datetime,
    user_email: Optional[str] = None,
    location: Optional[Dict[str, str]] = None,
    config: Optional[DetectionConfig] = None,
) -> Optional[SecurityEventCreate]:
    """Compare a successful login against the user's recent login history.

    History is the user's successful logins strictly before ``now``. The
    unusual-hour indicator needs at least one historical login.
    """
    _require(user_id, "user_id")
    _require(ip_address, "ip_address")
    detection = config or _DEFAULT_CONFIG
    cfg = detection.suspicious_login

    history = await activity_log.query_activity(ActivityFilter(
        user_id=user_id,
        action=AuditAction.LOGIN_SUCCESS.value,
        start_date=now - timedelta(days=cfg.history_days),
        end_date=now - timedelta(microseconds=1),
        limit=cfg.history_limit,
    ))

    known_ips = set(_distinct(r.ip_address for r in history))
    known_agents = set(_distinct(r.user_agent for r in history))
    usual_hours = [r.created_at.hour for r in history]
    rapid_since = now - timedelta(minutes=cfg.rapid_login_window_minutes)
    recent_logins = [r for r in history if r.created_at > rapid_since]

    indicators: List[Indicator] = []
    if ip_address not in known_ips:
        indicators.append(Indicator("Login from new IP address", cfg.new_ip_weight))
    if user_agent not in known_agents:
        indicators.append(Indicator("Login from new device/browser", cfg.new_user_agent_weight))
    if usual_hours and not any(
        hour_distance(h, now.hour) <= cfg.hour_tolerance for h in usual_hours
    ):
        indicators.append(Indicator("Login at unusual time", cfg.unusual_hour_weight))
    if len(recent_logins) > cfg.rapid_login_limit:
        indicators.append(Indicator("Multiple rapid logins", cfg.rapid_login_weight))

    assessment = assess(indicators, detection.thresholds)
    if assessment.score < detection.thresholds.medium:
        return None

    return SecurityEventCreate(
        type=SecurityEventType.SUSPICIOUS_LOGIN,
        title="Suspicious Login Activity",
        description=f"Potentially suspicious login detected for user {user_email or user_id}",
        user_id=user_id,
        user_email=user_email,
        ip_address=ip_address,
        user_agent=user_agent,
        risk_score=assessment.score,
        indicators=assessment.indicators,
        affected_resources=[f"user:{user_id}"],
        mitigation_actions=[
            "Monitor user activity",
            "Require additional authentication",
            "Review account access",
        ],
        details={
            "location": location,
            "known_ip_count": len(known_ips),
            "known_user_agent_count": len(known_agents),
            "recent_login_count": len(recent_logins),
        },
    )


# ---------------------------------------------------------------------------
# Privilege escalation
# ---------------------------------------------------------------------------

def detect_privilege_escalation(
    user_id: str,
    attempted_action: str,
    required_role: str,
    user_role: str,
    *,
    now: datetime,
    user_email: Optional[str] = None,
    config: Optional[DetectionConfig] = None,
) -> Optional[SecurityEventCreate]:
    """Flag an action attempted without the role it requires."""
    _require(user_id, "user_id")
    _require(attempted_action, "attempted_action")
    _require(required_role, "required_role")
    cfg = (config or _DEFAULT_CONFIG).privilege_escalation

    if user_role == required_role:
        return None

    return SecurityEventCreate(
        type=SecurityEventType.PRIVILEGE_ESCALATION,
        title="Privilege Escalation Attempt",
        description=(
            f"User {user_email or user_id} attempted to perform action "
            f"requiring {required_role} role"
        ),
        user_id=user_id,
        user_email=user_email,
        risk_score=cfg.score,
        indicators=[
            "Attempted unauthorized action",
            "Insufficient privileges",
            "Role mismatch",
        ],
        affected_resources=[f"user:{user_id}", f"action:{attempted_action}"],
        mitigation_actions=[
            "Block action",
            "Review user permissions",
            "Investigate user account",
        ],
        details={
            "attempted_action": attempted_action,
            "required_role": required_role,
            "user_role": user_role,
            "timestamp": now.isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Anomalous behavior
# ---------------------------------------------------------------------------

def _unusual_hours(recent: List[ActivityRecord], baseline: List[ActivityRecord], tolerance: int) -> int:
    baseline_hours = {r.created_at.hour for r in baseline}
    return sum(
        1 for r in recent
        if not any(hour_distance(r.created_at.hour, h) <= tolerance for h in baseline_hours)
    )


async def detect_anomalous_behavior(
    activity_log: ActivityLogPort,
    user_id: str,
    *,
    now: datetime,
    user_email: Optional[str] = None,
    config: Optional[DetectionConfig] = None,
) -> Optional[SecurityEventCreate]:
    """Compare the last day of a user's activity with their 30-day baseline.

    The baseline window ends where the recent window starts and excludes
    that instant.
    """
    _require(user_id, "user_id")
    detection = config or _DEFAULT_CONFIG
    cfg = detection.anomaly

    recent_start = now - timedelta(hours=cfg.recent_hours)
    baseline_start = now - timedelta(days=cfg.baseline_days)

    engine_actions = sorted(ENGINE_ACTIONS)
    recent = await activity_log.query_activity(ActivityFilter(
        user_id=user_id,
        start_date=recent_start,
        end_date=now,
        exclude_actions=engine_actions,
    ))
    baseline = [
        r for r in await activity_log.query_activity(ActivityFilter(
            user_id=user_id,
            start_date=baseline_start,
            end_date=recent_start,
            exclude_actions=engine_actions,
        ))
        if r.created_at < recent_start
    ]

    avg_daily = len(baseline) / cfg.baseline_days
    activity_ratio = len(recent) / avg_daily if avg_daily > 0 else 0.0

    baseline_actions = {r.action for r in baseline}
    new_actions = [a for a in _distinct(r.action for r in recent) if a not in baseline_actions]

    unusual = _unusual_hours(recent, baseline, cfg.hour_tolerance)

    indicators: List[Indicator] = []
    if activity_ratio > cfg.volume_ratio_threshold:
        indicators.append(Indicator("Unusually high activity volume", cfg.volume_weight))
    if len(new_actions) > cfg.new_action_threshold:
        indicators.append(Indicator("Performing unusual actions", cfg.new_action_weight))
    if recent and unusual > len(recent) * cfg.unusual_hour_fraction:
        indicators.append(Indicator("Activity at unusual times", cfg.unusual_hour_weight))

    assessment = assess(indicators, detection.thresholds)
    if assessment.score < detection.thresholds.medium:
        return None

    logger.info(f"Anomalous behavior for {user_id}: ratio {activity_ratio:.1f}, score {assessment.score}")

    return SecurityEventCreate(
        type=SecurityEventType.ANOMALOUS_BEHAVIOR,
        title="Anomalous User Behavior Detected",
        description=f"User {user_email or user_id} exhibiting unusual behavior patterns",
        user_id=user_id,
        user_email=user_email,
        risk_score=assessment.score,
        indicators=assessment.indicators,
        affected_resources=[f"user:{user_id}"],
        mitigation_actions=[
            "Monitor user closely",
            "Review recent actions",
            "Consider temporary restrictions",
        ],
        details={
            "activity_ratio": round(activity_ratio, 2),
            "new_actions": new_actions,
            "unusual_hours": unusual,
            "analysis_window": f"{cfg.recent_hours} hours",
        },
    )
