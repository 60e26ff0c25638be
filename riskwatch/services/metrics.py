"""Security metrics aggregation.

Pure functions over a list of events already restricted to the reporting
window; the security monitor does the reading.
"""

from collections import defaultdict
from datetime import datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from riskwatch.config import MetricsConfig
from riskwatch.models.security_events import THREAT_LEVEL_ORDER, AlertStatus
from riskwatch.schemas.security import (
    RiskTrendPoint,
    SecurityEvent,
    SecurityMetrics,
    SuspiciousActivity,
    TopThreat,
)
from riskwatch.utils.timeutils import as_utc

_DEFAULT_CONFIG = MetricsConfig()


def _ordered_union(lists: Iterable[Iterable[Optional[str]]]) -> List[str]:
    out: List[str] = []
    for values in lists:
        for v in values:
            if v and v not in out:
                out.append(v)
    return out


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def build_suspicious_activity(user_id: str, events: List[SecurityEvent]) -> Optional[SuspiciousActivity]:
    """Roll one user's events up into a ``SuspiciousActivity``."""
    if not events:
        return None
    ordered = sorted(events, key=lambda e: e.timestamp)
    email = next((e.user_email for e in ordered if e.user_email), "Unknown")
    return SuspiciousActivity(
        user_id=user_id,
        user_email=email,
        risk_score=round(_mean([e.risk_score for e in ordered]), 2),
        indicators=_ordered_union(e.indicators for e in ordered),
        first_seen=ordered[0].timestamp,
        last_seen=ordered[-1].timestamp,
        occurrence_count=len(ordered),
        ip_addresses=_ordered_union([e.ip_address] for e in ordered),
        user_agents=_ordered_union([e.user_agent] for e in ordered),
        affected_resources=_ordered_union(e.affected_resources for e in ordered),
    )


def rank_suspicious_users(
    events: List[SecurityEvent],
    config: Optional[MetricsConfig] = None,
) -> List[SuspiciousActivity]:
    """Users with at least ``min_events_per_user`` events, highest mean risk first."""
    cfg = config or _DEFAULT_CONFIG
    by_user: Dict[str, List[SecurityEvent]] = defaultdict(list)
    for e in events:
        if e.user_id:
            by_user[e.user_id].append(e)

    rollups = [
        build_suspicious_activity(uid, evs)
        for uid, evs in by_user.items()
        if len(evs) >= cfg.min_events_per_user
    ]
    rollups.sort(key=lambda s: (-s.risk_score, s.user_id))
    return rollups[: cfg.suspicious_users]


def window_start(days: int, now: datetime) -> datetime:
    """Midnight UTC of the first trend day, so every counted event lands in a trend point."""
    first_day = as_utc(now).date() - timedelta(days=days - 1)
    return datetime.combine(first_day, time.min, tzinfo=timezone.utc)


def risk_trend(events: List[SecurityEvent], days: int, now: datetime) -> List[RiskTrendPoint]:
    """Mean risk per UTC day, oldest first, ending today."""
    by_day: Dict[str, List[int]] = defaultdict(list)
    for e in events:
        by_day[as_utc(e.timestamp).date().isoformat()].append(e.risk_score)

    today = as_utc(now).date()
    points = []
    for i in range(days - 1, -1, -1):
        day = (today - timedelta(days=i)).isoformat()
        points.append(RiskTrendPoint(date=day, risk_score=round(_mean(by_day.get(day, [])))))
    return points


def aggregate_metrics(
    events: List[SecurityEvent],
    days: int,
    now: datetime,
    config: Optional[MetricsConfig] = None,
) -> SecurityMetrics:
    """Build ``SecurityMetrics`` for events since ``window_start(days, now)``."""
    cfg = config or _DEFAULT_CONFIG

    by_type: Dict[str, List[int]] = defaultdict(list)
    by_level = {level.value: 0 for level in THREAT_LEVEL_ORDER}
    by_status = {status: 0 for status in AlertStatus}
    resolution_hours: List[float] = []

    for e in events:
        by_type[e.type.value].append(e.risk_score)
        by_level[e.threat_level.value] += 1
        by_status[e.status] += 1
        if e.resolved_at is not None:
            delta = as_utc(e.resolved_at) - as_utc(e.timestamp)
            resolution_hours.append(delta.total_seconds() / 3600)

    top = sorted(by_type.items(), key=lambda kv: (-len(kv[1]), kv[0]))[: cfg.top_threats]

    return SecurityMetrics(
        total_events=len(events),
        events_by_type={t: len(scores) for t, scores in sorted(by_type.items())},
        events_by_threat_level=by_level,
        open_alerts=by_status[AlertStatus.OPEN],
        investigating_alerts=by_status[AlertStatus.INVESTIGATING],
        resolved_alerts=by_status[AlertStatus.RESOLVED],
        false_positive_alerts=by_status[AlertStatus.FALSE_POSITIVE],
        average_resolution_time=round(_mean(resolution_hours), 2),
        top_threats=[
            TopThreat(type=t, count=len(scores), avg_risk_score=round(_mean(scores), 2))
            for t, scores in top
        ],
        risk_trend=risk_trend(events, days, now),
        suspicious_users=rank_suspicious_users(events, cfg),
        window_days=days,
        generated_at=now,
    )
