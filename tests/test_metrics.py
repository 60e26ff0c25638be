"""Tests for metrics aggregation and suspicious-user rollups."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from riskwatch.models.security_events import AlertStatus, SecurityEventType
from riskwatch.schemas.security import SecurityEvent
from riskwatch.services.metrics import (
    aggregate_metrics,
    build_suspicious_activity,
    rank_suspicious_users,
    risk_trend,
    window_start,
)
from riskwatch.services.risk_scoring import classify_threat_level
from tests.conftest import FIXED_NOW

_counter = iter(range(1, 10_000))


def _event(
    score: int,
    type_: SecurityEventType = SecurityEventType.SUSPICIOUS_LOGIN,
    user_id: Optional[str] = "u-1",
    days_ago: float = 0,
    status: AlertStatus = AlertStatus.OPEN,
    resolved_after_hours: Optional[float] = None,
    **fields,
) -> SecurityEvent:
    ts = FIXED_NOW - timedelta(days=days_ago)
    return SecurityEvent(
        id=f"evt-{next(_counter)}",
        type=type_,
        threat_level=classify_threat_level(score),
        title="t",
        description="d",
        user_id=user_id,
        timestamp=ts,
        risk_score=score,
        indicators=fields.pop("indicators", ["indicator"]),
        status=status,
        resolved_at=ts + timedelta(hours=resolved_after_hours) if resolved_after_hours is not None else None,
        **fields,
    )


class TestAggregateMetrics:
    """Tests for SecurityMetrics totals and breakdowns."""

    def test_empty_window(self):
        metrics = aggregate_metrics([], 7, FIXED_NOW)
        assert metrics.total_events == 0
        assert metrics.events_by_threat_level == {"low": 0, "medium": 0, "high": 0, "critical": 0}
        assert metrics.events_by_type == {}
        assert metrics.average_resolution_time == 0
        assert len(metrics.risk_trend) == 7
        assert all(p.risk_score == 0 for p in metrics.risk_trend)
        assert metrics.is_fallback is False

    def test_sums_agree(self):
        events = [
            _event(20), _event(55), _event(80, SecurityEventType.PRIVILEGE_ESCALATION),
            _event(95, SecurityEventType.BRUTE_FORCE_ATTACK), _event(60, SecurityEventType.BRUTE_FORCE_ATTACK),
        ]
        metrics = aggregate_metrics(events, 30, FIXED_NOW)

        assert metrics.total_events == 5
        assert sum(metrics.events_by_threat_level.values()) == 5
        assert sum(metrics.events_by_type.values()) == 5
        assert metrics.events_by_threat_level == {"low": 1, "medium": 2, "high": 1, "critical": 1}

    def test_status_counts(self):
        events = [
            _event(50),
            _event(50, status=AlertStatus.INVESTIGATING),
            _event(50, status=AlertStatus.RESOLVED, resolved_after_hours=2),
            _event(50, status=AlertStatus.RESOLVED, resolved_after_hours=4),
            _event(50, status=AlertStatus.FALSE_POSITIVE),
        ]
        metrics = aggregate_metrics(events, 30, FIXED_NOW)
        assert metrics.open_alerts == 1
        assert metrics.investigating_alerts == 1
        assert metrics.resolved_alerts == 2
        assert metrics.false_positive_alerts == 1
        assert metrics.average_resolution_time == pytest.approx(3.0)

    def test_top_threats_ordering(self):
        """Count descending, ties broken by type name."""
        events = (
            [_event(40, SecurityEventType.SUSPICIOUS_LOGIN)] * 1
            + [_event(70, SecurityEventType.BRUTE_FORCE_ATTACK), _event(90, SecurityEventType.BRUTE_FORCE_ATTACK)]
            + [_event(30, SecurityEventType.ANOMALOUS_BEHAVIOR), _event(50, SecurityEventType.ANOMALOUS_BEHAVIOR)]
        )
        metrics = aggregate_metrics(events, 30, FIXED_NOW)
        top = [(t.type, t.count, t.avg_risk_score) for t in metrics.top_threats]
        assert top == [
            (SecurityEventType.ANOMALOUS_BEHAVIOR, 2, 40.0),
            (SecurityEventType.BRUTE_FORCE_ATTACK, 2, 80.0),
            (SecurityEventType.SUSPICIOUS_LOGIN, 1, 40.0),
        ]

    def test_top_threats_limited_to_five(self):
        types = list(SecurityEventType)[:7]
        events = [_event(50, t) for t in types]
        assert len(aggregate_metrics(events, 30, FIXED_NOW).top_threats) == 5


class TestRiskTrend:
    """Tests for the per-day trend."""

    def test_points_end_today(self):
        trend = risk_trend([], 3, FIXED_NOW)
        assert [p.date for p in trend] == ["2025-03-08", "2025-03-09", "2025-03-10"]

    def test_window_starts_at_first_trend_day(self):
        assert window_start(3, FIXED_NOW) == datetime(2025, 3, 8, tzinfo=timezone.utc)
        assert window_start(1, FIXED_NOW) == datetime(2025, 3, 10, tzinfo=timezone.utc)

    def test_daily_mean(self):
        events = [_event(40), _event(60), _event(90, days_ago=2)]
        trend = risk_trend(events, 3, FIXED_NOW)
        assert [p.risk_score for p in trend] == [90, 0, 50]


class TestSuspiciousUsers:
    """Tests for per-user rollups and ranking."""

    def test_single_event_users_excluded(self):
        events = [_event(90, user_id="solo"), _event(40, user_id="pair"), _event(60, user_id="pair")]
        ranked = rank_suspicious_users(events)
        assert [s.user_id for s in ranked] == ["pair"]
        assert ranked[0].risk_score == 50
        assert ranked[0].occurrence_count == 2

    def test_ranked_by_mean_risk(self):
        events = [
            _event(40, user_id="low"), _event(40, user_id="low"),
            _event(90, user_id="high"), _event(80, user_id="high"),
        ]
        assert [s.user_id for s in rank_suspicious_users(events)] == ["high", "low"]

    def test_events_without_user_ignored(self):
        events = [_event(90, user_id=None), _event(90, user_id=None)]
        assert rank_suspicious_users(events) == []

    def test_rollup_fields(self):
        events = [
            _event(50, days_ago=2, ip_address="10.0.0.1", user_agent="UA1",
                   indicators=["A", "B"], affected_resources=["user:u-1"]),
            _event(70, days_ago=1, ip_address="10.0.0.2", user_agent="UA1",
                   indicators=["B", "C"], affected_resources=["user:u-1", "action:x"],
                   user_email="u1@example.com"),
        ]
        rollup = build_suspicious_activity("u-1", events)

        assert rollup.user_email == "u1@example.com"
        assert rollup.indicators == ["A", "B", "C"]
        assert rollup.ip_addresses == ["10.0.0.1", "10.0.0.2"]
        assert rollup.user_agents == ["UA1"]
        assert rollup.affected_resources == ["user:u-1", "action:x"]
        assert rollup.first_seen == FIXED_NOW - timedelta(days=2)
        assert rollup.last_seen == FIXED_NOW - timedelta(days=1)
        assert rollup.risk_score == 60

    def test_unknown_email_default(self):
        rollup = build_suspicious_activity("u-1", [_event(50), _event(50)])
        assert rollup.user_email == "Unknown"

    def test_no_events(self):
        assert build_suspicious_activity("u-1", []) is None
