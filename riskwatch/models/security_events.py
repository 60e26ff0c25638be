"""Security event model for persistent detection output."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from riskwatch.database import Base

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class SecurityEventType(str, Enum):
    """Types of detected security events."""

    BRUTE_FORCE_ATTACK = "brute_force_attack"
    SUSPICIOUS_LOGIN = "suspicious_login"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    DATA_EXFILTRATION = "data_exfiltration"
    ANOMALOUS_BEHAVIOR = "anomalous_behavior"
    MALICIOUS_REQUEST = "malicious_request"
    ACCOUNT_TAKEOVER = "account_takeover"
    INSIDER_THREAT = "insider_threat"
    SYSTEM_COMPROMISE = "system_compromise"


class ThreatLevel(str, Enum):
    """Threat level classified from the risk score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return THREAT_LEVEL_ORDER.index(self)


THREAT_LEVEL_ORDER = [
    ThreatLevel.LOW,
    ThreatLevel.MEDIUM,
    ThreatLevel.HIGH,
    ThreatLevel.CRITICAL,
]


class AlertStatus(str, Enum):
    """Security event triage status."""

    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


TERMINAL_STATUSES = frozenset({AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE})


class SecurityEventRecord(Base):
    """Persistent security event row.

    ``risk_score`` and ``indicators`` are written once on insert; only the
    lifecycle columns change afterwards.
    """

    __tablename__ = "security_events"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    event_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )

    threat_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Attribution (all optional; infrastructure events have no user)
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True, index=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    indicators: Mapped[list] = mapped_column(
        JsonColumn,
        default=list,
        nullable=False,
        comment="Ordered reason strings contributing to the score",
    )
    affected_resources: Mapped[list] = mapped_column(JsonColumn, default=list, nullable=False)
    mitigation_actions: Mapped[list] = mapped_column(JsonColumn, default=list, nullable=False)

    details: Mapped[dict] = mapped_column(
        JsonColumn,
        default=dict,
        nullable=False,
        comment="Detector context: attempt counts, activity ratios, etc.",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=AlertStatus.OPEN.value,
        nullable=False,
        index=True,
    )

    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_security_events_user_time", "user_id", "timestamp"),
        Index("ix_security_events_level_time", "threat_level", "timestamp"),
    )

    def __repr__(self) -> str:
        return (
            f"<SecurityEventRecord(id={self.id}, type={self.event_type}, "
            f"level={self.threat_level}, score={self.risk_score})>"
        )
