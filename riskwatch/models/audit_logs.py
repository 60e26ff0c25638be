"""Audit log model: activity records and the engine's audit trail."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from riskwatch.database import Base


class AuditAction(str, Enum):
    """Known auditable actions.

    The activity log accepts arbitrary action strings; these are the ones
    the detectors and the audit trail rely on.
    """

    # Authentication
    LOGIN_ATTEMPT = "login_attempt"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    PERMISSION_DENIED = "permission_denied"

    # Engine decisions
    SECURITY_ALERT = "security_alert"
    SECURITY_ALERT_ESCALATED = "security_alert_escalated"
    SECURITY_EVENT_UPDATED = "security_event_updated"

    # Administrative activity
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_ROLE_CHANGED = "user_role_changed"
    DATA_EXPORT = "data_export"
    BULK_OPERATION = "bulk_operation"
    CONFIG_CHANGED = "config_changed"
    REPORT_GENERATED = "report_generated"


# Entries the engine writes about its own decisions; never user activity.
ENGINE_ACTIONS = frozenset({
    AuditAction.SECURITY_ALERT.value,
    AuditAction.SECURITY_ALERT_ESCALATED.value,
    AuditAction.SECURITY_EVENT_UPDATED.value,
})


class AuditSeverity(str, Enum):
    """Severity levels for audit entries."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditLog(Base):
    """
    Append-only audit log entry.

    Holds both user activity (logins, privileged actions) consumed by the
    detectors and the engine's own security alerts and status changes.
    Security alerts carry ``details["security_event_id"]`` so an event can
    be recovered from its audit entry when the event store is down.
    """

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))

    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(
        String(20), default=AuditSeverity.INFO.value, nullable=False, index=True,
    )

    # Actor and request context
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True, index=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    success: Mapped[Optional[bool]] = mapped_column(
        Boolean, nullable=True, comment="Outcome for login attempts; null for other actions",
    )

    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    details: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), default=dict, nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True,
    )

    __table_args__ = (
        Index("ix_audit_logs_user_action", "user_id", "action"),
        Index("ix_audit_logs_ip_action_time", "ip_address", "action", "created_at"),
        Index("ix_audit_logs_severity_time", "severity", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, severity={self.severity})>"
