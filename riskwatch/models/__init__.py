"""SQLAlchemy models for Riskwatch."""

from riskwatch.models.audit_logs import AuditAction, AuditLog, AuditSeverity
from riskwatch.models.security_events import (
    AlertStatus,
    SecurityEventRecord,
    SecurityEventType,
    ThreatLevel,
)

__all__ = [
    "AuditAction",
    "AuditLog",
    "AuditSeverity",
    "AlertStatus",
    "SecurityEventRecord",
    "SecurityEventType",
    "ThreatLevel",
]
