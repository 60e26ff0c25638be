"""Pydantic schemas for request/response validation."""

from riskwatch.schemas.security import (
    ActivityFilter,
    ActivityRecord,
    SecurityEvent,
    SecurityEventCreate,
    SecurityEventFilter,
    SecurityEventPage,
    SecurityMetrics,
    SuspiciousActivity,
)

__all__ = [
    "ActivityFilter",
    "ActivityRecord",
    "SecurityEvent",
    "SecurityEventCreate",
    "SecurityEventFilter",
    "SecurityEventPage",
    "SecurityMetrics",
    "SuspiciousActivity",
]
