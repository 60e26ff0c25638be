"""Detection engine services."""

from riskwatch.services.risk_scoring import assess, classify_threat_level
from riskwatch.services.security_monitor import SecurityMonitor

__all__ = ["SecurityMonitor", "assess", "classify_threat_level"]
