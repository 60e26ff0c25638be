"""Alert notifiers for High and Critical security events."""

import logging

from riskwatch.exceptions import NotificationFailure
from riskwatch.schemas.security import SecurityEvent

logger = logging.getLogger(__name__)


def alert_payload(event: SecurityEvent) -> dict:
    """Task kwargs for ``send_security_alert``."""
    return {
        "title": f"Security Alert: {event.title}",
        "message": (
            f"{event.description}\n"
            f"*Threat level:* {event.threat_level.value}\n"
            f"*Risk score:* {event.risk_score}\n"
            f"*Indicators:* {', '.join(event.indicators)}"
        ),
        "severity": event.threat_level.value,
        "metadata": {
            "security_event_id": event.id,
            "event_type": event.type.value,
            "user_id": event.user_id,
            "ip_address": event.ip_address,
            "risk_score": event.risk_score,
            "mitigation_actions": event.mitigation_actions,
        },
    }


class CeleryAlertNotifier:
    """Queues alerts on the Celery broker without publish retries."""

    async def notify(self, event: SecurityEvent) -> None:
        from riskwatch.tasks.alerts import send_security_alert

        try:
            send_security_alert.apply_async(kwargs=alert_payload(event), retry=False)
        except Exception as e:
            raise NotificationFailure(f"Could not queue alert for {event.id}: {e}") from e


class NullAlertNotifier:
    """Logs alerts instead of delivering them (alerts disabled)."""

    async def notify(self, event: SecurityEvent) -> None:
        logger.info(
            f"Alerting disabled, not sending {event.threat_level.value} alert for {event.id}"
        )
