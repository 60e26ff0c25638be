"""Security alert delivery.

``send_security_alert`` fans an alert out to Slack, a generic JSON webhook
and (for critical alerts) PagerDuty. Each channel builds its own payload;
a channel without configuration is skipped with a warning.
"""

import logging
from typing import Callable, Dict, List, Optional

import httpx

from riskwatch.config import Settings, get_settings
from riskwatch.tasks import celery_app
from riskwatch.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

PAGERDUTY_EVENTS_URL = "https://events.pagerduty.com/v2/enqueue"

SEVERITY_COLORS = {
    "critical": "#dc2626",
    "high": "#ea580c",
    "medium": "#ca8a04",
    "low": "#2563eb",
}


def default_channels(severity: str) -> List[str]:
    """Slack and webhook always; PagerDuty is added for critical alerts."""
    channels = ["slack", "webhook"]
    if severity == "critical":
        channels.append("pagerduty")
    return channels


def _post(url: str, payload: dict) -> None:
    with httpx.Client(timeout=30.0) as client:
        client.post(url, json=payload).raise_for_status()


def _slack(settings: Settings, title: str, message: str, severity: str, metadata: dict) -> bool:
    if not settings.SLACK_WEBHOOK_URL:
        logger.warning("SLACK_WEBHOOK_URL not set, skipping Slack alert")
        return False

    context = [settings.APP_NAME]
    if metadata.get("security_event_id"):
        context.append(f"event `{metadata['security_event_id']}`")
    _post(settings.SLACK_WEBHOOK_URL, {
        "attachments": [{
            "color": SEVERITY_COLORS.get(severity, "#6b7280"),
            "blocks": [
                {"type": "header", "text": {"type": "plain_text", "text": f"{severity.upper()}: {title}"}},
                {"type": "section", "text": {"type": "mrkdwn", "text": message[:3000]}},
                {"type": "context", "elements": [{"type": "mrkdwn", "text": " | ".join(context)}]},
            ],
        }],
    })
    return True


def _webhook(settings: Settings, title: str, message: str, severity: str, metadata: dict) -> bool:
    if not settings.GENERIC_WEBHOOK_URL:
        logger.warning("GENERIC_WEBHOOK_URL not set, skipping webhook alert")
        return False

    _post(settings.GENERIC_WEBHOOK_URL, {
        "title": title,
        "message": message,
        "severity": severity,
        "source": settings.APP_NAME.lower(),
        "timestamp": utcnow().isoformat(),
        "metadata": metadata,
    })
    return True


def _pagerduty(settings: Settings, title: str, message: str, severity: str, metadata: dict) -> bool:
    if severity != "critical":
        logger.info(f"PagerDuty only pages on critical alerts, skipping {severity} alert")
        return False
    if not settings.PAGERDUTY_API_KEY:
        logger.warning("PAGERDUTY_API_KEY not set, skipping PagerDuty alert")
        return False

    _post(PAGERDUTY_EVENTS_URL, {
        "routing_key": settings.PAGERDUTY_API_KEY,
        "event_action": "trigger",
        # One incident per security event
        "dedup_key": metadata.get("security_event_id"),
        "payload": {
            "summary": f"{title}: {message[:100]}",
            "severity": "critical",
            "source": settings.APP_NAME.lower(),
            "custom_details": metadata,
        },
    })
    return True


CHANNELS: Dict[str, Callable[..., bool]] = {
    "slack": _slack,
    "webhook": _webhook,
    "pagerduty": _pagerduty,
}


@celery_app.task
def send_security_alert(
    title: str,
    message: str,
    severity: str = "high",
    channels: Optional[List[str]] = None,
    metadata: Optional[dict] = None,
):
    """Deliver one alert. Per-channel failures are collected, never raised."""
    settings = get_settings()
    channels = channels or default_channels(severity)
    metadata = metadata or {}

    logger.info(f"Sending {severity} alert '{title}' to {channels}")

    errors = []
    for channel in channels:
        sender = CHANNELS.get(channel)
        if sender is None:
            logger.warning(f"Unknown alert channel: {channel}")
            continue
        try:
            if sender(settings, title, message, severity, metadata):
                logger.info(f"Alert '{title}' delivered via {channel}")
        except Exception as e:
            logger.exception(f"Failed to send alert to {channel}: {e}")
            errors.append(f"{channel}: {e}")

    if errors:
        logger.error(f"Alert delivery errors: {errors}")
    return {"channels": channels, "errors": errors}
