"""Celery application for alert delivery and periodic security scans."""

from celery import Celery

from riskwatch.config import get_settings

settings = get_settings()

celery_app = Celery(
    "riskwatch",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    result_expires=86400,
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_time_limit=900,
    # Alerts must not wait behind long scans
    task_routes={
        "riskwatch.tasks.alerts.*": {"queue": "alerts"},
        "riskwatch.tasks.security_scan.*": {"queue": "scans"},
    },
)

from riskwatch.tasks import alerts, security_scan  # noqa: E402,F401

celery_app.conf.beat_schedule = {
    "scan-anomalous-behavior": {
        "task": "riskwatch.tasks.security_scan.scan_anomalous_behavior",
        "schedule": settings.ANOMALY_SCAN_INTERVAL_SECONDS,
    },
    "snapshot-security-metrics": {
        "task": "riskwatch.tasks.security_scan.snapshot_security_metrics",
        "schedule": settings.METRICS_SNAPSHOT_INTERVAL_SECONDS,
    },
}
