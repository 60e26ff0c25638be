"""Utility modules for Riskwatch."""

from riskwatch.utils.timeutils import as_utc, hour_distance, utcnow

__all__ = [
    "as_utc",
    "hour_distance",
    "utcnow",
]
