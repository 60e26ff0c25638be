"""API routers for Riskwatch."""

from riskwatch.routers import security

__all__ = ["security"]
