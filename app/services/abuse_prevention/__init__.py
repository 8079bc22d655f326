"""Abuse prevention service for anomaly detection and plan change guards."""

from app.services.abuse_prevention.abuse_prevention_service import (
    abuse_prevention_service,
    AbusePreventionService,
    classify_severity,
)

__all__ = ["abuse_prevention_service", "AbusePreventionService", "classify_severity"]
