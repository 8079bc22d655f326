"""Quota accounting service."""

from app.services.quota.quota_service import quota_service, QuotaService, suggest_upgrade

__all__ = ["quota_service", "QuotaService", "suggest_upgrade"]
