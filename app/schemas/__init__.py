"""Pydantic schemas for request/response validation"""

from app.schemas.quota import (
    QuotaCheckMetadata,
    QuotaUsageSummary,
    QuotaCheckResult,
    QuotaPlanResponse,
    QuotaAlertResponse,
    QuotaCheckRequest,
    QuotaRecordRequest,
    VideoProcessingCheckRequest,
    MarkAlertsReadRequest,
)
from app.schemas.limits import (
    RateLimitResult,
    BlacklistCheckResult,
    Severity,
    AnomalyReport,
    CleanupResult,
    BlacklistEntryResponse,
    BlacklistAddRequest,
)
from app.schemas.subscription import (
    SubscriptionResponse,
    SubscriptionOverview,
    RefundResult,
    SweepResult,
    PlanChangeLogResponse,
    UpgradeRequest,
    DowngradeRequest,
    RefundRequest,
)

__all__ = [
    # Quota
    "QuotaCheckMetadata",
    "QuotaUsageSummary",
    "QuotaCheckResult",
    "QuotaPlanResponse",
    "QuotaAlertResponse",
    "QuotaCheckRequest",
    "QuotaRecordRequest",
    "VideoProcessingCheckRequest",
    "MarkAlertsReadRequest",
    # Limits
    "RateLimitResult",
    "BlacklistCheckResult",
    "Severity",
    "AnomalyReport",
    "CleanupResult",
    "BlacklistEntryResponse",
    "BlacklistAddRequest",
    # Subscription
    "SubscriptionResponse",
    "SubscriptionOverview",
    "RefundResult",
    "SweepResult",
    "PlanChangeLogResponse",
    "UpgradeRequest",
    "DowngradeRequest",
    "RefundRequest",
]
