"""Quota schemas: check decisions, usage summaries, alerts and plans"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class QuotaCheckMetadata(BaseModel):
    """Optional facts about the item being checked"""
    video_duration: int | None = Field(default=None, ge=0, description="Minutes")
    file_size: int | None = Field(default=None, ge=0, description="Bytes")


class QuotaUsageSummary(BaseModel):
    quota_type: str
    used_amount: int
    max_amount: int  # 0 means unlimited
    percentage: int
    period_start: datetime
    period_end: datetime


class QuotaCheckResult(BaseModel):
    allowed: bool
    reason: str | None = None
    current_usage: QuotaUsageSummary | None = None
    upgrade_required: bool = False
    suggested_plan: str | None = None


class QuotaPlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_type: str
    name: str
    description: str | None = None
    price_monthly: float
    price_yearly: float
    monthly_video_quota: int
    max_video_duration: int
    max_file_size: int
    monthly_duration_quota: int
    max_shared_items: int
    max_storage_gb: int
    has_priority_processing: bool
    has_advanced_export: bool
    has_api_access: bool
    has_team_management: bool
    has_custom_branding: bool


class QuotaAlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quota_type: str
    alert_type: str
    threshold_percentage: int
    message: str
    created_at: datetime


class QuotaCheckRequest(BaseModel):
    quota_type: str
    amount: int = Field(default=1, ge=1)
    metadata: QuotaCheckMetadata | None = None


class QuotaRecordRequest(BaseModel):
    quota_type: str
    action: str = Field(min_length=1, max_length=100)
    amount: int = Field(default=1, ge=1)
    resource_id: str | None = None
    resource_type: str | None = None
    metadata: dict[str, Any] | None = None


class VideoProcessingCheckRequest(BaseModel):
    """Composite pre-flight check for processing one video"""
    video_url: str = Field(min_length=1, max_length=2000)
    video_duration: int | None = Field(default=None, ge=0)
    file_size: int | None = Field(default=None, ge=0)


class MarkAlertsReadRequest(BaseModel):
    alert_ids: list[int] = Field(default_factory=list, max_length=500)
