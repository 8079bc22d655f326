"""Rate limiting, cooldown, blacklist and anomaly detection schemas"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_time: datetime
    reason: str | None = None
    limit: int | None = None  # None when the operation has no configured limit


class BlacklistCheckResult(BaseModel):
    blocked: bool
    reason: str | None = None
    expires_at: datetime | None = None


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnomalyReport(BaseModel):
    suspicious: bool
    patterns: list[str] = Field(default_factory=list)
    severity: Severity = Severity.LOW
    total_operations: int = 0
    failed_operations: int = 0


class CleanupResult(BaseModel):
    cleaned_counters: int
    cleaned_logs: int
    deactivated_blacklist: int


class BlacklistEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    value: str
    reason: str | None = None
    expires_at: datetime | None = None
    is_active: bool
    created_by: str | None = None
    created_at: datetime


class BlacklistAddRequest(BaseModel):
    type: str = Field(pattern="^(ip|user|email)$")
    value: str = Field(min_length=1, max_length=200)
    reason: str = Field(min_length=1, max_length=500)
    expires_at: datetime | None = None
    duration_minutes: int | None = Field(default=None, ge=1, description="Alternative to expires_at")
