"""Subscription lifecycle schemas"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.quota import QuotaPlanResponse


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    plan_type: str
    status: str
    started_at: datetime
    expires_at: datetime | None = None
    auto_renew: bool
    payment_method: str | None = None


class SubscriptionOverview(BaseModel):
    active: SubscriptionResponse
    pending: SubscriptionResponse | None = None
    plan: QuotaPlanResponse


class RefundResult(BaseModel):
    refund_amount: float
    remaining_days: int
    refunded_plan: str


class SweepResult(BaseModel):
    processed: int = 0
    renewed: int = 0
    transitioned: int = 0
    failed: int = 0


class PlanChangeLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    from_plan: str | None = None
    to_plan: str
    change_type: str
    reason: str | None = None
    created_at: datetime


class UpgradeRequest(BaseModel):
    plan_type: str = Field(min_length=1, max_length=20)
    payment_method: str = Field(default="unknown", max_length=50)


class DowngradeRequest(BaseModel):
    plan_type: str = Field(min_length=1, max_length=20)


class RefundRequest(BaseModel):
    reason: str = Field(default="user_request", max_length=100)
