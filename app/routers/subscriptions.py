"""Subscription router: current plan, plan changes and history"""

from fastapi import APIRouter, Depends, Query

from app.models.plan_change_log import ChangeType
from app.routers.deps import (
    RequestContext,
    get_abuse_prevention_service,
    get_current_user_id,
    get_plan_change_service,
    get_rate_limit_service,
    get_request_context,
    get_subscription_service,
)
from app.schemas.subscription import (
    DowngradeRequest,
    PlanChangeLogResponse,
    RefundRequest,
    RefundResult,
    SubscriptionOverview,
    SubscriptionResponse,
    UpgradeRequest,
)
from app.services.abuse_prevention import AbusePreventionService
from app.services.rate_limit import RateLimitService
from app.services.subscription import PlanChangeService, SubscriptionService
from app.utils.constants import OP_PLAN_CHANGE
from app.utils.exceptions import RateLimitExceededError

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


async def _guard_plan_change(
    abuse_prevention: AbusePreventionService,
    user_id: str,
    change_type: ChangeType,
) -> None:
    limit = await abuse_prevention.check_plan_change_frequency(user_id, change_type.value)
    if not limit.allowed:
        raise RateLimitExceededError(limit.reason or "Too many plan changes", limit.reset_time)


@router.get("/me", response_model=SubscriptionOverview)
async def get_my_subscription(
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    """Active subscription, any scheduled change and the active plan's limits."""
    return await subscriptions.get_subscription_overview(user_id)


@router.post("/upgrade", response_model=SubscriptionResponse)
async def upgrade(
    request: UpgradeRequest,
    ctx: RequestContext = Depends(get_request_context),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    abuse_prevention: AbusePreventionService = Depends(get_abuse_prevention_service),
    rate_limits: RateLimitService = Depends(get_rate_limit_service),
):
    await _guard_plan_change(abuse_prevention, ctx.user_id, ChangeType.UPGRADE)
    subscription = await subscriptions.upgrade_user_plan(
        ctx.user_id,
        request.plan_type,
        payment_method=request.payment_method,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )
    await rate_limits.record_user_operation(ctx.user_id, OP_PLAN_CHANGE)
    return subscription


@router.post("/downgrade", response_model=SubscriptionResponse)
async def downgrade(
    request: DowngradeRequest,
    ctx: RequestContext = Depends(get_request_context),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    abuse_prevention: AbusePreventionService = Depends(get_abuse_prevention_service),
    rate_limits: RateLimitService = Depends(get_rate_limit_service),
):
    """Schedule a cheaper plan for after the current period. Returns the pending subscription."""
    await _guard_plan_change(abuse_prevention, ctx.user_id, ChangeType.DOWNGRADE)
    pending = await subscriptions.downgrade_user_plan(
        ctx.user_id,
        request.plan_type,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )
    await rate_limits.record_user_operation(ctx.user_id, OP_PLAN_CHANGE)
    return pending


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel(
    ctx: RequestContext = Depends(get_request_context),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    abuse_prevention: AbusePreventionService = Depends(get_abuse_prevention_service),
    rate_limits: RateLimitService = Depends(get_rate_limit_service),
):
    """Stop renewal; the free plan starts the day after the current period ends."""
    await _guard_plan_change(abuse_prevention, ctx.user_id, ChangeType.CANCEL)
    pending = await subscriptions.cancel_subscription(
        ctx.user_id,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )
    await rate_limits.record_user_operation(ctx.user_id, OP_PLAN_CHANGE)
    return pending


@router.post("/refund", response_model=RefundResult)
async def refund(
    request: RefundRequest,
    ctx: RequestContext = Depends(get_request_context),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    abuse_prevention: AbusePreventionService = Depends(get_abuse_prevention_service),
    rate_limits: RateLimitService = Depends(get_rate_limit_service),
):
    """End the paid plan now and report the prorated refund amount."""
    await _guard_plan_change(abuse_prevention, ctx.user_id, ChangeType.REFUND)
    result = await subscriptions.refund_and_cancel(
        ctx.user_id,
        reason=request.reason,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )
    await rate_limits.record_user_operation(ctx.user_id, OP_PLAN_CHANGE)
    return result


@router.get("/history", response_model=list[PlanChangeLogResponse])
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    plan_changes: PlanChangeService = Depends(get_plan_change_service),
):
    return await plan_changes.get_user_plan_history(user_id, limit=limit)
