"""Quota router: plans, usage, checks, recording and alerts"""

from fastapi import APIRouter, Depends

from app.routers.deps import (
    RequestContext,
    get_cooldown_service,
    get_current_user_id,
    get_quota_service,
    get_rate_limit_service,
    get_request_context,
)
from app.schemas.quota import (
    MarkAlertsReadRequest,
    QuotaAlertResponse,
    QuotaCheckMetadata,
    QuotaCheckRequest,
    QuotaCheckResult,
    QuotaPlanResponse,
    QuotaRecordRequest,
    VideoProcessingCheckRequest,
)
from app.services.cooldown import CooldownService
from app.services.quota import QuotaService
from app.services.rate_limit import RateLimitService
from app.utils.constants import OP_VIDEO_PROCESS, QUOTA_VIDEO_PROCESSING
from app.utils.exceptions import CooldownActiveError, QuotaExceededError, RateLimitExceededError
from app.utils.response_utils import success

router = APIRouter(prefix="/quota", tags=["Quota"])


@router.get("/plans", response_model=list[QuotaPlanResponse])
async def list_plans(quotas: QuotaService = Depends(get_quota_service)):
    """List the available plans, cheapest first."""
    return await quotas.get_all_quota_plans()


@router.get("/usage")
async def get_usage(
    user_id: str = Depends(get_current_user_id),
    quotas: QuotaService = Depends(get_quota_service),
):
    """Current period usage for every reported quota type."""
    usage = await quotas.get_user_all_quota_usage(user_id)
    duration_minutes = await quotas.get_user_monthly_duration_usage(user_id)
    return {
        "usage": [summary.model_dump(mode="json") for summary in usage],
        "duration_minutes": duration_minutes,
    }


@router.post("/check", response_model=QuotaCheckResult)
async def check_quota(
    request: QuotaCheckRequest,
    user_id: str = Depends(get_current_user_id),
    quotas: QuotaService = Depends(get_quota_service),
):
    """Ask whether an action fits the caller's plan. Denials are returned, not raised."""
    return await quotas.check_quota(user_id, request.quota_type, request.amount, request.metadata)


@router.post("/video/check")
async def check_video_processing(
    request: VideoProcessingCheckRequest,
    ctx: RequestContext = Depends(get_request_context),
    quotas: QuotaService = Depends(get_quota_service),
    rate_limits: RateLimitService = Depends(get_rate_limit_service),
    cooldowns: CooldownService = Depends(get_cooldown_service),
):
    """
    Pre-flight check for processing one video: daily limit, per-video
    cooldown, then plan quota. The first failing check is raised.
    """
    limit = await rate_limits.check_user_operation_limit(ctx.user_id, OP_VIDEO_PROCESS)
    if not limit.allowed:
        raise RateLimitExceededError(limit.reason or "Too many video processing requests", limit.reset_time)

    cooldown = await cooldowns.check_video_processing_cooldown(ctx.user_id, request.video_url)
    if not cooldown.allowed:
        raise CooldownActiveError(cooldown.reason or "Video processed recently", cooldown.reset_time)

    decision = await quotas.check_quota(
        ctx.user_id,
        QUOTA_VIDEO_PROCESSING,
        metadata=QuotaCheckMetadata(
            video_duration=request.video_duration,
            file_size=request.file_size,
        ),
    )
    if not decision.allowed:
        details = {"current_usage": decision.current_usage.model_dump(mode="json")} if decision.current_usage else None
        raise QuotaExceededError(decision.reason or "Quota exceeded", decision.suggested_plan, details)

    return {
        "allowed": True,
        "remaining_today": limit.remaining,
        "current_usage": decision.current_usage.model_dump(mode="json") if decision.current_usage else None,
    }


@router.post("/record")
async def record_usage(
    request: QuotaRecordRequest,
    ctx: RequestContext = Depends(get_request_context),
    quotas: QuotaService = Depends(get_quota_service),
    rate_limits: RateLimitService = Depends(get_rate_limit_service),
    cooldowns: CooldownService = Depends(get_cooldown_service),
):
    """Record consumed units once the action has completed."""
    await quotas.record_quota_usage(
        ctx.user_id,
        request.quota_type,
        request.action,
        amount=request.amount,
        resource_id=request.resource_id,
        resource_type=request.resource_type,
        metadata=request.metadata,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
    )

    if request.quota_type == QUOTA_VIDEO_PROCESSING:
        await rate_limits.record_user_operation(ctx.user_id, OP_VIDEO_PROCESS)
        if request.resource_id:
            await cooldowns.record_video_processing(ctx.user_id, request.resource_id)

    return success(message="Usage recorded")


@router.get("/alerts", response_model=list[QuotaAlertResponse])
async def list_alerts(
    user_id: str = Depends(get_current_user_id),
    quotas: QuotaService = Depends(get_quota_service),
):
    return await quotas.get_user_quota_alerts(user_id)


@router.post("/alerts/read")
async def mark_alerts_read(
    request: MarkAlertsReadRequest,
    user_id: str = Depends(get_current_user_id),
    quotas: QuotaService = Depends(get_quota_service),
):
    updated = await quotas.mark_quota_alerts_as_read(user_id, request.alert_ids)
    return success(data={"updated": updated})
