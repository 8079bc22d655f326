"""Admin router: blacklist management, anomaly scans and maintenance jobs"""

from datetime import timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.routers.deps import (
    get_abuse_prevention_service,
    get_blacklist_service,
    get_plan_change_service,
    get_subscription_service,
)
from app.schemas.limits import AnomalyReport, BlacklistAddRequest, BlacklistEntryResponse, CleanupResult
from app.schemas.subscription import PlanChangeLogResponse, SweepResult
from app.services.abuse_prevention import AbusePreventionService
from app.services.api_key import get_api_key
from app.services.blacklist import BlacklistService
from app.services.subscription import PlanChangeService, SubscriptionService
from app.utils.clock import utcnow
from app.utils.exceptions import NotFoundError
from app.utils.response_utils import success

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(get_api_key)])


@router.get("/blacklist", response_model=list[BlacklistEntryResponse])
async def list_blacklist(
    type: Optional[str] = Query(None, pattern="^(ip|user|email)$"),
    active_only: bool = True,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    blacklist: BlacklistService = Depends(get_blacklist_service),
):
    return await blacklist.list_blacklist(type, active_only=active_only, limit=limit, offset=offset)


@router.post("/blacklist")
async def add_to_blacklist(
    request: BlacklistAddRequest,
    blacklist: BlacklistService = Depends(get_blacklist_service),
):
    """Ban an ip, user or email. ``duration_minutes`` is an alternative to ``expires_at``."""
    expires_at = request.expires_at
    if expires_at is None and request.duration_minutes:
        expires_at = utcnow() + timedelta(minutes=request.duration_minutes)
    elif expires_at is not None and expires_at.tzinfo is not None:
        # Stored timestamps are naive UTC
        expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)

    await blacklist.add_to_blacklist(
        request.type,
        request.value,
        request.reason,
        expires_at=expires_at,
        created_by="admin",
    )
    return success(
        data={"type": request.type, "value": request.value, "expires_at": expires_at},
        message="Added to blacklist",
    )


@router.delete("/blacklist")
async def remove_from_blacklist(
    type: str = Query(..., pattern="^(ip|user|email)$"),
    value: str = Query(..., min_length=1),
    blacklist: BlacklistService = Depends(get_blacklist_service),
):
    removed = await blacklist.remove_from_blacklist(type, value)
    if not removed:
        raise NotFoundError(f"No active blacklist entry for {type}={value}")
    return success(message="Removed from blacklist")


@router.get("/anomaly/{ip_address}", response_model=AnomalyReport)
async def scan_ip(
    ip_address: str,
    window_minutes: int = Query(60, ge=1, le=1440),
    abuse_prevention: AbusePreventionService = Depends(get_abuse_prevention_service),
):
    return await abuse_prevention.detect_anomalous_pattern(ip_address, window_minutes)


@router.get("/plan-changes", response_model=list[PlanChangeLogResponse])
async def list_plan_changes(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    plan_changes: PlanChangeService = Depends(get_plan_change_service),
):
    return await plan_changes.get_all_plan_changes(limit=limit, offset=offset)


@router.post("/subscriptions/sweep", response_model=SweepResult)
async def sweep_subscriptions(
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    """Run the expiry sweep now instead of waiting for the scheduler."""
    return await subscriptions.process_expired_subscriptions()


@router.post("/cleanup", response_model=CleanupResult)
async def cleanup(
    abuse_prevention: AbusePreventionService = Depends(get_abuse_prevention_service),
):
    return await abuse_prevention.cleanup_expired_data()
