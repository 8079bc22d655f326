"""Shared router dependencies: caller identity, request context and services"""

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request, status

from app.middleware import get_client_ip
from app.services.abuse_prevention import AbusePreventionService, abuse_prevention_service
from app.services.blacklist import BlacklistService, blacklist_service
from app.services.cooldown import CooldownService, cooldown_service
from app.services.quota import QuotaService, quota_service
from app.services.rate_limit import RateLimitService, rate_limit_service
from app.services.subscription import (
    PlanChangeService,
    SubscriptionService,
    plan_change_service,
    subscription_service,
)
from app.utils import logger

# Set by the upstream auth gateway after it has authenticated the caller
USER_ID_HEADER_NAME = "X-User-Id"
MAX_USER_ID_LENGTH = 128


@dataclass
class RequestContext:
    """Who is calling and from where"""

    user_id: str
    ip_address: str
    user_agent: Optional[str] = None


async def get_current_user_id(request: Request) -> str:
    user_id = (request.headers.get(USER_ID_HEADER_NAME) or "").strip()
    if not user_id:
        logger.warning(f"Missing user id header in request to {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid user identity",
        )
    return user_id


async def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        user_id=await get_current_user_id(request),
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


# Service providers; tests override these through app.dependency_overrides


def get_quota_service() -> QuotaService:
    return quota_service


def get_subscription_service() -> SubscriptionService:
    return subscription_service


def get_plan_change_service() -> PlanChangeService:
    return plan_change_service


def get_rate_limit_service() -> RateLimitService:
    return rate_limit_service


def get_cooldown_service() -> CooldownService:
    return cooldown_service


def get_blacklist_service() -> BlacklistService:
    return blacklist_service


def get_abuse_prevention_service() -> AbusePreventionService:
    return abuse_prevention_service
