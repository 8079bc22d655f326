"""Abuse guard middleware: blacklist, per-IP limits and sampled anomaly scans."""

import asyncio
from datetime import timezone
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.services.abuse_prevention import AbusePreventionService, abuse_prevention_service
from app.services.blacklist import BlacklistService, blacklist_service
from app.services.rate_limit import RateLimitService, rate_limit_service
from app.utils.clock import utcnow
from app.utils.constants import API_PREFIX, OP_PLAN_CHANGE, OP_VIDEO_PROCESS
from app.utils.logger import logger
from app.utils.response_utils import forbidden_error, rate_limited_error
from app.utils.sentry_utils import capture_exception

USER_ID_HEADER = "x-user-id"


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, respecting X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def operation_for_path(method: str, path: str) -> str | None:
    """Operation type counted against the IP tier for a route, if any."""
    if method != "POST":
        return None
    if path in (f"{API_PREFIX}/quota/check", f"{API_PREFIX}/quota/video/check"):
        return OP_VIDEO_PROCESS
    if path.startswith(f"{API_PREFIX}/subscriptions/"):
        return OP_PLAN_CHANGE
    return None


class AbuseGuardMiddleware(BaseHTTPMiddleware):
    """Rejects banned callers and IPs over their limit before routing.

    For every guarded request:
    - Blocks blacklisted IPs and users with 403
    - Applies the IP tier limit of the route's operation with 429
    - Logs the attempt with its outcome
    - On a sampled fraction of requests, scans the IP and bans it on high severity
    """

    EXCLUDED_PATHS = {
        "/health",
        "/",
        "/docs",
        "/redoc",
        "/openapi.json",
    }

    def __init__(
        self,
        app,
        blacklist: BlacklistService | None = None,
        rate_limits: RateLimitService | None = None,
        abuse_prevention: AbusePreventionService | None = None,
    ):
        super().__init__(app)
        self.blacklist = blacklist or blacklist_service
        self.rate_limits = rate_limits or rate_limit_service
        self.abuse_prevention = abuse_prevention or abuse_prevention_service
        self._scan_tasks: set[asyncio.Task] = set()

    def _scan_finished(self, task: asyncio.Task) -> None:
        self._scan_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Anomaly scan failed: {exc.__class__.__name__}: {exc}", exc_info=exc)
            capture_exception(exc)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.EXCLUDED_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        ip_address = get_client_ip(request)
        user_id = request.headers.get(USER_ID_HEADER)

        blocked = await self.blacklist.check_blacklist("ip", ip_address)
        if not blocked.blocked and user_id:
            blocked = await self.blacklist.check_blacklist("user", user_id)
        if blocked.blocked:
            logger.warning(f"[BLOCKED] {request.method} {path} ip={ip_address} user={user_id}: {blocked.reason}")
            return forbidden_error(blocked.reason or "Access has been blocked", code="BLACKLISTED")

        operation_type = operation_for_path(request.method, path)
        if operation_type is not None:
            limit = await self.rate_limits.check_ip_limit(ip_address, operation_type)
            if not limit.allowed:
                await self.rate_limits.record_ip_operation(
                    ip_address,
                    operation_type,
                    user_id=user_id,
                    request_path=path,
                    user_agent=request.headers.get("user-agent"),
                    success=False,
                    operation_data={"limit_exceeded": True},
                )
                retry_after = int((limit.reset_time - utcnow()).total_seconds()) + 1
                logger.warning(f"[RATE LIMITED] {request.method} {path} ip={ip_address} op={operation_type}")
                return rate_limited_error(
                    limit.reason or "Too many requests",
                    retry_after_seconds=retry_after,
                    reset_time=limit.reset_time.replace(tzinfo=timezone.utc).isoformat(),
                )

        response = await call_next(request)

        if operation_type is not None:
            await self.rate_limits.record_ip_operation(
                ip_address,
                operation_type,
                user_id=user_id,
                request_path=path,
                user_agent=request.headers.get("user-agent"),
                success=response.status_code < 400,
            )

        if self.abuse_prevention.should_sample():
            # Out-of-band; the response is not delayed by the scan
            task = asyncio.create_task(self.abuse_prevention.scan_and_ban(ip_address))
            self._scan_tasks.add(task)
            task.add_done_callback(self._scan_finished)

        return response
