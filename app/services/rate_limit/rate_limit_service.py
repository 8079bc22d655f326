"""Dual-tier rate limiting: per-user fixed windows and per-IP lookback windows."""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.db import AsyncSessionLocal, atomic_increment, get_db_session
from app.models.operation_limit import IPOperationLog, OperationLimitCounter
from app.schemas.limits import RateLimitResult
from app.services.failure_policy import FailureMode, defense_failure_mode
from app.utils.clock import Clock, utcnow
from app.utils.constants import (
    IP_OPERATION_LIMITS,
    OPERATION_TYPE_NAMES,
    USER_OPERATION_LIMITS,
)
from app.utils.sentry_utils import capture_exception

logger = logging.getLogger(__name__)

UNLIMITED_REMAINING = 999


class RateLimitService:
    """Counts attempts (successful or not) per user and per IP.

    User tier: one counter row per (user, operation) with a fixed window that
    is reset lazily by the next record after it elapses. IP tier: rows of the
    append-only IP operation log counted over the trailing window.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        clock: Clock = utcnow,
        failure_mode: FailureMode | None = None,
        user_limits: dict[str, tuple[int, int]] | None = None,
        ip_limits: dict[str, tuple[int, int]] | None = None,
    ):
        self._session_factory = session_factory or AsyncSessionLocal
        self._clock = clock
        self._failure_mode = failure_mode
        self.user_limits = USER_OPERATION_LIMITS if user_limits is None else user_limits
        self.ip_limits = IP_OPERATION_LIMITS if ip_limits is None else ip_limits

    @property
    def failure_mode(self) -> FailureMode:
        return self._failure_mode or defense_failure_mode()

    def _unlimited(self, now: datetime) -> RateLimitResult:
        return RateLimitResult(allowed=True, remaining=UNLIMITED_REMAINING, reset_time=now)

    def _on_error(self, now: datetime, error: Exception, context: str) -> RateLimitResult:
        logger.error(f"Rate limit check failed ({context}): {error}", exc_info=True)
        capture_exception(error)
        if self.failure_mode == FailureMode.CLOSED:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=now,
                reason="Rate limit check unavailable",
            )
        return RateLimitResult(allowed=True, remaining=0, reset_time=now)

    # ------------------------------------------------------------------
    # User tier
    # ------------------------------------------------------------------

    async def check_user_operation_limit(self, user_id: str, operation_type: str) -> RateLimitResult:
        """Check the user's fixed-window counter without writing anything.

        An elapsed window counts as zero; the reset itself is written by the
        next ``record_user_operation``.
        """
        now = self._clock()
        limit = self.user_limits.get(operation_type)
        if limit is None:
            return self._unlimited(now)

        max_operations, window_hours = limit
        window = timedelta(hours=window_hours)

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(OperationLimitCounter.count, OperationLimitCounter.window_start).where(
                        OperationLimitCounter.user_id == user_id,
                        OperationLimitCounter.operation_type == operation_type,
                    )
                )
                row = result.one_or_none()
        except SQLAlchemyError as e:
            return self._on_error(now, e, f"user={user_id}, op={operation_type}")

        if row is None or row.window_start <= now - window:
            count, window_start = 0, now
        else:
            count, window_start = row.count, row.window_start

        reset_time = window_start + window

        if count >= max_operations:
            name = OPERATION_TYPE_NAMES.get(operation_type, operation_type)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                limit=max_operations,
                reason=f"Too many {name}: at most {max_operations} allowed per {window_hours} hours",
            )

        return RateLimitResult(
            allowed=True,
            remaining=max_operations - count,
            reset_time=reset_time,
            limit=max_operations,
        )

    async def record_user_operation(self, user_id: str, operation_type: str) -> None:
        """Increment the user's counter, restarting the window if it has elapsed.

        Errors are logged and swallowed; recording never blocks the caller.
        """
        now = self._clock()
        limit = self.user_limits.get(operation_type)

        overrides: dict[str, Any] = {"updated_at": now}
        if limit is not None:
            cutoff = now - timedelta(hours=limit[1])
            expired = OperationLimitCounter.window_start <= cutoff
            overrides["count"] = case((expired, 1), else_=OperationLimitCounter.count + 1)
            overrides["window_start"] = case((expired, now), else_=OperationLimitCounter.window_start)

        try:
            async with get_db_session(self._session_factory) as db:
                await atomic_increment(
                    db,
                    OperationLimitCounter,
                    conflict_columns=["user_id", "operation_type"],
                    values={
                        "user_id": user_id,
                        "operation_type": operation_type,
                        "count": 1,
                        "window_start": now,
                        "updated_at": now,
                    },
                    increments={"count": 1},
                    overrides=overrides,
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record operation {operation_type} for user {user_id}: {e}", exc_info=True)
            capture_exception(e)
            return

        logger.debug(f"User operation recorded: user={user_id}, op={operation_type}")

    # ------------------------------------------------------------------
    # IP tier
    # ------------------------------------------------------------------

    async def check_ip_limit(self, ip_address: str, operation_type: str) -> RateLimitResult:
        """Count the IP's logged attempts of this operation in the trailing window."""
        now = self._clock()
        limit = self.ip_limits.get(operation_type)
        if limit is None:
            return self._unlimited(now)

        max_ops, window_minutes = limit
        window = timedelta(minutes=window_minutes)
        window_start = now - window

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(
                        func.count(IPOperationLog.id),
                        func.min(IPOperationLog.created_at),
                    ).where(
                        IPOperationLog.ip_address == ip_address,
                        IPOperationLog.operation_type == operation_type,
                        IPOperationLog.created_at > window_start,
                    )
                )
                count, oldest = result.one()
        except SQLAlchemyError as e:
            return self._on_error(now, e, f"ip={ip_address}, op={operation_type}")

        # The window frees a slot when its oldest counted attempt ages out
        reset_time = (oldest + window) if oldest is not None else now + window

        if count >= max_ops:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                limit=max_ops,
                reason=f"Too many requests from this IP: at most {max_ops} per {window_minutes} minutes",
            )

        return RateLimitResult(
            allowed=True,
            remaining=max_ops - count,
            reset_time=reset_time,
            limit=max_ops,
        )

    async def record_ip_operation(
        self,
        ip_address: str,
        operation_type: str,
        user_id: str | None = None,
        request_path: str | None = None,
        user_agent: str | None = None,
        success: bool = True,
        operation_data: dict | None = None,
    ) -> None:
        """Append an attempt to the IP operation log, whatever its outcome."""
        try:
            async with get_db_session(self._session_factory) as db:
                db.add(
                    IPOperationLog(
                        ip_address=ip_address,
                        operation_type=operation_type,
                        user_id=user_id,
                        request_path=request_path[:200] if request_path else None,
                        user_agent=user_agent,
                        success=success,
                        operation_data=operation_data,
                        created_at=self._clock(),
                    )
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record IP operation {operation_type} for {ip_address}: {e}", exc_info=True)
            capture_exception(e)
            return

        logger.debug(f"IP operation recorded: ip={ip_address}, op={operation_type}, success={success}")

    async def record_operation(
        self,
        operation_type: str,
        ip_address: str | None = None,
        user_id: str | None = None,
        success: bool = True,
        request_path: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Record one attempt on both tiers."""
        if ip_address:
            await self.record_ip_operation(
                ip_address,
                operation_type,
                user_id=user_id,
                request_path=request_path,
                user_agent=user_agent,
                success=success,
            )
        if user_id:
            await self.record_user_operation(user_id, operation_type)


# Global instance
rate_limit_service = RateLimitService()
