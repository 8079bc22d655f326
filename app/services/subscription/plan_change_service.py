"""Append-only audit trail of plan transitions."""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import AsyncSessionLocal
from app.models.plan_change_log import ChangeReason, PlanChangeLog
from app.utils.clock import Clock, utcnow
from app.utils.exceptions import StoreError

logger = logging.getLogger(__name__)


class PlanChangeService:
    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory or AsyncSessionLocal
        self._clock = clock

    async def record_plan_change(
        self,
        db: AsyncSession,
        user_id: str,
        from_plan: str | None,
        to_plan: str,
        change_type: str,
        reason: str = ChangeReason.USER_REQUEST.value,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> PlanChangeLog:
        """Append a history row inside the caller's transaction."""
        entry = PlanChangeLog(
            user_id=user_id,
            from_plan=from_plan,
            to_plan=to_plan,
            change_type=change_type,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=self._clock(),
        )
        db.add(entry)
        await db.flush()

        logger.info(
            f"Plan change recorded: user={user_id}, {from_plan} -> {to_plan}, "
            f"type={change_type}, reason={reason}"
        )
        return entry

    async def get_last_change(
        self,
        user_id: str,
        change_type: str,
        since: datetime,
    ) -> PlanChangeLog | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(PlanChangeLog)
                .where(
                    PlanChangeLog.user_id == user_id,
                    PlanChangeLog.change_type == change_type,
                    PlanChangeLog.created_at > since,
                )
                .order_by(PlanChangeLog.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_user_plan_history(self, user_id: str, limit: int = 50) -> list[PlanChangeLog]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(PlanChangeLog)
                    .where(PlanChangeLog.user_id == user_id)
                    .order_by(PlanChangeLog.created_at.desc(), PlanChangeLog.id.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load plan history for user {user_id}: {e}", exc_info=True)
            raise StoreError("Failed to load plan history") from e

    async def get_all_plan_changes(self, limit: int = 100, offset: int = 0) -> list[PlanChangeLog]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(PlanChangeLog)
                    .order_by(PlanChangeLog.created_at.desc(), PlanChangeLog.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load plan changes: {e}", exc_info=True)
            raise StoreError("Failed to load plan changes") from e


# Global instance
plan_change_service = PlanChangeService()
