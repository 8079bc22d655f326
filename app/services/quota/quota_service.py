"""Quota service for per-period usage accounting, plan limit checks and usage alerts."""

import logging
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import AsyncSessionLocal, atomic_increment, get_db_session
from app.models.quota_alert import AlertType, QuotaAlert
from app.models.quota_plan import QuotaPlan
from app.models.quota_usage import DurationUsage, QuotaUsage, QuotaUsageLog
from app.models.subscription import Subscription
from app.schemas.quota import QuotaCheckMetadata, QuotaCheckResult, QuotaUsageSummary
from app.services.failure_policy import FailureMode, quota_failure_mode
from app.services.subscription.subscription_service import SubscriptionService, subscription_service
from app.utils.clock import Clock, month_period, utcnow
from app.utils.constants import (
    ALERT_LIMIT_THRESHOLD,
    ALERT_SUPPRESSION_HOURS,
    ALERT_WARNING_THRESHOLD,
    DEFAULT_SUGGESTED_PLAN,
    QUOTA_SHARES,
    QUOTA_TYPE_NAMES,
    QUOTA_TYPES,
    QUOTA_VIDEO_PROCESSING,
    SUMMARY_QUOTA_TYPES,
    UPGRADE_PATH,
)
from app.utils.exceptions import EngineError, StoreError, ValidationError
from app.utils.sentry_utils import capture_exception

logger = logging.getLogger(__name__)


def suggest_upgrade(plan_type: str) -> str:
    """Next plan up the ladder; the top plan suggests itself."""
    return UPGRADE_PATH.get(plan_type, DEFAULT_SUGGESTED_PLAN)


def usage_limit(plan: QuotaPlan, quota_type: str) -> int:
    """Period limit of a quota type under a plan; 0 means unlimited."""
    if quota_type == QUOTA_VIDEO_PROCESSING:
        return plan.monthly_video_quota
    if quota_type == QUOTA_SHARES:
        return plan.max_shared_items
    return 0


def usage_percentage(used: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return round(used / limit * 100)


def parse_metadata(metadata: QuotaCheckMetadata | dict | None) -> QuotaCheckMetadata | None:
    """Validate caller supplied video metadata; durations and sizes are non-negative integers."""
    if metadata is None or isinstance(metadata, QuotaCheckMetadata):
        return metadata
    try:
        return QuotaCheckMetadata.model_validate(metadata)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid quota metadata",
            {"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e


class QuotaService:
    """Accounts usage per calendar month against the user's active plan.

    Usage rows are only incremented through the atomic counter helper. Checks
    fail closed by default: if the store cannot be read, the action is denied.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        clock: Clock = utcnow,
        failure_mode: FailureMode | None = None,
        subscriptions: SubscriptionService | None = None,
    ):
        self._session_factory = session_factory or AsyncSessionLocal
        self._clock = clock
        self._failure_mode = failure_mode
        self.subscriptions = subscriptions or (
            subscription_service
            if session_factory is None
            else SubscriptionService(session_factory=session_factory, clock=clock)
        )

    @property
    def failure_mode(self) -> FailureMode:
        return self._failure_mode or quota_failure_mode()

    # ------------------------------------------------------------------
    # Plans and subscriptions
    # ------------------------------------------------------------------

    async def get_user_subscription(self, user_id: str) -> Subscription:
        return await self.subscriptions.get_user_subscription(user_id)

    async def get_quota_plan(self, plan_type: str) -> QuotaPlan | None:
        try:
            async with self._session_factory() as db:
                return await self.subscriptions.get_quota_plan(db, plan_type)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load quota plan {plan_type}: {e}", exc_info=True)
            raise StoreError("Failed to load quota plan") from e

    async def get_all_quota_plans(self) -> list[QuotaPlan]:
        return await self.subscriptions.get_all_quota_plans()

    async def _get_user_plan(self, db: AsyncSession, user_id: str) -> QuotaPlan:
        subscription = await self.subscriptions.get_or_create_active_subscription(db, user_id)
        return await self.subscriptions.require_plan(db, subscription.plan_type)

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def _get_used_amount(
        self,
        db: AsyncSession,
        user_id: str,
        quota_type: str,
        period_start: datetime,
    ) -> int:
        result = await db.execute(
            select(QuotaUsage.used_amount).where(
                QuotaUsage.user_id == user_id,
                QuotaUsage.quota_type == quota_type,
                QuotaUsage.period_start == period_start,
            )
        )
        return result.scalar_one_or_none() or 0

    async def _get_duration_used(self, db: AsyncSession, user_id: str, now: datetime) -> int:
        period_start, period_end = month_period(now)
        result = await db.execute(
            select(func.coalesce(func.sum(DurationUsage.duration_minutes), 0)).where(
                DurationUsage.user_id == user_id,
                DurationUsage.processed_at >= period_start,
                DurationUsage.processed_at <= period_end,
            )
        )
        return int(result.scalar_one())

    async def _build_summary(
        self,
        db: AsyncSession,
        user_id: str,
        quota_type: str,
        plan: QuotaPlan,
        now: datetime,
    ) -> QuotaUsageSummary:
        period_start, period_end = month_period(now)
        used = await self._get_used_amount(db, user_id, quota_type, period_start)
        limit = usage_limit(plan, quota_type)
        return QuotaUsageSummary(
            quota_type=quota_type,
            used_amount=used,
            max_amount=limit,
            percentage=usage_percentage(used, limit),
            period_start=period_start,
            period_end=period_end,
        )

    async def get_user_quota_usage(self, user_id: str, quota_type: str) -> QuotaUsageSummary:
        """Usage of one quota type in the current period (0 if nothing recorded)."""
        try:
            async with get_db_session(self._session_factory) as db:
                plan = await self._get_user_plan(db, user_id)
                return await self._build_summary(db, user_id, quota_type, plan, self._clock())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load {quota_type} usage for user {user_id}: {e}", exc_info=True)
            raise StoreError("Failed to load quota usage") from e

    async def get_user_all_quota_usage(self, user_id: str) -> list[QuotaUsageSummary]:
        try:
            async with get_db_session(self._session_factory) as db:
                plan = await self._get_user_plan(db, user_id)
                now = self._clock()
                return [
                    await self._build_summary(db, user_id, quota_type, plan, now)
                    for quota_type in SUMMARY_QUOTA_TYPES
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load quota usage for user {user_id}: {e}", exc_info=True)
            raise StoreError("Failed to load quota usage") from e

    async def get_user_monthly_duration_usage(self, user_id: str) -> int:
        """Minutes of video processed in the current period."""
        try:
            async with self._session_factory() as db:
                return await self._get_duration_used(db, user_id, self._clock())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load duration usage for user {user_id}: {e}", exc_info=True)
            raise StoreError("Failed to load duration usage") from e

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_quota(
        self,
        user_id: str,
        quota_type: str,
        amount: int = 1,
        metadata: QuotaCheckMetadata | dict | None = None,
    ) -> QuotaCheckResult:
        """Decide whether ``amount`` more units of ``quota_type`` fit the user's plan.

        For video processing the checks run in order and stop at the first
        denial: monthly count, per-video duration, monthly duration, file size.
        A limit of 0 skips its check and missing metadata skips the
        metadata-based checks. Quota types without a limit are always allowed.
        """
        metadata = parse_metadata(metadata)

        try:
            async with get_db_session(self._session_factory) as db:
                subscription = await self.subscriptions.get_or_create_active_subscription(db, user_id)
                plan = await self.subscriptions.require_plan(db, subscription.plan_type)
                now = self._clock()
                summary = await self._build_summary(db, user_id, quota_type, plan, now)
                suggested = suggest_upgrade(subscription.plan_type)

                def deny(reason: str) -> QuotaCheckResult:
                    logger.info(f"Quota denied for user {user_id} ({quota_type}): {reason}")
                    return QuotaCheckResult(
                        allowed=False,
                        reason=reason,
                        current_usage=summary,
                        upgrade_required=True,
                        suggested_plan=suggested,
                    )

                if quota_type == QUOTA_VIDEO_PROCESSING:
                    if plan.monthly_video_quota > 0 and summary.used_amount + amount > plan.monthly_video_quota:
                        return deny(
                            f"Monthly video processing limit reached "
                            f"({summary.used_amount}/{plan.monthly_video_quota})"
                        )

                    duration = metadata.video_duration if metadata else None
                    if duration is not None:
                        if plan.max_video_duration > 0 and duration > plan.max_video_duration:
                            return deny(
                                f"Video is {duration} minutes long; your plan allows at most "
                                f"{plan.max_video_duration} minutes per video"
                            )
                        if plan.monthly_duration_quota > 0:
                            duration_used = await self._get_duration_used(db, user_id, now)
                            if duration_used + duration > plan.monthly_duration_quota:
                                return deny(
                                    f"Monthly processing time limit reached "
                                    f"({duration_used}+{duration}/{plan.monthly_duration_quota} minutes)"
                                )

                    file_size = metadata.file_size if metadata else None
                    if file_size is not None and plan.max_file_size > 0 and file_size > plan.max_file_size:
                        return deny(
                            f"File size {file_size} bytes exceeds the plan limit of {plan.max_file_size} bytes"
                        )

                elif quota_type == QUOTA_SHARES:
                    if plan.max_shared_items > 0 and summary.used_amount + amount > plan.max_shared_items:
                        return deny(
                            f"Shared item limit reached ({summary.used_amount}/{plan.max_shared_items})"
                        )

                return QuotaCheckResult(allowed=True, current_usage=summary)
        except (SQLAlchemyError, EngineError) as e:
            logger.error(f"Quota check failed for user {user_id} ({quota_type}): {e}", exc_info=True)
            capture_exception(e)
            if self.failure_mode == FailureMode.OPEN:
                return QuotaCheckResult(allowed=True)
            return QuotaCheckResult(allowed=False, reason="Quota check unavailable, please retry later")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record_quota_usage(
        self,
        user_id: str,
        quota_type: str,
        action: str,
        amount: int = 1,
        resource_id: str | None = None,
        resource_type: str | None = None,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Record consumed units.

        The audit log row, the period counter increment and the duration
        ledger row commit together. Alert thresholds are evaluated afterwards
        and never fail the call.
        """
        if quota_type not in QUOTA_TYPES:
            raise ValidationError(f"Unknown quota type '{quota_type}'", {"allowed_types": QUOTA_TYPES})
        if amount < 1:
            raise ValidationError("Amount must be positive", {"amount": amount})

        now = self._clock()
        period_start, period_end = month_period(now)
        parsed = parse_metadata(metadata)
        video_duration = parsed.video_duration if parsed else None

        try:
            async with get_db_session(self._session_factory) as db:
                db.add(
                    QuotaUsageLog(
                        user_id=user_id,
                        quota_type=quota_type,
                        action=action,
                        amount=amount,
                        resource_id=resource_id,
                        resource_type=resource_type,
                        usage_metadata=metadata,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        created_at=now,
                    )
                )

                await atomic_increment(
                    db,
                    QuotaUsage,
                    conflict_columns=["user_id", "quota_type", "period_start"],
                    values={
                        "user_id": user_id,
                        "quota_type": quota_type,
                        "used_amount": amount,
                        "period_start": period_start,
                        "period_end": period_end,
                        "created_at": now,
                        "updated_at": now,
                    },
                    increments={"used_amount": amount},
                    overrides={"updated_at": now},
                )

                if quota_type == QUOTA_VIDEO_PROCESSING and video_duration:
                    db.add(
                        DurationUsage(
                            user_id=user_id,
                            video_id=resource_id,
                            duration_minutes=video_duration,
                            processed_at=now,
                            period_start=period_start,
                            period_end=period_end,
                        )
                    )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record {quota_type} usage for user {user_id}: {e}", exc_info=True)
            capture_exception(e)
            raise StoreError("Failed to record quota usage") from e

        logger.info(f"Quota usage recorded: user={user_id}, type={quota_type}, action={action}, amount={amount}")

        await self.check_and_create_quota_alerts(user_id, quota_type)

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def check_and_create_quota_alerts(self, user_id: str, quota_type: str) -> None:
        """Raise a warning at 80% and a limit alert at 100% of the period limit."""
        try:
            async with get_db_session(self._session_factory) as db:
                plan = await self._get_user_plan(db, user_id)
                summary = await self._build_summary(db, user_id, quota_type, plan, self._clock())
                if summary.max_amount <= 0:
                    return

                name = QUOTA_TYPE_NAMES.get(quota_type, quota_type)
                if summary.percentage >= ALERT_LIMIT_THRESHOLD:
                    await self.create_quota_alert(
                        db,
                        user_id,
                        quota_type,
                        AlertType.LIMIT_REACHED.value,
                        ALERT_LIMIT_THRESHOLD,
                        f"You have reached your monthly {name} limit "
                        f"({summary.used_amount}/{summary.max_amount})",
                    )
                elif summary.percentage >= ALERT_WARNING_THRESHOLD:
                    await self.create_quota_alert(
                        db,
                        user_id,
                        quota_type,
                        AlertType.WARNING.value,
                        ALERT_WARNING_THRESHOLD,
                        f"You have used {summary.percentage}% of your monthly {name} limit "
                        f"({summary.used_amount}/{summary.max_amount})",
                    )
        except (SQLAlchemyError, EngineError) as e:
            logger.error(f"Quota alert evaluation failed for user {user_id} ({quota_type}): {e}", exc_info=True)
            capture_exception(e)

    async def create_quota_alert(
        self,
        db: AsyncSession,
        user_id: str,
        quota_type: str,
        alert_type: str,
        threshold_percentage: int,
        message: str,
    ) -> bool:
        """Insert an alert unless an identical unread one exists from the last 24 hours.

        Returns True if a new alert was created.
        """
        now = self._clock()
        result = await db.execute(
            select(QuotaAlert.id)
            .where(
                QuotaAlert.user_id == user_id,
                QuotaAlert.quota_type == quota_type,
                QuotaAlert.alert_type == alert_type,
                QuotaAlert.threshold_percentage == threshold_percentage,
                QuotaAlert.is_sent.is_(False),
                QuotaAlert.created_at > now - timedelta(hours=ALERT_SUPPRESSION_HOURS),
            )
            .limit(1)
        )
        if result.scalar_one_or_none() is not None:
            return False

        db.add(
            QuotaAlert(
                user_id=user_id,
                quota_type=quota_type,
                alert_type=alert_type,
                threshold_percentage=threshold_percentage,
                message=message,
                is_sent=False,
                created_at=now,
            )
        )
        await db.flush()
        logger.info(f"Quota alert created: user={user_id}, type={quota_type}, alert={alert_type}")
        return True

    async def get_user_quota_alerts(self, user_id: str) -> list[QuotaAlert]:
        """Unread alerts, newest first."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(QuotaAlert)
                    .where(QuotaAlert.user_id == user_id, QuotaAlert.is_sent.is_(False))
                    .order_by(QuotaAlert.created_at.desc(), QuotaAlert.id.desc())
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load quota alerts for user {user_id}: {e}", exc_info=True)
            raise StoreError("Failed to load quota alerts") from e

    async def mark_quota_alerts_as_read(self, user_id: str, alert_ids: list[int]) -> int:
        """Mark the user's alerts as read; returns how many were updated."""
        if not alert_ids:
            return 0

        try:
            async with get_db_session(self._session_factory) as db:
                result = await db.execute(
                    update(QuotaAlert)
                    .where(QuotaAlert.user_id == user_id, QuotaAlert.id.in_(alert_ids))
                    .values(is_sent=True, sent_at=self._clock())
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to mark quota alerts read for user {user_id}: {e}", exc_info=True)
            raise StoreError("Failed to update quota alerts") from e

        return result.rowcount


# Global instance
quota_service = QuotaService()
