"""Subscription lifecycle service: upgrades, deferred downgrades, refunds and the expiry sweep."""

import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import AsyncSessionLocal, get_db_session, insert_or_ignore
from app.models.plan_change_log import ChangeReason, ChangeType
from app.models.quota_plan import QuotaPlan
from app.models.subscription import ACTIVE_PREDICATE, Subscription, SubscriptionStatus
from app.schemas.subscription import RefundResult, SubscriptionOverview, SubscriptionResponse, SweepResult
from app.schemas.quota import QuotaPlanResponse
from app.services.subscription.plan_change_service import PlanChangeService, plan_change_service
from app.utils.clock import Clock, add_months, utcnow
from app.utils.constants import PLAN_FREE, PRORATION_DAYS_PER_MONTH, RENEWAL_EXTENSION_DAYS
from app.utils.exceptions import (
    EngineError,
    InvalidTransitionError,
    PlanConfigurationError,
    StoreError,
    ValidationError,
)
from app.utils.sentry_utils import capture_exception

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Owns the subscriptions table.

    A user has exactly one active row and at most one pending row. Upgrades
    take effect immediately; downgrades and cancellations are scheduled as a
    pending row that the expiry sweep promotes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        clock: Clock = utcnow,
        plan_changes: PlanChangeService | None = None,
    ):
        self._session_factory = session_factory or AsyncSessionLocal
        self._clock = clock
        self.plan_changes = plan_changes or (
            plan_change_service
            if session_factory is None
            else PlanChangeService(session_factory=session_factory, clock=clock)
        )

    # ------------------------------------------------------------------
    # Session-level helpers (shared with the quota service)
    # ------------------------------------------------------------------

    async def get_quota_plan(self, db: AsyncSession, plan_type: str) -> QuotaPlan | None:
        result = await db.execute(
            select(QuotaPlan).where(QuotaPlan.plan_type == plan_type, QuotaPlan.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def require_plan(self, db: AsyncSession, plan_type: str) -> QuotaPlan:
        """Plan referenced by a subscription; its absence is a configuration fault."""
        plan = await self.get_quota_plan(db, plan_type)
        if plan is None:
            raise PlanConfigurationError(
                f"Quota plan '{plan_type}' is not configured",
                details={"plan_type": plan_type},
            )
        return plan

    async def get_active_subscription(self, db: AsyncSession, user_id: str) -> Subscription | None:
        result = await db.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
        return result.scalar_one_or_none()

    async def get_pending_subscription(self, db: AsyncSession, user_id: str) -> Subscription | None:
        result = await db.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.PENDING.value,
            )
            .order_by(Subscription.created_at, Subscription.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_or_create_active_subscription(self, db: AsyncSession, user_id: str) -> Subscription:
        """Active subscription of the user, provisioning a free one on first use.

        Concurrent first requests race on the partial unique index; the loser
        inserts nothing and reads the winner's row.
        """
        subscription = await self.get_active_subscription(db, user_id)
        if subscription is not None:
            return subscription

        now = self._clock()
        await insert_or_ignore(
            db,
            Subscription,
            conflict_columns=["user_id"],
            index_where=ACTIVE_PREDICATE,
            values={
                "user_id": user_id,
                "plan_type": PLAN_FREE,
                "status": SubscriptionStatus.ACTIVE.value,
                "started_at": now,
                "expires_at": None,
                "auto_renew": False,
                "payment_method": "free",
                "created_at": now,
                "updated_at": now,
            },
        )
        logger.info(f"Provisioned free subscription for user {user_id}")

        subscription = await self.get_active_subscription(db, user_id)
        if subscription is None:
            raise StoreError(f"Could not provision a subscription for user {user_id}")
        return subscription

    async def _delete_pending(self, db: AsyncSession, user_id: str, keep_id: int | None = None) -> None:
        stmt = delete(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.status == SubscriptionStatus.PENDING.value,
        )
        if keep_id is not None:
            stmt = stmt.where(Subscription.id != keep_id)
        await db.execute(stmt)

    async def _load_current(self, db: AsyncSession, user_id: str) -> tuple[Subscription, QuotaPlan]:
        current = await self.get_or_create_active_subscription(db, user_id)
        current_plan = await self.require_plan(db, current.plan_type)
        return current, current_plan

    async def _load_target_plan(self, db: AsyncSession, plan_type: str) -> QuotaPlan:
        plan = await self.get_quota_plan(db, plan_type)
        if plan is None:
            raise ValidationError(f"Unknown plan '{plan_type}'", details={"plan_type": plan_type})
        return plan

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get_user_subscription(self, user_id: str) -> Subscription:
        try:
            async with get_db_session(self._session_factory) as db:
                return await self.get_or_create_active_subscription(db, user_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load subscription for user {user_id}: {e}", exc_info=True)
            raise StoreError("Failed to load subscription") from e

    async def get_all_quota_plans(self) -> list[QuotaPlan]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(QuotaPlan)
                    .where(QuotaPlan.is_active.is_(True))
                    .order_by(QuotaPlan.price_monthly, QuotaPlan.id)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to load quota plans: {e}", exc_info=True)
            raise StoreError("Failed to load quota plans") from e

    async def get_subscription_overview(self, user_id: str) -> SubscriptionOverview:
        try:
            async with get_db_session(self._session_factory) as db:
                active, plan = await self._load_current(db, user_id)
                pending = await self.get_pending_subscription(db, user_id)
                return SubscriptionOverview(
                    active=SubscriptionResponse.model_validate(active),
                    pending=SubscriptionResponse.model_validate(pending) if pending else None,
                    plan=QuotaPlanResponse.model_validate(plan),
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load subscription overview for user {user_id}: {e}", exc_info=True)
            raise StoreError("Failed to load subscription overview") from e

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def upgrade_user_plan(
        self,
        user_id: str,
        new_plan_type: str,
        payment_method: str = "unknown",
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Subscription:
        """Switch to a more expensive plan immediately.

        The current active row is cancelled and any scheduled pending row is
        discarded. The new row runs for one calendar month and renews
        automatically.
        """
        try:
            async with get_db_session(self._session_factory) as db:
                new_plan = await self._load_target_plan(db, new_plan_type)
                current, current_plan = await self._load_current(db, user_id)

                if new_plan.price_monthly <= current_plan.price_monthly:
                    raise InvalidTransitionError(
                        f"Cannot upgrade from '{current.plan_type}' to '{new_plan_type}': "
                        "the target plan is not more expensive",
                        details={"current_plan": current.plan_type, "target_plan": new_plan_type},
                    )

                now = self._clock()
                from_plan = current.plan_type
                current.status = SubscriptionStatus.CANCELLED.value
                current.auto_renew = False
                current.updated_at = now
                await db.flush()

                await self._delete_pending(db, user_id)

                subscription = Subscription(
                    user_id=user_id,
                    plan_type=new_plan_type,
                    status=SubscriptionStatus.ACTIVE.value,
                    started_at=now,
                    expires_at=add_months(now, 1),
                    auto_renew=True,
                    payment_method=payment_method,
                    created_at=now,
                    updated_at=now,
                )
                db.add(subscription)
                await db.flush()

                await self.plan_changes.record_plan_change(
                    db,
                    user_id,
                    from_plan,
                    new_plan_type,
                    ChangeType.UPGRADE.value,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
        except SQLAlchemyError as e:
            logger.error(f"Upgrade to {new_plan_type} failed for user {user_id}: {e}", exc_info=True)
            capture_exception(e)
            raise StoreError("Failed to upgrade subscription") from e

        logger.info(f"User {user_id} upgraded {from_plan} -> {new_plan_type}")
        return subscription

    async def _schedule_pending(
        self,
        db: AsyncSession,
        current: Subscription,
        plan_type: str,
        payment_method: str,
    ) -> Subscription:
        now = self._clock()
        current.auto_renew = False
        current.updated_at = now
        await db.flush()

        await self._delete_pending(db, current.user_id)

        effective_from = (current.expires_at or now) + timedelta(days=1)
        pending = Subscription(
            user_id=current.user_id,
            plan_type=plan_type,
            status=SubscriptionStatus.PENDING.value,
            started_at=effective_from,
            expires_at=None,
            auto_renew=False,
            payment_method=payment_method,
            created_at=now,
            updated_at=now,
        )
        db.add(pending)
        await db.flush()
        return pending

    async def downgrade_user_plan(
        self,
        user_id: str,
        new_plan_type: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Subscription:
        """Schedule a cheaper plan for the day after the current period ends.

        Returns the pending subscription; current entitlements are unchanged.
        """
        try:
            async with get_db_session(self._session_factory) as db:
                new_plan = await self._load_target_plan(db, new_plan_type)
                current, current_plan = await self._load_current(db, user_id)

                if new_plan.price_monthly >= current_plan.price_monthly:
                    raise InvalidTransitionError(
                        f"Cannot downgrade from '{current.plan_type}' to '{new_plan_type}': "
                        "the target plan is not cheaper",
                        details={"current_plan": current.plan_type, "target_plan": new_plan_type},
                    )

                pending = await self._schedule_pending(db, current, new_plan_type, "downgrade")
                await self.plan_changes.record_plan_change(
                    db,
                    user_id,
                    current.plan_type,
                    new_plan_type,
                    ChangeType.DOWNGRADE.value,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
        except SQLAlchemyError as e:
            logger.error(f"Downgrade to {new_plan_type} failed for user {user_id}: {e}", exc_info=True)
            capture_exception(e)
            raise StoreError("Failed to downgrade subscription") from e

        logger.info(f"User {user_id} scheduled downgrade to {new_plan_type} from {pending.started_at}")
        return pending

    async def cancel_subscription(
        self,
        user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Subscription:
        """Stop renewal and fall back to free after the current period."""
        try:
            async with get_db_session(self._session_factory) as db:
                current, _ = await self._load_current(db, user_id)
                if current.plan_type == PLAN_FREE:
                    raise InvalidTransitionError("Free plan has nothing to cancel")

                pending = await self._schedule_pending(db, current, PLAN_FREE, "cancelled")
                await self.plan_changes.record_plan_change(
                    db,
                    user_id,
                    current.plan_type,
                    PLAN_FREE,
                    ChangeType.CANCEL.value,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
        except SQLAlchemyError as e:
            logger.error(f"Cancellation failed for user {user_id}: {e}", exc_info=True)
            capture_exception(e)
            raise StoreError("Failed to cancel subscription") from e

        logger.info(f"User {user_id} cancelled; free plan from {pending.started_at}")
        return pending

    async def refund_and_cancel(
        self,
        user_id: str,
        reason: str = ChangeReason.USER_REQUEST.value,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RefundResult:
        """End a paid plan now and compute the prorated refund.

        The engine only computes the amount; moving money is up to the
        payment collaborator.
        """
        try:
            async with get_db_session(self._session_factory) as db:
                current, current_plan = await self._load_current(db, user_id)
                if current.plan_type == PLAN_FREE:
                    raise InvalidTransitionError("Free plan has nothing to refund")

                now = self._clock()
                remaining_days = self._remaining_days(current.expires_at, now)
                refund_amount = round(
                    float(current_plan.price_monthly) * remaining_days / PRORATION_DAYS_PER_MONTH, 2
                )

                refunded_plan = current.plan_type
                current.status = SubscriptionStatus.REFUNDED.value
                current.auto_renew = False
                current.updated_at = now
                await db.flush()

                await self._delete_pending(db, user_id)

                db.add(
                    Subscription(
                        user_id=user_id,
                        plan_type=PLAN_FREE,
                        status=SubscriptionStatus.ACTIVE.value,
                        started_at=now,
                        expires_at=None,
                        auto_renew=False,
                        payment_method="refund",
                        created_at=now,
                        updated_at=now,
                    )
                )
                await db.flush()

                await self.plan_changes.record_plan_change(
                    db,
                    user_id,
                    refunded_plan,
                    PLAN_FREE,
                    ChangeType.REFUND.value,
                    reason=reason,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
        except SQLAlchemyError as e:
            logger.error(f"Refund failed for user {user_id}: {e}", exc_info=True)
            capture_exception(e)
            raise StoreError("Failed to refund subscription") from e

        logger.info(
            f"User {user_id} refunded {refunded_plan}: {refund_amount} for {remaining_days} remaining days"
        )
        return RefundResult(
            refund_amount=refund_amount,
            remaining_days=remaining_days,
            refunded_plan=refunded_plan,
        )

    @staticmethod
    def _remaining_days(expires_at: datetime | None, now: datetime) -> int:
        if expires_at is None:
            return 0
        seconds = (expires_at - now).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    async def process_expired_subscriptions(self) -> SweepResult:
        """Renew or transition every active subscription past its expiry.

        Each user is handled in its own transaction; one failure is logged and
        counted without stopping the sweep.
        """
        now = self._clock()
        result = SweepResult()

        try:
            async with self._session_factory() as db:
                rows = await db.execute(
                    select(Subscription.id).where(
                        Subscription.status == SubscriptionStatus.ACTIVE.value,
                        Subscription.expires_at.is_not(None),
                        Subscription.expires_at <= now,
                    )
                )
                expired_ids = list(rows.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list expired subscriptions: {e}", exc_info=True)
            capture_exception(e)
            raise StoreError("Failed to list expired subscriptions") from e

        if not expired_ids:
            return result

        logger.info(f"Processing {len(expired_ids)} expired subscriptions")

        for subscription_id in expired_ids:
            try:
                outcome = await self._process_expired(subscription_id, now)
            except (SQLAlchemyError, EngineError) as e:
                result.failed += 1
                logger.error(f"Failed to process expired subscription {subscription_id}: {e}", exc_info=True)
                capture_exception(e)
                continue

            if outcome is None:
                continue
            result.processed += 1
            if outcome == ChangeType.RENEWAL:
                result.renewed += 1
            else:
                result.transitioned += 1

        logger.info(
            f"Subscription sweep done: processed={result.processed}, renewed={result.renewed}, "
            f"transitioned={result.transitioned}, failed={result.failed}"
        )
        return result

    async def _process_expired(self, subscription_id: int, now: datetime) -> ChangeType | None:
        async with get_db_session(self._session_factory) as db:
            # Re-read under a row lock; another sweep may have handled it already
            row = await db.execute(
                select(Subscription).where(Subscription.id == subscription_id).with_for_update()
            )
            current = row.scalar_one_or_none()
            if (
                current is None
                or current.status != SubscriptionStatus.ACTIVE.value
                or current.expires_at is None
                or current.expires_at > now
            ):
                return None

            user_id = current.user_id

            if current.auto_renew:
                current.expires_at = current.expires_at + timedelta(days=RENEWAL_EXTENSION_DAYS)
                current.updated_at = now
                await db.flush()
                await self.plan_changes.record_plan_change(
                    db,
                    user_id,
                    current.plan_type,
                    current.plan_type,
                    ChangeType.RENEWAL.value,
                    reason=ChangeReason.SYSTEM_AUTO.value,
                )
                logger.info(f"Renewed {current.plan_type} for user {user_id} until {current.expires_at}")
                return ChangeType.RENEWAL

            from_plan = current.plan_type
            current.status = SubscriptionStatus.EXPIRED.value
            current.updated_at = now
            await db.flush()

            pending = await self.get_pending_subscription(db, user_id)
            if pending is not None:
                await self._delete_pending(db, user_id, keep_id=pending.id)
                pending.status = SubscriptionStatus.ACTIVE.value
                pending.started_at = now
                if pending.plan_type == PLAN_FREE:
                    pending.expires_at = None
                    pending.auto_renew = False
                else:
                    pending.expires_at = add_months(now, 1)
                    pending.auto_renew = True
                pending.updated_at = now
                to_plan = pending.plan_type
            else:
                db.add(
                    Subscription(
                        user_id=user_id,
                        plan_type=PLAN_FREE,
                        status=SubscriptionStatus.ACTIVE.value,
                        started_at=now,
                        expires_at=None,
                        auto_renew=False,
                        payment_method="transition",
                        created_at=now,
                        updated_at=now,
                    )
                )
                to_plan = PLAN_FREE
            await db.flush()

            await self.plan_changes.record_plan_change(
                db,
                user_id,
                from_plan,
                to_plan,
                ChangeType.EXPIRY.value,
                reason=ChangeReason.SYSTEM_AUTO.value,
            )
            logger.info(f"Subscription of user {user_id} expired: {from_plan} -> {to_plan}")
            return ChangeType.EXPIRY


# Global instance
subscription_service = SubscriptionService()
