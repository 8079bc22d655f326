"""Abuse prevention service for anomaly detection, plan change guards and housekeeping."""

import logging
import random
from datetime import timedelta
from typing import Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.db import AsyncSessionLocal, get_db_session
from app.models.blacklist import BlacklistEntry
from app.models.operation_limit import IPOperationLog, OperationLimitCounter
from app.models.plan_change_log import ChangeType
from app.schemas.limits import AnomalyReport, CleanupResult, RateLimitResult, Severity
from app.services.blacklist.blacklist_service import BlacklistService, blacklist_service
from app.services.failure_policy import FailureMode, defense_failure_mode
from app.services.rate_limit.rate_limit_service import RateLimitService, rate_limit_service
from app.services.subscription.plan_change_service import PlanChangeService, plan_change_service
from app.utils.clock import Clock, utcnow
from app.utils.constants import (
    ANOMALY_FAILURE_RATE,
    ANOMALY_HIGH_PATTERN_COUNT,
    ANOMALY_HIGH_TOTAL,
    ANOMALY_MEDIUM_TOTAL,
    ANOMALY_MIN_ATTEMPTS_FOR_FAILURE_RATE,
    ANOMALY_OPERATION_THRESHOLD,
    ANOMALY_TOTAL_THRESHOLD,
    DOWNGRADE_COOLDOWN_DAYS,
    IP_LOG_RETENTION_DAYS,
    OP_PLAN_CHANGE,
    OPERATION_COUNTER_RETENTION_DAYS,
)
from app.utils.exceptions import StoreError
from app.utils.sentry_utils import capture_exception

logger = logging.getLogger(__name__)


def classify_severity(pattern_count: int, total_operations: int) -> Severity:
    if pattern_count > ANOMALY_HIGH_PATTERN_COUNT or total_operations > ANOMALY_HIGH_TOTAL:
        return Severity.HIGH
    if pattern_count > 0 or total_operations > ANOMALY_MEDIUM_TOTAL:
        return Severity.MEDIUM
    return Severity.LOW


class AbusePreventionService:
    """Out-of-band scans of the IP operation log and guards on plan changes.

    Detection runs on a sampled fraction of requests; a high-severity report
    leads to a temporary IP ban through the blacklist.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        clock: Clock = utcnow,
        failure_mode: FailureMode | None = None,
        blacklist: BlacklistService | None = None,
        rate_limits: RateLimitService | None = None,
        plan_changes: PlanChangeService | None = None,
        sample_rate: float | None = None,
        random_fn: Callable[[], float] = random.random,
    ):
        self._session_factory = session_factory or AsyncSessionLocal
        self._clock = clock
        self._failure_mode = failure_mode
        shared = session_factory is None
        self.blacklist = blacklist or (
            blacklist_service if shared else BlacklistService(session_factory, clock, failure_mode)
        )
        self.rate_limits = rate_limits or (
            rate_limit_service if shared else RateLimitService(session_factory, clock, failure_mode)
        )
        self.plan_changes = plan_changes or (
            plan_change_service if shared else PlanChangeService(session_factory, clock)
        )
        self._sample_rate = sample_rate
        self._random = random_fn

    @property
    def failure_mode(self) -> FailureMode:
        return self._failure_mode or defense_failure_mode()

    @property
    def sample_rate(self) -> float:
        return settings.anomaly_sample_rate if self._sample_rate is None else self._sample_rate

    def should_sample(self) -> bool:
        """Whether this request should trigger an anomaly scan."""
        return self._random() < self.sample_rate

    async def detect_anomalous_pattern(
        self,
        ip_address: str,
        window_minutes: int | None = None,
    ) -> AnomalyReport:
        """Scan the IP's recent operations for abusive patterns.

        Flags a single operation type above 50 attempts, a failure rate above
        50% once there are more than 10 attempts, and more than 100 attempts
        overall. Never raises; a failing store yields a clean report.
        """
        if window_minutes is None:
            window_minutes = settings.anomaly_window_minutes
        window_start = self._clock() - timedelta(minutes=window_minutes)

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(
                        IPOperationLog.operation_type,
                        IPOperationLog.success,
                        func.count(IPOperationLog.id),
                    )
                    .where(
                        IPOperationLog.ip_address == ip_address,
                        IPOperationLog.created_at > window_start,
                    )
                    .group_by(IPOperationLog.operation_type, IPOperationLog.success)
                )
                groups = result.all()
        except SQLAlchemyError as e:
            logger.error(f"Anomaly detection failed for {ip_address}: {e}", exc_info=True)
            capture_exception(e)
            if self.failure_mode == FailureMode.CLOSED:
                return AnomalyReport(suspicious=True, patterns=["detection unavailable"], severity=Severity.MEDIUM)
            return AnomalyReport(suspicious=False)

        patterns: list[str] = []
        total = 0
        failed = 0
        for operation_type, success, count in groups:
            total += count
            if not success:
                failed += count
            if count > ANOMALY_OPERATION_THRESHOLD:
                patterns.append(f"high-frequency {operation_type} ({count})")

        if total > ANOMALY_MIN_ATTEMPTS_FOR_FAILURE_RATE and failed / total > ANOMALY_FAILURE_RATE:
            patterns.append(f"high failure rate ({failed}/{total})")

        if total > ANOMALY_TOTAL_THRESHOLD:
            patterns.append(f"excessive operations ({total} in {window_minutes} minutes)")

        report = AnomalyReport(
            suspicious=bool(patterns),
            patterns=patterns,
            severity=classify_severity(len(patterns), total),
            total_operations=total,
            failed_operations=failed,
        )
        if report.suspicious:
            logger.warning(
                f"Anomalous activity from {ip_address}: severity={report.severity.value}, "
                f"patterns={patterns}"
            )
        return report

    async def ban_if_abusive(self, ip_address: str, report: AnomalyReport) -> bool:
        """Temporarily ban the IP when the report is high severity.

        Returns True if a ban was placed.
        """
        if not report.suspicious or report.severity != Severity.HIGH:
            return False

        expires_at = self._clock() + timedelta(minutes=settings.auto_ban_minutes)
        await self.blacklist.add_to_blacklist(
            "ip",
            ip_address,
            reason=f"Automatic ban: {'; '.join(report.patterns)}",
            expires_at=expires_at,
            created_by="abuse_detector",
        )
        logger.warning(f"Auto-banned {ip_address} until {expires_at.isoformat()}")
        return True

    async def scan_and_ban(self, ip_address: str) -> AnomalyReport:
        """Detect and ban in one step; ban failures are logged."""
        report = await self.detect_anomalous_pattern(ip_address)
        try:
            await self.ban_if_abusive(ip_address, report)
        except StoreError as e:
            logger.error(f"Failed to auto-ban {ip_address}: {e}", exc_info=True)
            capture_exception(e)
        return report

    async def check_plan_change_frequency(self, user_id: str, change_type: str) -> RateLimitResult:
        """Guard plan changes: one downgrade per 7 days, then the plan_change user limit."""
        now = self._clock()

        if change_type == ChangeType.DOWNGRADE.value:
            cooldown = timedelta(days=DOWNGRADE_COOLDOWN_DAYS)
            try:
                last = await self.plan_changes.get_last_change(user_id, change_type, now - cooldown)
            except SQLAlchemyError as e:
                logger.error(f"Plan change history lookup failed for user {user_id}: {e}", exc_info=True)
                capture_exception(e)
                last = None
                if self.failure_mode == FailureMode.CLOSED:
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        reset_time=now,
                        reason="Plan change check unavailable",
                    )

            if last is not None:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=last.created_at + cooldown,
                    reason=f"Plans can be downgraded at most once every {DOWNGRADE_COOLDOWN_DAYS} days",
                )

        return await self.rate_limits.check_user_operation_limit(user_id, OP_PLAN_CHANGE)

    async def cleanup_expired_data(self) -> CleanupResult:
        """Drop stale counters and IP logs, deactivate expired blacklist entries."""
        now = self._clock()

        try:
            async with get_db_session(self._session_factory) as db:
                counters = await db.execute(
                    delete(OperationLimitCounter).where(
                        OperationLimitCounter.window_start < now - timedelta(days=OPERATION_COUNTER_RETENTION_DAYS)
                    )
                )
                logs = await db.execute(
                    delete(IPOperationLog).where(
                        IPOperationLog.created_at < now - timedelta(days=IP_LOG_RETENTION_DAYS)
                    )
                )
                entries = await db.execute(
                    update(BlacklistEntry)
                    .where(
                        BlacklistEntry.is_active.is_(True),
                        BlacklistEntry.expires_at.is_not(None),
                        BlacklistEntry.expires_at <= now,
                    )
                    .values(is_active=False, updated_at=now)
                )
        except SQLAlchemyError as e:
            logger.error(f"Abuse data cleanup failed: {e}", exc_info=True)
            capture_exception(e)
            raise StoreError("Failed to clean up expired abuse prevention data") from e

        result = CleanupResult(
            cleaned_counters=counters.rowcount,
            cleaned_logs=logs.rowcount,
            deactivated_blacklist=entries.rowcount,
        )
        logger.info(
            f"Cleanup done: counters={result.cleaned_counters}, logs={result.cleaned_logs}, "
            f"blacklist={result.deactivated_blacklist}"
        )
        return result


# Global instance
abuse_prevention_service = AbusePreventionService()
