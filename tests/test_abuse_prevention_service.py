"""Tests for app.services.abuse_prevention: anomaly scans, auto-bans, plan change guards and cleanup."""

from datetime import timedelta

import pytest

from app.models import IPOperationLog
from app.schemas.limits import AnomalyReport, Severity
from app.services.abuse_prevention import AbusePreventionService, classify_severity
from app.services.failure_policy import FailureMode
from app.utils.constants import OP_LOGIN_ATTEMPT, OP_PLAN_CHANGE, OP_SHARE_CREATE, OP_VIDEO_PROCESS
from app.utils.exceptions import StoreError

IP = "203.0.113.50"


async def add_logs(session_factory, clock, operation_type, count, success=True, minutes_ago=0, ip=IP):
    created_at = clock() - timedelta(minutes=minutes_ago)
    async with session_factory() as db:
        db.add_all(
            IPOperationLog(ip_address=ip, operation_type=operation_type, success=success, created_at=created_at)
            for _ in range(count)
        )
        await db.commit()


class TestClassifySeverity:
    @pytest.mark.parametrize(
        "pattern_count,total,expected",
        [
            (0, 10, Severity.LOW),
            (0, 50, Severity.LOW),
            (0, 51, Severity.MEDIUM),
            (1, 10, Severity.MEDIUM),
            (2, 60, Severity.MEDIUM),
            (3, 10, Severity.HIGH),
            (0, 201, Severity.HIGH),
        ],
    )
    def test_classification(self, pattern_count, total, expected):
        assert classify_severity(pattern_count, total) == expected


class TestDetectAnomalousPattern:
    @pytest.mark.asyncio
    async def test_quiet_ip_is_clean(self, abuse, session_factory, clock):
        await add_logs(session_factory, clock, OP_VIDEO_PROCESS, 5)
        report = await abuse.detect_anomalous_pattern(IP)
        assert report.suspicious is False
        assert report.severity == Severity.LOW
        assert report.total_operations == 5

    @pytest.mark.asyncio
    async def test_high_frequency_single_operation(self, abuse, session_factory, clock):
        await add_logs(session_factory, clock, OP_VIDEO_PROCESS, 51)

        report = await abuse.detect_anomalous_pattern(IP)
        assert report.suspicious is True
        assert report.patterns == ["high-frequency video_process (51)"]
        assert report.severity == Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_fifty_operations_is_not_flagged(self, abuse, session_factory, clock):
        await add_logs(session_factory, clock, OP_VIDEO_PROCESS, 50)
        assert (await abuse.detect_anomalous_pattern(IP)).suspicious is False

    @pytest.mark.asyncio
    async def test_high_failure_rate(self, abuse, session_factory, clock):
        await add_logs(session_factory, clock, OP_LOGIN_ATTEMPT, 8)
        await add_logs(session_factory, clock, OP_LOGIN_ATTEMPT, 12, success=False)

        report = await abuse.detect_anomalous_pattern(IP)
        assert report.patterns == ["high failure rate (12/20)"]
        assert report.failed_operations == 12

    @pytest.mark.asyncio
    async def test_failure_rate_needs_more_than_ten_attempts(self, abuse, session_factory, clock):
        await add_logs(session_factory, clock, OP_LOGIN_ATTEMPT, 10, success=False)
        assert (await abuse.detect_anomalous_pattern(IP)).suspicious is False

    @pytest.mark.asyncio
    async def test_excessive_operations_across_types(self, abuse, session_factory, clock):
        await add_logs(session_factory, clock, OP_VIDEO_PROCESS, 50)
        await add_logs(session_factory, clock, OP_PLAN_CHANGE, 50)
        await add_logs(session_factory, clock, OP_SHARE_CREATE, 1)

        report = await abuse.detect_anomalous_pattern(IP)
        assert len(report.patterns) == 1
        assert report.patterns[0].startswith("excessive operations (101")

    @pytest.mark.asyncio
    async def test_old_operations_outside_window_ignored(self, abuse, session_factory, clock):
        await add_logs(session_factory, clock, OP_VIDEO_PROCESS, 120, minutes_ago=61)
        assert (await abuse.detect_anomalous_pattern(IP)).total_operations == 0

    @pytest.mark.asyncio
    async def test_other_ips_not_counted(self, abuse, session_factory, clock):
        await add_logs(session_factory, clock, OP_VIDEO_PROCESS, 60, ip="203.0.113.51")
        assert (await abuse.detect_anomalous_pattern(IP)).suspicious is False

    @pytest.mark.asyncio
    async def test_fails_open(self, broken_session_factory, clock):
        abuse = AbusePreventionService(broken_session_factory, clock, FailureMode.OPEN, sample_rate=0.0)
        report = await abuse.detect_anomalous_pattern(IP)
        assert report.suspicious is False

    @pytest.mark.asyncio
    async def test_fails_closed_when_configured(self, broken_session_factory, clock):
        abuse = AbusePreventionService(broken_session_factory, clock, FailureMode.CLOSED, sample_rate=0.0)
        report = await abuse.detect_anomalous_pattern(IP)
        assert report.suspicious is True
        assert report.severity == Severity.MEDIUM


class TestAutoBan:
    @pytest.mark.asyncio
    async def test_high_severity_bans_ip_temporarily(self, abuse, blacklist, session_factory, clock):
        # 101 failures of one type trip all three patterns
        await add_logs(session_factory, clock, OP_VIDEO_PROCESS, 101, success=False)

        report = await abuse.scan_and_ban(IP)
        assert report.severity == Severity.HIGH
        assert len(report.patterns) == 3

        ban = await blacklist.check_blacklist("ip", IP)
        assert ban.blocked is True
        assert ban.expires_at == clock() + timedelta(minutes=60)

        entries = await blacklist.list_blacklist("ip")
        assert entries[0].created_by == "abuse_detector"

        clock.advance(minutes=61)
        assert (await blacklist.check_blacklist("ip", IP)).blocked is False

    @pytest.mark.asyncio
    async def test_medium_severity_does_not_ban(self, abuse, blacklist):
        report = AnomalyReport(suspicious=True, patterns=["high-frequency video_process (51)"], severity=Severity.MEDIUM)
        assert await abuse.ban_if_abusive(IP, report) is False
        assert (await blacklist.check_blacklist("ip", IP)).blocked is False

    def test_sampling(self):
        sampled = AbusePreventionService(sample_rate=0.1, random_fn=lambda: 0.05)
        skipped = AbusePreventionService(sample_rate=0.1, random_fn=lambda: 0.5)
        disabled = AbusePreventionService(sample_rate=0.0, random_fn=lambda: 0.0)

        assert sampled.should_sample() is True
        assert skipped.should_sample() is False
        assert disabled.should_sample() is False


class TestPlanChangeFrequency:
    @pytest.mark.asyncio
    async def test_one_downgrade_per_week(self, abuse, subscriptions, clock):
        await subscriptions.upgrade_user_plan("user-1", "pro")
        await subscriptions.downgrade_user_plan("user-1", "basic")
        downgraded_at = clock()

        result = await abuse.check_plan_change_frequency("user-1", "downgrade")
        assert result.allowed is False
        assert result.reset_time == downgraded_at + timedelta(days=7)

        clock.advance(days=7, minutes=1)
        assert (await abuse.check_plan_change_frequency("user-1", "downgrade")).allowed is True

    @pytest.mark.asyncio
    async def test_downgrade_cooldown_does_not_block_upgrades(self, abuse, subscriptions):
        await subscriptions.upgrade_user_plan("user-1", "pro")
        await subscriptions.downgrade_user_plan("user-1", "basic")

        assert (await abuse.check_plan_change_frequency("user-1", "upgrade")).allowed is True

    @pytest.mark.asyncio
    async def test_daily_plan_change_limit(self, abuse, rate_limits):
        for _ in range(3):
            await rate_limits.record_user_operation("user-1", OP_PLAN_CHANGE)

        result = await abuse.check_plan_change_frequency("user-1", "upgrade")
        assert result.allowed is False

    @pytest.mark.asyncio
    async def test_history_failure_respects_failure_mode(self, broken_session_factory, clock):
        closed = AbusePreventionService(broken_session_factory, clock, FailureMode.CLOSED, sample_rate=0.0)
        opened = AbusePreventionService(broken_session_factory, clock, FailureMode.OPEN, sample_rate=0.0)

        assert (await closed.check_plan_change_frequency("user-1", "downgrade")).allowed is False
        assert (await opened.check_plan_change_frequency("user-1", "downgrade")).allowed is True


class TestCleanup:
    @pytest.mark.asyncio
    async def test_cleanup_respects_retention(self, abuse, rate_limits, blacklist, clock):
        await rate_limits.record_user_operation("user-old", OP_PLAN_CHANGE)
        await rate_limits.record_ip_operation(IP, OP_PLAN_CHANGE)
        await blacklist.add_to_blacklist("ip", IP, "temporary", expires_at=clock() + timedelta(hours=1))
        await blacklist.add_to_blacklist("user", "user-banned", "permanent")

        clock.advance(days=8)
        await rate_limits.record_user_operation("user-new", OP_PLAN_CHANGE)
        await rate_limits.record_ip_operation(IP, OP_PLAN_CHANGE)

        first = await abuse.cleanup_expired_data()
        assert first.cleaned_counters == 1
        assert first.cleaned_logs == 0
        assert first.deactivated_blacklist == 1
        assert (await blacklist.check_blacklist("user", "user-banned")).blocked is True

        clock.advance(days=23)  # 31 days after the first log
        second = await abuse.cleanup_expired_data()
        assert second.cleaned_counters == 1
        assert second.cleaned_logs == 1
        assert second.deactivated_blacklist == 0

    @pytest.mark.asyncio
    async def test_cleanup_failure_raises(self, broken_session_factory, clock):
        abuse = AbusePreventionService(broken_session_factory, clock, FailureMode.OPEN, sample_rate=0.0)
        with pytest.raises(StoreError):
            await abuse.cleanup_expired_data()
