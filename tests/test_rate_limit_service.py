"""Tests for app.services.rate_limit: per-user fixed windows and per-IP lookback windows."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models import OperationLimitCounter
from app.services.failure_policy import FailureMode
from app.services.rate_limit import RateLimitService
from app.utils.constants import OP_PLAN_CHANGE, OP_VIDEO_PROCESS

IP = "192.0.2.10"


class TestIpLimit:
    @pytest.mark.asyncio
    async def test_sixth_attempt_in_window_denied(self, rate_limits):
        # plan_change: 5 per 60 minutes per IP
        for _ in range(5):
            result = await rate_limits.check_ip_limit(IP, OP_PLAN_CHANGE)
            assert result.allowed is True
            await rate_limits.record_ip_operation(IP, OP_PLAN_CHANGE)

        result = await rate_limits.check_ip_limit(IP, OP_PLAN_CHANGE)
        assert result.allowed is False
        assert result.remaining == 0
        assert result.reason

    @pytest.mark.asyncio
    async def test_allowed_again_after_window(self, rate_limits, clock):
        for _ in range(5):
            await rate_limits.record_ip_operation(IP, OP_PLAN_CHANGE)
        assert (await rate_limits.check_ip_limit(IP, OP_PLAN_CHANGE)).allowed is False

        clock.advance(minutes=61)
        result = await rate_limits.check_ip_limit(IP, OP_PLAN_CHANGE)
        assert result.allowed is True
        assert result.remaining == 5

    @pytest.mark.asyncio
    async def test_reset_time_is_oldest_attempt_plus_window(self, rate_limits, clock):
        first = clock()
        await rate_limits.record_ip_operation(IP, OP_PLAN_CHANGE)
        clock.advance(minutes=10)
        for _ in range(4):
            await rate_limits.record_ip_operation(IP, OP_PLAN_CHANGE)

        result = await rate_limits.check_ip_limit(IP, OP_PLAN_CHANGE)
        assert result.allowed is False
        assert result.reset_time == first + timedelta(minutes=60)

    @pytest.mark.asyncio
    async def test_failed_attempts_count(self, rate_limits):
        for _ in range(5):
            await rate_limits.record_ip_operation(IP, OP_PLAN_CHANGE, success=False)
        assert (await rate_limits.check_ip_limit(IP, OP_PLAN_CHANGE)).allowed is False

    @pytest.mark.asyncio
    async def test_other_ips_unaffected(self, rate_limits):
        for _ in range(5):
            await rate_limits.record_ip_operation(IP, OP_PLAN_CHANGE)
        assert (await rate_limits.check_ip_limit("192.0.2.11", OP_PLAN_CHANGE)).allowed is True

    @pytest.mark.asyncio
    async def test_unconfigured_operation_always_allowed(self, rate_limits):
        result = await rate_limits.check_ip_limit(IP, "share_create")
        assert result.allowed is True
        assert result.limit is None


class TestUserLimit:
    @pytest.mark.asyncio
    async def test_fourth_plan_change_in_a_day_denied(self, rate_limits, clock):
        start = clock()
        for _ in range(3):
            assert (await rate_limits.check_user_operation_limit("user-1", OP_PLAN_CHANGE)).allowed is True
            await rate_limits.record_user_operation("user-1", OP_PLAN_CHANGE)

        result = await rate_limits.check_user_operation_limit("user-1", OP_PLAN_CHANGE)
        assert result.allowed is False
        assert result.reset_time == start + timedelta(hours=24)

    @pytest.mark.asyncio
    async def test_window_resets_after_elapsing(self, rate_limits, clock, session_factory):
        for _ in range(3):
            await rate_limits.record_user_operation("user-1", OP_PLAN_CHANGE)

        clock.advance(hours=24, seconds=1)
        # Elapsed window counts as zero before anything is written
        result = await rate_limits.check_user_operation_limit("user-1", OP_PLAN_CHANGE)
        assert result.allowed is True
        assert result.remaining == 3

        await rate_limits.record_user_operation("user-1", OP_PLAN_CHANGE)

        async with session_factory() as db:
            counter = await db.scalar(
                select(OperationLimitCounter).where(
                    OperationLimitCounter.user_id == "user-1",
                    OperationLimitCounter.operation_type == OP_PLAN_CHANGE,
                )
            )
        assert counter.count == 1
        assert counter.window_start == clock()

    @pytest.mark.asyncio
    async def test_remaining_counts_down(self, rate_limits):
        await rate_limits.record_user_operation("user-2", OP_VIDEO_PROCESS)
        await rate_limits.record_user_operation("user-2", OP_VIDEO_PROCESS)

        result = await rate_limits.check_user_operation_limit("user-2", OP_VIDEO_PROCESS)
        assert result.remaining == 98
        assert result.limit == 100

    @pytest.mark.asyncio
    async def test_record_operation_counts_both_tiers(self, rate_limits):
        await rate_limits.record_operation(OP_PLAN_CHANGE, ip_address=IP, user_id="user-3", success=False)

        assert (await rate_limits.check_ip_limit(IP, OP_PLAN_CHANGE)).remaining == 4
        assert (await rate_limits.check_user_operation_limit("user-3", OP_PLAN_CHANGE)).remaining == 2


class TestFailurePolicy:
    @pytest.mark.asyncio
    async def test_check_fails_open(self, broken_session_factory, clock):
        service = RateLimitService(broken_session_factory, clock, FailureMode.OPEN)
        assert (await service.check_ip_limit(IP, OP_PLAN_CHANGE)).allowed is True
        assert (await service.check_user_operation_limit("u", OP_PLAN_CHANGE)).allowed is True

    @pytest.mark.asyncio
    async def test_check_fails_closed_when_configured(self, broken_session_factory, clock):
        service = RateLimitService(broken_session_factory, clock, FailureMode.CLOSED)
        assert (await service.check_ip_limit(IP, OP_PLAN_CHANGE)).allowed is False

    @pytest.mark.asyncio
    async def test_record_errors_are_swallowed(self, broken_session_factory, clock):
        service = RateLimitService(broken_session_factory, clock, FailureMode.OPEN)
        await service.record_user_operation("u", OP_PLAN_CHANGE)
        await service.record_ip_operation(IP, OP_PLAN_CHANGE)
