"""Tests for app.services.blacklist: ip/user/email bans."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.models import BlacklistEntry
from app.services.blacklist import BlacklistService
from app.services.failure_policy import FailureMode
from app.utils.exceptions import StoreError, ValidationError


class TestCheckBlacklist:
    @pytest.mark.asyncio
    async def test_unknown_value_is_not_blocked(self, blacklist):
        result = await blacklist.check_blacklist("ip", "198.51.100.1")
        assert result.blocked is False

    @pytest.mark.asyncio
    async def test_permanent_entry_blocks(self, blacklist):
        await blacklist.add_to_blacklist("user", "user-1", "fraud")
        result = await blacklist.check_blacklist("user", "user-1")
        assert result.blocked is True
        assert result.reason == "fraud"
        assert result.expires_at is None

    @pytest.mark.asyncio
    async def test_entry_stops_blocking_after_expiry(self, blacklist, clock):
        await blacklist.add_to_blacklist("ip", "198.51.100.2", "scraping", expires_at=clock() + timedelta(minutes=30))
        assert (await blacklist.check_blacklist("ip", "198.51.100.2")).blocked is True

        clock.advance(minutes=31)
        assert (await blacklist.check_blacklist("ip", "198.51.100.2")).blocked is False

    @pytest.mark.asyncio
    async def test_types_are_independent(self, blacklist):
        await blacklist.add_to_blacklist("email", "a@example.com", "spam")
        assert (await blacklist.check_blacklist("user", "a@example.com")).blocked is False

    @pytest.mark.asyncio
    async def test_unknown_type_rejected(self, blacklist):
        with pytest.raises(ValidationError):
            await blacklist.check_blacklist("device", "abc")

    @pytest.mark.asyncio
    async def test_fails_open_when_store_is_down(self, broken_session_factory, clock):
        service = BlacklistService(broken_session_factory, clock, FailureMode.OPEN)
        result = await service.check_blacklist("ip", "198.51.100.3")
        assert result.blocked is False

    @pytest.mark.asyncio
    async def test_fails_closed_when_configured(self, broken_session_factory, clock):
        service = BlacklistService(broken_session_factory, clock, FailureMode.CLOSED)
        result = await service.check_blacklist("ip", "198.51.100.3")
        assert result.blocked is True


class TestAddToBlacklist:
    @pytest.mark.asyncio
    async def test_repeated_add_keeps_one_active_entry_with_latest_reason(self, blacklist, session_factory):
        await blacklist.add_to_blacklist("ip", "203.0.113.9", "first reason")
        await blacklist.add_to_blacklist("ip", "203.0.113.9", "second reason")

        async with session_factory() as db:
            count = await db.scalar(
                select(func.count(BlacklistEntry.id)).where(
                    BlacklistEntry.type == "ip",
                    BlacklistEntry.value == "203.0.113.9",
                    BlacklistEntry.is_active.is_(True),
                )
            )
        assert count == 1

        result = await blacklist.check_blacklist("ip", "203.0.113.9")
        assert result.reason == "second reason"

    @pytest.mark.asyncio
    async def test_readd_refreshes_expiry(self, blacklist, clock):
        await blacklist.add_to_blacklist("ip", "203.0.113.10", "r", expires_at=clock() + timedelta(minutes=5))
        await blacklist.add_to_blacklist("ip", "203.0.113.10", "r", expires_at=clock() + timedelta(hours=5))

        clock.advance(minutes=10)
        assert (await blacklist.check_blacklist("ip", "203.0.113.10")).blocked is True

    @pytest.mark.asyncio
    async def test_store_failure_raises(self, broken_session_factory, clock):
        service = BlacklistService(broken_session_factory, clock, FailureMode.OPEN)
        with pytest.raises(StoreError):
            await service.add_to_blacklist("ip", "203.0.113.11", "r")


class TestRemoveFromBlacklist:
    @pytest.mark.asyncio
    async def test_remove_deactivates_and_keeps_history(self, blacklist):
        await blacklist.add_to_blacklist("user", "user-2", "abuse")

        assert await blacklist.remove_from_blacklist("user", "user-2") is True
        assert (await blacklist.check_blacklist("user", "user-2")).blocked is False

        history = await blacklist.list_blacklist("user", active_only=False)
        assert len(history) == 1
        assert history[0].is_active is False

    @pytest.mark.asyncio
    async def test_remove_missing_returns_false(self, blacklist):
        assert await blacklist.remove_from_blacklist("user", "nobody") is False

    @pytest.mark.asyncio
    async def test_can_ban_again_after_removal(self, blacklist):
        await blacklist.add_to_blacklist("user", "user-3", "first")
        await blacklist.remove_from_blacklist("user", "user-3")
        await blacklist.add_to_blacklist("user", "user-3", "again")

        assert (await blacklist.check_blacklist("user", "user-3")).reason == "again"
        assert len(await blacklist.list_blacklist("user", active_only=False)) == 2
