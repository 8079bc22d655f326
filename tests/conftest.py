"""Shared fixtures: in-memory SQLite stores, a controllable clock and service instances."""

import os

# Settings are read once at import time; point the app at an in-memory database
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["ANOMALY_SAMPLE_RATE"] = "0"

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.models import QuotaPlan
from app.services.abuse_prevention import AbusePreventionService
from app.services.blacklist import BlacklistService
from app.services.cooldown import CooldownService
from app.services.failure_policy import FailureMode
from app.services.quota import QuotaService
from app.services.rate_limit import RateLimitService
from app.services.subscription import PlanChangeService, SubscriptionService

MB = 1024 * 1024

# free < basic < pro < max by monthly price
TEST_PLANS = [
    {
        "plan_type": "free",
        "name": "Free",
        "price_monthly": 0,
        "price_yearly": 0,
        "monthly_video_quota": 3,
        "max_video_duration": 30,
        "max_file_size": 100 * MB,
        "monthly_duration_quota": 60,
        "max_shared_items": 5,
    },
    {
        "plan_type": "basic",
        "name": "Basic",
        "price_monthly": 5,
        "price_yearly": 50,
        "monthly_video_quota": 10,
        "max_video_duration": 45,
        "max_file_size": 200 * MB,
        "monthly_duration_quota": 300,
        "max_shared_items": 20,
    },
    {
        "plan_type": "pro",
        "name": "Pro",
        "price_monthly": 20,
        "price_yearly": 200,
        "monthly_video_quota": 50,
        "max_video_duration": 60,
        "max_file_size": 500 * MB,
        "monthly_duration_quota": 3000,
        "max_shared_items": 100,
    },
    {
        "plan_type": "max",
        "name": "Max",
        "price_monthly": 50,
        "price_yearly": 500,
        "monthly_video_quota": 0,
        "max_video_duration": 0,
        "max_file_size": 0,
        "monthly_duration_quota": 0,
        "max_shared_items": 0,
    },
]


class FakeClock:
    """Clock whose time only moves when a test advances it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


async def seed_plans(session_factory: async_sessionmaker) -> None:
    async with session_factory() as db:
        db.add_all(QuotaPlan(**plan) for plan in TEST_PLANS)
        await db.commit()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 10, 12, 0, 0))


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    await seed_plans(factory)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def broken_session_factory(tmp_path):
    """Sessions whose every statement fails to connect."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/store.db")
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def blacklist(session_factory, clock) -> BlacklistService:
    return BlacklistService(session_factory, clock, FailureMode.OPEN)


@pytest.fixture
def rate_limits(session_factory, clock) -> RateLimitService:
    return RateLimitService(session_factory, clock, FailureMode.OPEN)


@pytest.fixture
def cooldowns(session_factory, clock) -> CooldownService:
    return CooldownService(session_factory, clock, FailureMode.OPEN)


@pytest.fixture
def plan_changes(session_factory, clock) -> PlanChangeService:
    return PlanChangeService(session_factory, clock)


@pytest.fixture
def subscriptions(session_factory, clock, plan_changes) -> SubscriptionService:
    return SubscriptionService(session_factory, clock, plan_changes)


@pytest.fixture
def quotas(session_factory, clock, subscriptions) -> QuotaService:
    return QuotaService(session_factory, clock, FailureMode.CLOSED, subscriptions)


@pytest.fixture
def abuse(session_factory, clock, blacklist, rate_limits, plan_changes) -> AbusePreventionService:
    return AbusePreventionService(
        session_factory,
        clock,
        FailureMode.OPEN,
        blacklist=blacklist,
        rate_limits=rate_limits,
        plan_changes=plan_changes,
        sample_rate=0.0,
    )


@pytest_asyncio.fixture
async def client():
    """HTTP client against the app, backed by a freshly seeded application database."""
    from httpx import ASGITransport, AsyncClient

    from app.db import AsyncSessionLocal, async_engine
    from main import app

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await seed_plans(AsyncSessionLocal)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client

    await async_engine.dispose()
