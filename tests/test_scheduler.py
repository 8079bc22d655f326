"""Tests for the background scheduler's task timing."""

import pytest

from app.services.scheduler import SchedulerService


def make_scheduler(calls: list) -> SchedulerService:
    scheduler = SchedulerService(sweep_interval=100, cleanup_interval=500)

    async def sweep():
        calls.append("sweep")

    async def cleanup():
        calls.append("cleanup")

    scheduler._sweep_subscriptions = sweep
    scheduler._cleanup_expired_data = cleanup
    return scheduler


class TestSchedulerService:
    @pytest.mark.asyncio
    async def test_tasks_run_on_their_own_intervals(self):
        calls = []
        scheduler = make_scheduler(calls)

        await scheduler.run_due_tasks(now=1000.0)
        assert calls == ["sweep", "cleanup"]

        calls.clear()
        await scheduler.run_due_tasks(now=1050.0)
        assert calls == []

        await scheduler.run_due_tasks(now=1100.0)
        assert calls == ["sweep"]

        calls.clear()
        await scheduler.run_due_tasks(now=1500.0)
        assert calls == ["sweep", "cleanup"]

    @pytest.mark.asyncio
    async def test_failing_sweep_does_not_stop_cleanup(self):
        calls = []
        scheduler = make_scheduler(calls)

        async def broken_sweep():
            raise RuntimeError("store down")

        scheduler._sweep_subscriptions = broken_sweep
        await scheduler.run_due_tasks(now=1000.0)
        assert calls == ["cleanup"]

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        scheduler = make_scheduler([])

        await scheduler.start()
        assert scheduler.running is True
        await scheduler.start()  # second start is a no-op

        await scheduler.stop()
        assert scheduler.running is False
