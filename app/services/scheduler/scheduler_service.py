"""
Background scheduler service for periodic tasks.

This service runs background tasks on a schedule within the FastAPI application,
eliminating the need for external cron jobs. Run it on a single instance only
(``SCHEDULER_ENABLED=false`` elsewhere): two concurrent sweeps could extend the
same renewal twice.
"""

import asyncio
import time
from typing import Optional

from app.config import settings
from app.utils import logger


class SchedulerService:
    """
    Background scheduler that runs periodic tasks.

    Currently handles:
    - Sweeping expired subscriptions (renewal or transition to the next plan)
    - Cleaning up stale rate limit counters, IP logs and expired bans
    """

    def __init__(
        self,
        sweep_interval: Optional[int] = None,
        cleanup_interval: Optional[int] = None,
        tick_interval: int = 10,
    ):
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.sweep_interval = sweep_interval or settings.subscription_sweep_interval_seconds
        self.cleanup_interval = cleanup_interval or settings.cleanup_interval_seconds
        self.tick_interval = tick_interval
        self._last_sweep = 0.0
        self._last_cleanup = 0.0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the background scheduler."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_scheduler())
        logger.info(
            f"Background scheduler started (sweep_interval={self.sweep_interval}s, "
            f"cleanup_interval={self.cleanup_interval}s)"
        )

    async def stop(self):
        """Stop the background scheduler gracefully."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Background scheduler stopped")

    async def _run_scheduler(self):
        """Main scheduler loop."""
        # Wait a bit before starting to let the app fully initialize
        await asyncio.sleep(5)

        while self._running:
            await self.run_due_tasks()

            # Wait for next check interval
            try:
                await asyncio.sleep(self.tick_interval)
            except asyncio.CancelledError:
                break

    async def run_due_tasks(self, now: Optional[float] = None):
        """Run each task whose interval has elapsed since its last run."""
        now = time.monotonic() if now is None else now

        if now - self._last_sweep >= self.sweep_interval:
            self._last_sweep = now
            try:
                await self._sweep_subscriptions()
            except Exception as e:
                logger.error(f"Scheduler error in subscription sweep: {e}", exc_info=True)

        if now - self._last_cleanup >= self.cleanup_interval:
            self._last_cleanup = now
            try:
                await self._cleanup_expired_data()
            except Exception as e:
                logger.error(f"Scheduler error in cleanup: {e}", exc_info=True)

    async def _sweep_subscriptions(self):
        from app.services.subscription import subscription_service

        result = await subscription_service.process_expired_subscriptions()
        if result.processed or result.failed:
            logger.info(
                f"Scheduler: processed {result.processed} expired subscription(s) "
                f"({result.renewed} renewed, {result.transitioned} transitioned, {result.failed} failed)"
            )

    async def _cleanup_expired_data(self):
        from app.services.abuse_prevention import abuse_prevention_service

        await abuse_prevention_service.cleanup_expired_data()


# Global scheduler instance
scheduler_service = SchedulerService()
