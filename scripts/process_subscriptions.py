#!/usr/bin/env python3
"""
Run subscription and abuse-data maintenance outside the API process.

Use this on deployments where the in-app scheduler is disabled
(SCHEDULER_ENABLED=false), from cron or as a single-instance daemon.

Usage:
    # Renew or transition expired subscriptions once
    ENV=staging uv run python scripts/process_subscriptions.py

    # Also clean up stale rate limit counters, IP logs and expired bans
    ENV=staging uv run python scripts/process_subscriptions.py --cleanup

    # Show how many active subscriptions are past expiry (no processing)
    ENV=staging uv run python scripts/process_subscriptions.py --status

    # Run as a daemon
    ENV=staging uv run python scripts/process_subscriptions.py --daemon --interval 3600
"""

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment before importing app modules
from dotenv import load_dotenv

env = os.getenv("ENV", "local")
load_dotenv(f".env.{env}")

print(f"Environment: {env}")


async def show_status():
    """Show subscription counts by status and the number awaiting the sweep."""
    from sqlalchemy import func, select

    from app.db import get_db_session
    from app.models import Subscription
    from app.models.subscription import SubscriptionStatus
    from app.utils.clock import utcnow

    async with get_db_session() as db:
        result = await db.execute(
            select(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status)
        )
        counts = dict(result.all())

        overdue = await db.execute(
            select(func.count(Subscription.id)).where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.expires_at.is_not(None),
                Subscription.expires_at <= utcnow(),
            )
        )
        overdue_count = overdue.scalar_one()

    print("\nSubscription Status")
    print("=" * 40)
    for status in SubscriptionStatus:
        print(f"{status.value.capitalize() + ':':<17}{counts.get(status.value, 0)}")
    print(f"{'Past expiry:':<17}{overdue_count}")
    print("=" * 40)
    return overdue_count


async def sweep():
    from app.services.subscription import subscription_service

    result = await subscription_service.process_expired_subscriptions()
    print(
        f"Processed {result.processed} subscription(s): "
        f"{result.renewed} renewed, {result.transitioned} transitioned, {result.failed} failed"
    )
    return result


async def cleanup():
    from app.services.abuse_prevention import abuse_prevention_service

    result = await abuse_prevention_service.cleanup_expired_data()
    print(
        f"Cleaned {result.cleaned_counters} counter(s), {result.cleaned_logs} IP log(s), "
        f"deactivated {result.deactivated_blacklist} ban(s)"
    )
    return result


async def run_daemon(interval: int, with_cleanup: bool):
    """
    Run the sweep periodically until interrupted.

    Args:
        interval: Seconds between sweeps
        with_cleanup: Also run the abuse data cleanup each round
    """
    import signal

    print(f"Starting daemon mode, sweeping every {interval} seconds...")
    print("Press Ctrl+C to stop")

    running = True

    def signal_handler(signum, frame):
        nonlocal running
        print("\nShutting down...")
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    while running:
        try:
            await sweep()
            if with_cleanup:
                await cleanup()
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            break
        except Exception as e:
            print(f"Error in daemon loop: {e}")
            await asyncio.sleep(interval)


async def main():
    parser = argparse.ArgumentParser(
        description="Process expired subscriptions and clean up abuse prevention data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show subscription status only (no processing)",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Also delete stale counters and IP logs and deactivate expired bans",
    )
    parser.add_argument(
        "--daemon",
        action="store_true",
        help="Run as a daemon that periodically sweeps",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=3600,
        help="Interval in seconds between sweeps in daemon mode (default: 3600)",
    )

    args = parser.parse_args()

    overdue = await show_status()

    if args.status:
        return

    if args.daemon:
        await run_daemon(args.interval, args.cleanup)
        return

    if overdue:
        await sweep()
    else:
        print("No expired subscriptions to process")

    if args.cleanup:
        await cleanup()


if __name__ == "__main__":
    asyncio.run(main())
