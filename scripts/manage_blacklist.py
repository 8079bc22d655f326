#!/usr/bin/env python3
"""
Blacklist management from the command line.

Usage:
    # List active entries
    ENV=staging uv run python scripts/manage_blacklist.py list

    # List all ip entries including deactivated ones
    ENV=staging uv run python scripts/manage_blacklist.py list --type ip --all

    # Ban an IP for 2 hours
    ENV=staging uv run python scripts/manage_blacklist.py add ip 203.0.113.7 --reason "scraping" --minutes 120

    # Ban a user permanently
    ENV=staging uv run python scripts/manage_blacklist.py add user user_123 --reason "chargeback fraud"

    # Lift a ban
    ENV=staging uv run python scripts/manage_blacklist.py remove ip 203.0.113.7

    # Scan an IP for anomalous activity
    ENV=staging uv run python scripts/manage_blacklist.py scan 203.0.113.7
"""

import argparse
import asyncio
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load environment before importing app modules
from dotenv import load_dotenv

env = os.getenv("ENV", "local")
load_dotenv(f".env.{env}")

from app.services.abuse_prevention import abuse_prevention_service
from app.services.blacklist import blacklist_service
from app.utils.clock import utcnow
from app.utils.constants import BLACKLIST_TYPES


def format_datetime(dt: Optional[datetime]) -> str:
    """Format datetime for display."""
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M:%S")


async def list_entries(entry_type: Optional[str], include_inactive: bool, limit: int):
    entries = await blacklist_service.list_blacklist(
        entry_type,
        active_only=not include_inactive,
        limit=limit,
    )
    if not entries:
        print("No blacklist entries")
        return

    print(f"\n{'TYPE':<6} {'VALUE':<40} {'ACTIVE':<7} {'EXPIRES':<20} REASON")
    print("-" * 100)
    for entry in entries:
        print(
            f"{entry.type:<6} {entry.value[:40]:<40} {'yes' if entry.is_active else 'no':<7} "
            f"{format_datetime(entry.expires_at):<20} {entry.reason or ''}"
        )
    print(f"\nTotal: {len(entries)}")


async def add_entry(entry_type: str, value: str, reason: str, minutes: Optional[int]):
    expires_at = utcnow() + timedelta(minutes=minutes) if minutes else None
    await blacklist_service.add_to_blacklist(
        entry_type,
        value,
        reason,
        expires_at=expires_at,
        created_by="cli",
    )
    print(f"Blacklisted {entry_type}={value} until {format_datetime(expires_at) if expires_at else 'forever'}")


async def remove_entry(entry_type: str, value: str):
    removed = await blacklist_service.remove_from_blacklist(entry_type, value)
    if removed:
        print(f"Removed {entry_type}={value} from blacklist")
    else:
        print(f"No active entry for {entry_type}={value}")


async def scan_ip(ip_address: str, window_minutes: int):
    report = await abuse_prevention_service.detect_anomalous_pattern(ip_address, window_minutes)
    print(f"\nAnomaly report for {ip_address} (last {window_minutes} minutes)")
    print("=" * 50)
    print(f"Suspicious:  {report.suspicious}")
    print(f"Severity:    {report.severity.value}")
    print(f"Operations:  {report.total_operations} ({report.failed_operations} failed)")
    for pattern in report.patterns:
        print(f"  - {pattern}")


async def main():
    parser = argparse.ArgumentParser(
        description="Manage the ip/user/email blacklist",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List entries")
    list_parser.add_argument("--type", choices=BLACKLIST_TYPES, help="Filter by entry type")
    list_parser.add_argument("--all", action="store_true", help="Include deactivated entries")
    list_parser.add_argument("--limit", type=int, default=100, help="Maximum entries to show")

    add_parser = subparsers.add_parser("add", help="Add or refresh an entry")
    add_parser.add_argument("type", choices=BLACKLIST_TYPES)
    add_parser.add_argument("value")
    add_parser.add_argument("--reason", required=True)
    add_parser.add_argument("--minutes", type=int, help="Ban duration (default: permanent)")

    remove_parser = subparsers.add_parser("remove", help="Deactivate an entry")
    remove_parser.add_argument("type", choices=BLACKLIST_TYPES)
    remove_parser.add_argument("value")

    scan_parser = subparsers.add_parser("scan", help="Scan an IP for anomalous activity")
    scan_parser.add_argument("ip")
    scan_parser.add_argument("--window", type=int, default=60, help="Lookback in minutes (default: 60)")

    args = parser.parse_args()

    if args.command == "list":
        await list_entries(args.type, args.all, args.limit)
    elif args.command == "add":
        await add_entry(args.type, args.value, args.reason, args.minutes)
    elif args.command == "remove":
        await remove_entry(args.type, args.value)
    elif args.command == "scan":
        await scan_ip(args.ip, args.window)


if __name__ == "__main__":
    asyncio.run(main())
