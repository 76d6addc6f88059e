#!/usr/bin/env python3
"""Delete cached calendar events for calendars that are no longer connected.

Usage:
    uv run python scripts/cleanup_calendar_cache.py
    uv run python scripts/cleanup_calendar_cache.py --allow-empty

Connects directly to the database using DATABASE_URL from environment or .env file.
With no active calendar accounts the script refuses to run (it would wipe
the whole cache) unless --allow-empty is given.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.meetsync
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def cleanup(allow_empty: bool) -> int:
    from src.meetsync.api.middleware.logging import configure_structlog
    from src.meetsync.calendar.cache import CalendarEventCache
    from src.meetsync.calendar.repository import CalendarRepository
    from src.meetsync.config import get_settings
    from src.meetsync.core.database import close_db, get_session
    from src.meetsync.meetings.bot.meetingbaas_client import MeetingBaasClient

    configure_structlog()
    settings = get_settings()
    repository = CalendarRepository(session_factory=get_session)
    cache = CalendarEventCache(
        repository=repository,
        client=MeetingBaasClient(api_key=settings.MEETINGBAAS_API_KEY),
    )
    try:
        active = await repository.list_active_calendar_ids()
        print(f"Active calendars: {len(active)}")
        if not active and not allow_empty:
            print("No active calendars found; refusing to delete the entire cache.")
            print("Re-run with --allow-empty to proceed.")
            return 1
        deleted = await cache.cleanup_orphaned_events(active)
        print(f"Deleted {deleted} orphaned cached events.")
        return 0
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Remove cached events of disconnected calendars")
    parser.add_argument(
        "--allow-empty",
        action="store_true",
        help="Proceed even when no calendar is active (deletes every cached event)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(cleanup(args.allow_empty)))


if __name__ == "__main__":
    main()
