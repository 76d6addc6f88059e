"""CalendarEventCache -- TTL-bounded cache of vendor calendar events.

A calendar is considered fresh when at least one of its cached rows was
fetched within the TTL. Fresh calendars are served from the database with
no vendor call; stale or empty ones (or an explicit force refresh) go to
the vendor and write every returned event back in one transaction.

The cache is an optimization only: a failed write-back is logged and the
freshly fetched events are still returned.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from src.meetsync.calendar.schemas import CacheResult

if TYPE_CHECKING:
    from src.meetsync.calendar.repository import CalendarRepository
    from src.meetsync.meetings.bot.meetingbaas_client import MeetingBaasClient

logger = structlog.get_logger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_TTL_HOURS = 8
DEFAULT_EVENTS_LIMIT = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_today(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class CalendarEventCache:
    """Serves calendar events from the local cache or the vendor.

    Args:
        repository: CalendarRepository holding cached rows.
        client: MeetingBaasClient used on cache misses.
        ttl: Freshness window measured from each row's last fetch.
        events_limit: Page size requested from the vendor.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        repository: CalendarRepository,
        client: MeetingBaasClient,
        ttl: timedelta = timedelta(hours=DEFAULT_TTL_HOURS),
        events_limit: int = DEFAULT_EVENTS_LIMIT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._client = client
        self._ttl = ttl
        self._events_limit = events_limit
        self._clock = clock

    async def get_events(
        self,
        calendar_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        force_refresh: bool = False,
    ) -> CacheResult:
        """Return events for a calendar, refreshing from the vendor if stale.

        Args:
            calendar_id: Vendor calendar id.
            start: Lower bound on start time; defaults to the start of today (UTC).
            end: Optional upper bound on start time.
            force_refresh: Bypass the freshness check.
        """
        now = self._clock()
        start = start or start_of_today(now)

        if not force_refresh:
            fresh_count = await self._repository.count_fresh(calendar_id, now - self._ttl)
            if fresh_count > 0:
                events = await self._repository.list_events(calendar_id, start=start, end=end)
                logger.info(
                    "calendar_cache.hit",
                    calendar_id=calendar_id,
                    fresh_rows=fresh_count,
                    returned=len(events),
                )
                return CacheResult(events=events, source="cache")

        events = await self._client.list_calendar_events(
            calendar_id,
            start_date=start,
            end_date=end,
            limit=self._events_limit,
        )
        events = sorted(events, key=lambda e: e.start_time)
        logger.info(
            "calendar_cache.refreshed",
            calendar_id=calendar_id,
            forced=force_refresh,
            count=len(events),
        )

        try:
            await self._repository.upsert_events(calendar_id, events, fetched_at=now)
        except Exception:
            logger.exception("calendar_cache.save_failed", calendar_id=calendar_id)

        return CacheResult(events=events, source="vendor")

    async def cleanup_orphaned_events(self, active_calendar_ids: list[str]) -> int:
        """Delete cached events for calendars no longer connected."""
        deleted = await self._repository.delete_orphaned_events(active_calendar_ids)
        logger.info(
            "calendar_cache.orphans_deleted",
            deleted=deleted,
            active_calendars=len(active_calendar_ids),
        )
        return deleted
