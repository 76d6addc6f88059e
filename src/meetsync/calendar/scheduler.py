"""AutoScheduler -- schedules recording bots for upcoming calendar events.

Runs over one calendar, a user's active calendars, or every calendar the
vendor knows about. Events come through the CalendarEventCache, so a
recent refresh costs no vendor calls. Scheduling is sequential with a
fixed pause between attempts to stay under the vendor's rate limit.

A batch never raises: per-event and per-calendar failures are counted and
reported in AutoScheduleResult.errors.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog

from src.meetsync.calendar.cache import start_of_today
from src.meetsync.calendar.schemas import AutoScheduleResult, CalendarEvent
from src.meetsync.core.monitoring import auto_schedule_results_total
from src.meetsync.meetings.schemas import Correlation

if TYPE_CHECKING:
    from src.meetsync.calendar.cache import CalendarEventCache
    from src.meetsync.calendar.repository import CalendarRepository
    from src.meetsync.meetings.bot.meetingbaas_client import MeetingBaasClient
    from src.meetsync.meetings.reconciler import MeetingReconciler

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutoScheduler:
    """Finds eligible calendar events and schedules a bot for each.

    Args:
        client: MeetingBaasClient.
        cache: CalendarEventCache used to read events.
        calendar_repository: Account lookups and cache row updates.
        reconciler: MeetingReconciler that seeds placeholder meetings.
        recording_mode: Vendor recording mode for scheduled bots.
        transcription_provider: Vendor transcription provider.
        delay_seconds: Pause after each scheduling attempt.
        clock: Returns the current UTC time (injectable for tests).
        sleep: Awaitable sleep (injectable for tests).
    """

    def __init__(
        self,
        client: MeetingBaasClient,
        cache: CalendarEventCache,
        calendar_repository: CalendarRepository,
        reconciler: MeetingReconciler,
        recording_mode: str = "speaker_view",
        transcription_provider: str = "gladia",
        delay_seconds: float = 1.0,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._cache = cache
        self._calendar_repository = calendar_repository
        self._reconciler = reconciler
        self._recording_mode = recording_mode
        self._transcription_provider = transcription_provider
        self._delay_seconds = delay_seconds
        self._clock = clock
        self._sleep = sleep

    async def run(
        self,
        calendar_id: str | None = None,
        user_id: str | None = None,
        force_refresh: bool = False,
    ) -> AutoScheduleResult:
        """Schedule bots for every eligible event in the selected calendars."""
        result = AutoScheduleResult()
        try:
            calendar_ids = await self._select_calendars(calendar_id, user_id)
        except Exception as exc:
            logger.exception("auto_schedule.calendar_listing_failed", user_id=user_id)
            result.errors.append(f"Calendars: {exc}")
            return result

        for cal_id in calendar_ids:
            try:
                result = result.merge(await self._run_calendar(cal_id, user_id, force_refresh))
            except Exception as exc:
                logger.exception("auto_schedule.calendar_failed", calendar_id=cal_id)
                result.errors.append(f"Calendar {cal_id}: {exc}")

        logger.info(
            "auto_schedule.finished",
            calendars=len(calendar_ids),
            scheduled=result.scheduled,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    async def run_for_user(self, user_id: str) -> AutoScheduleResult:
        """Force-sync every active calendar of one user."""
        return await self.run(user_id=user_id, force_refresh=True)

    async def _select_calendars(self, calendar_id: str | None, user_id: str | None) -> list[str]:
        if calendar_id:
            return [calendar_id]
        if user_id:
            return await self._calendar_repository.list_active_calendar_ids(user_id)
        calendars = await self._client.list_calendars()
        return [c.calendar_id for c in calendars]

    async def _run_calendar(
        self,
        calendar_id: str,
        user_id: str | None,
        force_refresh: bool,
    ) -> AutoScheduleResult:
        now = self._clock()
        cached = await self._cache.get_events(
            calendar_id, start=start_of_today(now), force_refresh=force_refresh
        )
        events = cached.events
        eligible = [e for e in events if e.needs_bot(now)]
        result = AutoScheduleResult(skipped=len(events) - len(eligible))
        auto_schedule_results_total.labels(result="skipped").inc(result.skipped)
        log = logger.bind(calendar_id=calendar_id, source=cached.source)
        log.info("auto_schedule.calendar_scanned", events=len(events), eligible=len(eligible))

        owner_id = user_id
        if eligible and owner_id is None:
            account = await self._calendar_repository.get_account_by_calendar_id(calendar_id)
            owner_id = account.user_id if account else None

        for event in eligible:
            try:
                await self._schedule(calendar_id, event, owner_id)
            except Exception as exc:
                log.warning("auto_schedule.event_failed", event_id=event.event_id, error=str(exc))
                auto_schedule_results_total.labels(result="failed").inc()
                result.failed += 1
                result.errors.append(f"{event.event_id}: {exc}")
            else:
                auto_schedule_results_total.labels(result="scheduled").inc()
                result.scheduled += 1
            await self._sleep(self._delay_seconds)
        return result

    async def _schedule(
        self, calendar_id: str, event: CalendarEvent, owner_id: str | None
    ) -> None:
        correlation = Correlation(
            user_id=owner_id,
            calendar_id=calendar_id,
            event_id=event.event_id,
            scheduled_start=event.start_time,
        )
        response = await self._client.schedule_calendar_bot(
            calendar_id,
            event.event_id,
            bot_name=self._reconciler.bot_name_for(event.title),
            recording_mode=self._recording_mode,
            series_id=event.series_id,
            correlation=correlation,
            transcription_config={"provider": self._transcription_provider},
        )
        bot_id = response.get("bot_id")

        if owner_id is not None:
            await self._reconciler.seed_scheduled_meeting(
                owner_id, calendar_id, event, correlation
            )
        else:
            logger.warning(
                "auto_schedule.placeholder_skipped_no_owner",
                calendar_id=calendar_id,
                event_id=event.event_id,
            )
        await self._calendar_repository.mark_bot_scheduled(event.event_id, bot_id)
