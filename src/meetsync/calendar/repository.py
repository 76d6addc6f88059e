"""Calendar repository -- cached events and calendar account lookups.

Batch writes of cached events run in a single transaction so a failure
part-way through never leaves a half-refreshed calendar behind.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Iterable
from datetime import datetime

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetsync.calendar.models import CalendarAccountModel, CalendarEventModel
from src.meetsync.calendar.schemas import CalendarAccount, CalendarEvent
from src.meetsync.meetings.bot.validation import detect_platform

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_event(model: CalendarEventModel) -> CalendarEvent:
    """Rebuild the vendor projection; stored columns win over raw_data."""
    return CalendarEvent.model_validate(
        {
            **(model.raw_data or {}),
            "event_id": model.event_id,
            "calendar_id": model.calendar_id,
            "title": model.title,
            "start_time": model.start_time,
            "end_time": model.end_time,
            "meeting_url": model.meeting_url,
            "meeting_platform": model.platform,
            "bot_scheduled": model.bot_scheduled,
            "bot_id": model.bot_id,
        }
    )


def _event_values(event: CalendarEvent, calendar_id: str, fetched_at: datetime) -> dict:
    return {
        "event_id": event.event_id,
        "calendar_id": calendar_id,
        "title": event.title,
        "start_time": event.start_time,
        "end_time": event.end_time,
        "meeting_url": event.meeting_url,
        "platform": event.meeting_platform or detect_platform(event.meeting_url),
        "bot_scheduled": event.bot_scheduled,
        "bot_id": event.bot_id,
        "raw_data": event.raw_payload(),
        "last_fetched_at": fetched_at,
    }


def _model_to_account(model: CalendarAccountModel) -> CalendarAccount:
    return CalendarAccount(
        id=str(model.id),
        user_id=model.user_id,
        provider=model.provider,
        email=model.email,
        meetingbaas_calendar_id=model.meetingbaas_calendar_id,
        is_active=model.is_active,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class CalendarRepository:
    """Async persistence for the calendar event cache and calendar accounts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Event cache ──────────────────────────────────────────────────────

    async def count_fresh(self, calendar_id: str, fetched_after: datetime) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                select(func.count())
                .select_from(CalendarEventModel)
                .where(
                    CalendarEventModel.calendar_id == calendar_id,
                    CalendarEventModel.last_fetched_at > fetched_after,
                )
            )
            return int(result.scalar_one())

    async def list_events(
        self,
        calendar_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CalendarEvent]:
        """Cached events for a calendar ordered by start time."""
        stmt = select(CalendarEventModel).where(CalendarEventModel.calendar_id == calendar_id)
        if start is not None:
            stmt = stmt.where(CalendarEventModel.start_time >= start)
        if end is not None:
            stmt = stmt.where(CalendarEventModel.start_time <= end)
        async for session in self._session_factory():
            result = await session.execute(stmt.order_by(CalendarEventModel.start_time))
            return [_model_to_event(m) for m in result.scalars().all()]

    async def upsert_events(
        self,
        calendar_id: str,
        events: Iterable[CalendarEvent],
        fetched_at: datetime,
    ) -> int:
        """Insert or refresh every event in one transaction, keyed by event_id."""
        rows = [_event_values(e, calendar_id, fetched_at) for e in events]
        if not rows:
            return 0
        stmt = insert(CalendarEventModel).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["event_id"],
            set_={
                "calendar_id": stmt.excluded.calendar_id,
                "title": stmt.excluded.title,
                "start_time": stmt.excluded.start_time,
                "end_time": stmt.excluded.end_time,
                "meeting_url": stmt.excluded.meeting_url,
                "platform": stmt.excluded.platform,
                "bot_scheduled": stmt.excluded.bot_scheduled,
                "bot_id": stmt.excluded.bot_id,
                "raw_data": stmt.excluded.raw_data,
                "last_fetched_at": stmt.excluded.last_fetched_at,
            },
        )
        async for session in self._session_factory():
            async with session.begin():
                await session.execute(stmt)
        return len(rows)

    async def mark_bot_scheduled(self, event_id: str, bot_id: str | None) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(CalendarEventModel)
                .where(CalendarEventModel.event_id == event_id)
                .values(bot_scheduled=True, bot_id=bot_id)
            )
            await session.commit()

    async def delete_event(self, event_id: str) -> bool:
        async for session in self._session_factory():
            result = await session.execute(
                delete(CalendarEventModel).where(CalendarEventModel.event_id == event_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_orphaned_events(self, active_calendar_ids: Iterable[str]) -> int:
        """Remove cached events whose calendar is no longer connected."""
        active = list(active_calendar_ids)
        stmt = delete(CalendarEventModel)
        if active:
            stmt = stmt.where(CalendarEventModel.calendar_id.notin_(active))
        async for session in self._session_factory():
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount

    # ── Calendar accounts ────────────────────────────────────────────────

    async def get_account_by_calendar_id(self, calendar_id: str) -> CalendarAccount | None:
        """Account owning a vendor calendar; active accounts are preferred."""
        async for session in self._session_factory():
            result = await session.execute(
                select(CalendarAccountModel)
                .where(CalendarAccountModel.meetingbaas_calendar_id == calendar_id)
                .order_by(CalendarAccountModel.is_active.desc(), CalendarAccountModel.created_at)
                .limit(1)
            )
            model = result.scalar_one_or_none()
            return _model_to_account(model) if model else None

    async def list_active_calendar_ids(self, user_id: str | None = None) -> list[str]:
        """Vendor calendar ids of active accounts, for one user or everyone."""
        stmt = select(CalendarAccountModel.meetingbaas_calendar_id).where(
            CalendarAccountModel.is_active.is_(True),
            CalendarAccountModel.meetingbaas_calendar_id.is_not(None),
        )
        if user_id is not None:
            stmt = stmt.where(CalendarAccountModel.user_id == user_id)
        async for session in self._session_factory():
            result = await session.execute(stmt)
            return list(dict.fromkeys(result.scalars().all()))

    async def set_active(self, calendar_id: str, is_active: bool) -> int:
        """Set the active flag on every account linked to a vendor calendar."""
        async for session in self._session_factory():
            result = await session.execute(
                update(CalendarAccountModel)
                .where(CalendarAccountModel.meetingbaas_calendar_id == calendar_id)
                .values(is_active=is_active)
            )
            await session.commit()
            return result.rowcount
