"""Calendar endpoints: cached event listing and force-sync.

GET /calendar/events reads through the CalendarEventCache, so repeated
dashboard loads within the TTL never reach the vendor.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.meetsync.api.deps import (
    get_auto_scheduler,
    get_calendar_cache,
    get_calendar_repository,
    get_current_user_id,
)
from src.meetsync.calendar.schemas import CalendarEvent
from src.meetsync.errors import InputValidationError, VendorError
from src.meetsync.meetings.bot.validation import parse_timestamp

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class CalendarEventsResponse(BaseModel):
    events: list[CalendarEvent] = Field(default_factory=list)
    source: str
    count: int


class ForceSyncResponse(BaseModel):
    scheduled: int
    failed: int
    skipped: int
    errors: list[str] = Field(default_factory=list)


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("/events", response_model=CalendarEventsResponse)
async def list_calendar_events(
    calendar_id: str = Query(..., description="MeetingBaas calendar id"),
    start_date: str | None = Query(default=None, description="ISO 8601 date or timestamp"),
    end_date: str | None = Query(default=None, description="ISO 8601 date or timestamp"),
    force_refresh: bool = Query(default=False),
    user_id: str = Depends(get_current_user_id),
    cache: Any = Depends(get_calendar_cache),
    calendar_repository: Any = Depends(get_calendar_repository),
) -> CalendarEventsResponse:
    """List upcoming events that have a meeting link.

    Returns 404 unless the caller owns the calendar.
    """
    account = await calendar_repository.get_account_by_calendar_id(calendar_id)
    if account is None or account.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Calendar not found")

    try:
        start = parse_timestamp(start_date, field="start_date") if start_date else None
        end = parse_timestamp(end_date, field="end_date") if end_date else None
    except InputValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    try:
        result = await cache.get_events(
            calendar_id, start=start, end=end, force_refresh=force_refresh
        )
    except InputValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except VendorError as exc:
        logger.error("calendar.events_fetch_failed", calendar_id=calendar_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to fetch calendar events",
        )

    events = [e for e in result.events if e.meeting_url]
    return CalendarEventsResponse(events=events, source=result.source, count=len(events))


@router.post("/force-sync", response_model=ForceSyncResponse)
async def force_sync(
    user_id: str = Depends(get_current_user_id),
    scheduler: Any = Depends(get_auto_scheduler),
) -> ForceSyncResponse:
    """Refresh every active calendar of the caller and schedule missing bots."""
    result = await scheduler.run_for_user(user_id)
    logger.info(
        "calendar.force_sync",
        user_id=user_id,
        scheduled=result.scheduled,
        failed=result.failed,
        skipped=result.skipped,
    )
    return ForceSyncResponse(
        scheduled=result.scheduled,
        failed=result.failed,
        skipped=result.skipped,
        errors=result.errors,
    )
