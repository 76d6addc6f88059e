"""Pydantic v2 schemas for the calendar integration.

CalendarEvent is the single projection of a vendor calendar occurrence used
by the vendor client, the cache, the auto-scheduler, and the webhook
decoder. Vendor field names are kept verbatim.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class CalendarEvent(BaseModel):
    """One occurrence of a calendar event as reported by the vendor.

    Unknown vendor keys are kept so the cache can store the raw payload.
    """

    model_config = ConfigDict(extra="allow")

    event_id: str
    calendar_id: str | None = None
    series_id: str | None = None
    event_type: str | None = None
    title: str = ""
    start_time: datetime
    end_time: datetime | None = None
    meeting_url: str | None = None
    meeting_platform: str | None = None
    bot_scheduled: bool = False
    series_bot_scheduled: bool | None = None
    bot_id: str | None = None

    def is_in_future(self, now: datetime) -> bool:
        return self.start_time > now

    def needs_bot(self, now: datetime) -> bool:
        """Eligible for auto-scheduling: has a URL, no bot yet, starts later."""
        return bool(self.meeting_url) and not self.bot_scheduled and self.is_in_future(now)

    def raw_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class VendorCalendar(BaseModel):
    """A calendar connection registered with the vendor."""

    model_config = ConfigDict(extra="allow")

    calendar_id: str
    email: str | None = None
    name: str | None = None

    @classmethod
    def from_vendor(cls, data: dict[str, Any]) -> VendorCalendar:
        # v2 returns `calendar_id`; older payloads use `uuid`
        calendar_id = data.get("calendar_id") or data.get("uuid")
        return cls.model_validate({**data, "calendar_id": calendar_id})


class RawCalendar(BaseModel):
    """A provider calendar visible to an OAuth credential (pre-connection)."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str | None = None
    email: str | None = None


class CacheResult(BaseModel):
    """Calendar events plus where they came from."""

    events: list[CalendarEvent] = Field(default_factory=list)
    source: Literal["cache", "vendor"]


class AutoScheduleResult(BaseModel):
    """Summary of one auto-scheduling batch."""

    scheduled: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)

    def merge(self, other: AutoScheduleResult) -> AutoScheduleResult:
        return AutoScheduleResult(
            scheduled=self.scheduled + other.scheduled,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
            errors=[*self.errors, *other.errors],
        )


class CalendarAccount(BaseModel):
    """Per-user calendar connection (credentials are not exposed here)."""

    id: str
    user_id: str
    provider: str
    email: str
    meetingbaas_calendar_id: str | None = None
    is_active: bool = True
