"""Typed MeetingBaas webhook events.

Every recognized envelope `{event, data}` decodes through one pydantic
discriminated union keyed on `event`, so handlers receive typed payloads
instead of raw dicts. Vendor field names are kept verbatim; the only
normalization happens at decode time:

- bot.completed `mp4` / `video` -> `video_url` (`video` wins if both are sent)
- participants given as plain strings or `{id, name}` -> Participant
- calendar `affected_instances` -> `instances`
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from src.meetsync.calendar.schemas import CalendarEvent
from src.meetsync.meetings.schemas import Correlation, MediaUrls, Participant

# ── Payloads ─────────────────────────────────────────────────────────────────


class BotCompletedData(BaseModel):
    model_config = ConfigDict(extra="allow")

    bot_id: str
    event_id: str | None = None
    transcription: str | None = None
    raw_transcription: str | None = None
    video_url: str | None = None
    audio: str | None = None
    diarization: str | None = None
    duration_seconds: float | None = None
    participants: list[Participant] | None = None
    extra: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        video = data.pop("video", None)
        mp4 = data.pop("mp4", None)
        if not data.get("video_url"):
            data["video_url"] = video or mp4

        participants = data.get("participants")
        if isinstance(participants, list):
            normalized = (_participant(p) for p in participants)
            data["participants"] = [p for p in normalized if p is not None]
        if data.get("extra") is not None and not isinstance(data["extra"], dict):
            data["extra"] = None
        return data

    @property
    def media(self) -> MediaUrls:
        return MediaUrls(
            video_url=self.video_url,
            audio_url=self.audio,
            transcript_url=self.transcription,
            raw_transcript_url=self.raw_transcription,
            diarization_url=self.diarization,
        )

    @property
    def correlation(self) -> Correlation:
        return Correlation.from_extra(self.extra)


def _participant(value: Any) -> dict | None:
    if isinstance(value, str):
        return {"name": value} if value.strip() else None
    if isinstance(value, dict) and value.get("name"):
        vendor_id = value.get("id")
        return {"name": str(value["name"]), "vendor_id": str(vendor_id) if vendor_id else None}
    return None


class BotFailedData(BaseModel):
    model_config = ConfigDict(extra="allow")

    bot_id: str
    error_code: str
    error_message: str | None = None
    extra: dict[str, Any] | None = None


class StatusPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: str
    created_at: str | None = None


class BotStatusChangeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    bot_id: str
    status: StatusPayload


class CalendarInstancesData(BaseModel):
    """event_created / event_updated payload."""

    model_config = ConfigDict(extra="allow")

    calendar_id: str
    instances: list[CalendarEvent] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_affected_instances(cls, data: Any) -> Any:
        if isinstance(data, dict) and "instances" not in data and "affected_instances" in data:
            data = {**data, "instances": data["affected_instances"]}
        return data


class CancelledInstance(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_id: str
    bot_id: str | None = None


class CalendarCancelledData(BaseModel):
    model_config = ConfigDict(extra="allow")

    calendar_id: str
    cancelled_instances: list[CancelledInstance] = Field(default_factory=list)


class CalendarConnectionData(BaseModel):
    model_config = ConfigDict(extra="allow")

    calendar_id: str
    status: str | None = None
    error: str | dict | None = None


class CalendarSyncedData(BaseModel):
    model_config = ConfigDict(extra="allow")

    calendar_id: str


# ── Envelopes ────────────────────────────────────────────────────────────────


class BotCompletedEvent(BaseModel):
    event: Literal["bot.completed"]
    data: BotCompletedData


class BotFailedEvent(BaseModel):
    event: Literal["bot.failed"]
    data: BotFailedData


class BotStatusChangeEvent(BaseModel):
    event: Literal["bot.status_change"]
    data: BotStatusChangeData


class CalendarEventCreatedEvent(BaseModel):
    event: Literal["calendar.event_created"]
    data: CalendarInstancesData


class CalendarEventUpdatedEvent(BaseModel):
    event: Literal["calendar.event_updated"]
    data: CalendarInstancesData


class CalendarEventCancelledEvent(BaseModel):
    event: Literal["calendar.event_cancelled"]
    data: CalendarCancelledData


class CalendarConnectionEvent(BaseModel):
    event: Literal[
        "calendar.connection_created",
        "calendar.connection_updated",
        "calendar.connection_deleted",
        "calendar.connection_error",
    ]
    data: CalendarConnectionData


class CalendarEventsSyncedEvent(BaseModel):
    event: Literal["calendar.events_synced"]
    data: CalendarSyncedData


WebhookEvent = Annotated[
    Union[
        BotCompletedEvent,
        BotFailedEvent,
        BotStatusChangeEvent,
        CalendarEventCreatedEvent,
        CalendarEventUpdatedEvent,
        CalendarEventCancelledEvent,
        CalendarConnectionEvent,
        CalendarEventsSyncedEvent,
    ],
    Field(discriminator="event"),
]

webhook_event_adapter: TypeAdapter[WebhookEvent] = TypeAdapter(WebhookEvent)

KNOWN_EVENTS: frozenset[str] = frozenset(
    {
        "bot.completed",
        "bot.failed",
        "bot.status_change",
        "calendar.connection_created",
        "calendar.connection_updated",
        "calendar.connection_deleted",
        "calendar.connection_error",
        "calendar.events_synced",
        "calendar.event_created",
        "calendar.event_updated",
        "calendar.event_cancelled",
    }
)


def parse_webhook_event(envelope: dict[str, Any]) -> WebhookEvent:
    """Decode a known envelope; raises pydantic.ValidationError on bad data."""
    return webhook_event_adapter.validate_python(
        {"event": envelope.get("event"), "data": envelope.get("data") or {}}
    )
