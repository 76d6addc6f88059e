"""Pydantic v2 schemas for the meeting recording domain.

Defines the data contracts for meetings, the correlation structure attached
to vendor bots, transcripts, participants, summaries, and action items.
The reconciler, ingestion pipeline, repository, and API layer all import
from this module.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class BotStatus(str, Enum):
    """Vendor-reported bot status.

    `scheduled` is local (bot requested, not yet acknowledged by the vendor);
    `completed` and `failed` are terminal.
    """

    SCHEDULED = "scheduled"
    QUEUED = "queued"
    JOINING_CALL = "joining_call"
    IN_WAITING_ROOM = "in_waiting_room"
    IN_CALL_NOT_RECORDING = "in_call_not_recording"
    IN_CALL_RECORDING = "in_call_recording"
    RECORDING_PAUSED = "recording_paused"
    RECORDING_RESUMED = "recording_resumed"
    TRANSCRIBING = "transcribing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BotStatus.COMPLETED, BotStatus.FAILED)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def parse(cls, code: str | None) -> BotStatus | None:
        """Map a vendor status code to BotStatus, or None if unrecognized."""
        if not code:
            return None
        try:
            return cls(code)
        except ValueError:
            return None


# Pause/resume cycles are lateral moves inside the in-call phase
_STATUS_RANK: dict[BotStatus, int] = {
    BotStatus.SCHEDULED: 0,
    BotStatus.QUEUED: 1,
    BotStatus.JOINING_CALL: 2,
    BotStatus.IN_WAITING_ROOM: 3,
    BotStatus.IN_CALL_NOT_RECORDING: 4,
    BotStatus.IN_CALL_RECORDING: 5,
    BotStatus.RECORDING_PAUSED: 5,
    BotStatus.RECORDING_RESUMED: 5,
    BotStatus.TRANSCRIBING: 6,
    BotStatus.COMPLETED: 7,
    BotStatus.FAILED: 7,
}


class ProcessingStatus(str, Enum):
    """Locally-owned artifact ingestion progress, independent of BotStatus."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


PLACEHOLDER_PREFIX = "pending-"


def placeholder_bot_id(calendar_event_id: str) -> str:
    """Synthetic bot id for a meeting seen on the calendar before the vendor assigned one."""
    return f"{PLACEHOLDER_PREFIX}{calendar_event_id}"


# ── Correlation ──────────────────────────────────────────────────────────────

CORRELATION_VERSION = 1


class Correlation(BaseModel):
    """Context attached to a bot at creation and echoed back by the vendor.

    Sent to the vendor as the bot's `extra` blob and stored on the meeting.
    Parsing is lenient: non-string values in a vendor echo are ignored
    rather than rejected.
    """

    version: int = CORRELATION_VERSION
    user_id: str | None = None
    calendar_id: str | None = None
    event_id: str | None = None
    scheduled_start: datetime | None = None

    @classmethod
    def from_extra(cls, extra: dict[str, Any] | None) -> Correlation:
        if not isinstance(extra, dict):
            return cls()

        def _str(key: str) -> str | None:
            value = extra.get(key)
            return value if isinstance(value, str) and value else None

        scheduled_start = None
        raw_start = _str("scheduled_start")
        if raw_start:
            try:
                scheduled_start = datetime.fromisoformat(raw_start.replace("Z", "+00:00"))
            except ValueError:
                scheduled_start = None

        version = extra.get("version")
        return cls(
            version=version if isinstance(version, int) else CORRELATION_VERSION,
            user_id=_str("user_id"),
            calendar_id=_str("calendar_id"),
            event_id=_str("event_id"),
            scheduled_start=scheduled_start,
        )

    def to_extra(self) -> dict[str, Any]:
        """Serialize for the vendor's `extra` field and the JSON column."""
        return self.model_dump(mode="json", exclude_none=True)

    def merged_with(self, other: Correlation) -> Correlation:
        """Fill fields missing here from `other`; fields already set win."""
        return Correlation(
            version=self.version,
            user_id=self.user_id or other.user_id,
            calendar_id=self.calendar_id or other.calendar_id,
            event_id=self.event_id or other.event_id,
            scheduled_start=self.scheduled_start or other.scheduled_start,
        )


# ── Transcript & Participant Models ─────────────────────────────────────────


class TranscriptWord(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str = ""
    start: float | None = None
    end: float | None = None


class Utterance(BaseModel):
    """One speaker turn in the vendor transcript. Unknown keys are preserved."""

    model_config = ConfigDict(extra="allow")

    speaker: int | str = 0
    text: str | None = None
    start: float | None = None
    end: float | None = None
    words: list[TranscriptWord] = Field(default_factory=list)

    @property
    def speaker_label(self) -> str:
        if isinstance(self.speaker, int):
            return f"Speaker {self.speaker}"
        return self.speaker

    @property
    def display_text(self) -> str:
        if self.text:
            return self.text
        return " ".join(w.text for w in self.words if w.text)


class Participant(BaseModel):
    """Meeting attendee as reported by the vendor."""

    name: str
    vendor_id: str | None = None


# ── Summary & Action Items ──────────────────────────────────────────────────


class ActionItem(BaseModel):
    """A task extracted from the meeting transcript."""

    description: str = Field(description="Clear description of the task")
    assignee: str | None = Field(None, description="Person's name, if mentioned")
    due_date: str | None = Field(None, description="Due date, if mentioned")
    priority: str = Field("medium", description="high, medium, or low")
    context: str | None = Field(None, description="One sentence of background")
    completed: bool = False


class QuestionAnswer(BaseModel):
    """A question raised in the meeting and the answer given."""

    question: str
    answer: str = Field(description="The answer, or 'Not answered'")
    asked_by: str | None = None
    answered_by: str | None = None


class MeetingSummary(BaseModel):
    """Generated meeting summary (singleton per meeting)."""

    overview: str = ""
    key_points: list[str] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    questions: list[QuestionAnswer] = Field(default_factory=list)


# ── Meeting ─────────────────────────────────────────────────────────────────


class MeetingUpsert(BaseModel):
    """Fields written by an upsert keyed on bot_id.

    Only explicitly-set fields are written on conflict, so a replayed event
    carrying fewer fields never blanks out data from an earlier one.
    """

    bot_id: str
    user_id: str
    bot_name: str | None = None
    meeting_url: str | None = None
    calendar_event_id: str | None = None
    correlation: Correlation | None = None
    extra: dict[str, Any] | None = None
    status: BotStatus | None = None
    processing_status: ProcessingStatus | None = None
    recording_mode: str | None = None
    duration_seconds: int | None = None
    error_code: str | None = None
    error_message: str | None = None


class Meeting(BaseModel):
    """Durable record of one recording job."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    bot_id: str
    user_id: str
    bot_name: str | None = None
    meeting_url: str | None = None
    calendar_event_id: str | None = None
    correlation: Correlation = Field(default_factory=Correlation)
    status: BotStatus = BotStatus.SCHEDULED
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    recording_mode: str | None = None
    duration_seconds: int | None = None
    participant_count: int | None = None
    video_url: str | None = None
    audio_url: str | None = None
    transcript_url: str | None = None
    diarization_url: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class MediaUrls(BaseModel):
    """Recording artifact references from a completion event."""

    video_url: str | None = None
    audio_url: str | None = None
    transcript_url: str | None = None
    raw_transcript_url: str | None = None
    diarization_url: str | None = None
