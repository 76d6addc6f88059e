"""Meeting persistence models.

Seven SQLAlchemy models on the shared Base:
- MeetingModel: One row per vendor bot (or placeholder), owned by a user
- TranscriptModel / DiarizationModel / SummaryModel: 1:1 children (upserted)
- ActionItemModel / ParticipantModel: 1:N children (replaced wholesale)
- UserSettingsModel: Per-user vocabulary hints for AI generation

No foreign key constraints (application-level referential integrity via
repository). Uniqueness on bot_id and calendar_event_id is what makes
duplicate webhook deliveries safe.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.meetsync.core.database import Base


class MeetingModel(Base):
    """Recording job for a single meeting.

    bot_id starts as `pending-<calendar_event_id>` for calendar-seeded rows
    and is swapped in place once the vendor's id is known.
    """

    __tablename__ = "meetings"
    __table_args__ = (
        UniqueConstraint("bot_id", name="uq_meetings_bot_id"),
        UniqueConstraint("calendar_event_id", name="uq_meetings_calendar_event_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    bot_id: Mapped[str] = mapped_column(String(200), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    bot_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    meeting_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    calendar_event_id: Mapped[str | None] = mapped_column(String(300), nullable=True)
    correlation_data: Mapped[dict] = mapped_column(
        JSONB, default=dict, server_default=text("'{}'::jsonb")
    )
    extra_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        default="scheduled",
        server_default=text("'scheduled'"),
    )
    processing_status: Mapped[str] = mapped_column(
        String(50),
        default="pending",
        server_default=text("'pending'"),
    )
    recording_mode: Mapped[str | None] = mapped_column(String(50), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    participant_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    video_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    diarization_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class TranscriptModel(Base):
    """Utterances downloaded from the vendor's transcript URL."""

    __tablename__ = "transcripts"
    __table_args__ = (UniqueConstraint("meeting_id", name="uq_transcripts_meeting_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    utterances_data: Mapped[list] = mapped_column(
        JSONB, default=list, server_default=text("'[]'::jsonb")
    )
    raw_data: Mapped[dict | list | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class DiarizationModel(Base):
    """Speaker diarization entries parsed from the vendor's JSONL artifact."""

    __tablename__ = "diarizations"
    __table_args__ = (UniqueConstraint("meeting_id", name="uq_diarizations_meeting_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    entries_data: Mapped[list] = mapped_column(
        JSONB, default=list, server_default=text("'[]'::jsonb")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class SummaryModel(Base):
    """AI-generated summary, one per meeting."""

    __tablename__ = "summaries"
    __table_args__ = (UniqueConstraint("meeting_id", name="uq_summaries_meeting_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    overview: Mapped[str] = mapped_column(Text, default="", server_default=text("''"))
    key_points: Mapped[list] = mapped_column(
        JSONB, default=list, server_default=text("'[]'::jsonb")
    )
    decisions: Mapped[list] = mapped_column(
        JSONB, default=list, server_default=text("'[]'::jsonb")
    )
    next_steps: Mapped[list] = mapped_column(
        JSONB, default=list, server_default=text("'[]'::jsonb")
    )
    questions_data: Mapped[list] = mapped_column(
        JSONB, default=list, server_default=text("'[]'::jsonb")
    )
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class ActionItemModel(Base):
    """Action item extracted from a transcript; ordered by position."""

    __tablename__ = "action_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    assignee: Mapped[str | None] = mapped_column(String(300), nullable=True)
    due_date: Mapped[str | None] = mapped_column(String(100), nullable=True)
    priority: Mapped[str] = mapped_column(
        String(20), default="medium", server_default=text("'medium'")
    )
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class ParticipantModel(Base):
    """Meeting attendee as reported on bot completion."""

    __tablename__ = "participants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    vendor_id: Mapped[str | None] = mapped_column(String(200), nullable=True)


class UserSettingsModel(Base):
    """Per-user preferences consumed by the ingestion pipeline."""

    __tablename__ = "user_settings"
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_settings_user_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    custom_vocabulary: Mapped[list] = mapped_column(
        JSONB, default=list, server_default=text("'[]'::jsonb")
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
