"""Calendar persistence models.

- CalendarEventModel: TTL cache of vendor calendar occurrences, keyed by event_id
- CalendarAccountModel: Per-user calendar connection and its vendor calendar id
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.meetsync.core.database import Base


class CalendarEventModel(Base):
    """Cached projection of a vendor calendar event.

    Freshness is judged per row from last_fetched_at.
    """

    __tablename__ = "calendar_events"
    __table_args__ = (UniqueConstraint("event_id", name="uq_calendar_events_event_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    event_id: Mapped[str] = mapped_column(String(300), nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), default="", server_default=text("''"))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    meeting_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    bot_scheduled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    bot_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    raw_data: Mapped[dict] = mapped_column(
        JSONB, default=dict, server_default=text("'{}'::jsonb")
    )
    last_fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class CalendarAccountModel(Base):
    """Calendar connection owned by a user.

    Tokens are stored as received; encryption at rest is handled outside
    this service.
    """

    __tablename__ = "calendar_accounts"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "provider",
            "email",
            name="uq_calendar_accounts_user_provider_email",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(300), nullable=False)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    meetingbaas_calendar_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
