"""Meeting repository -- async persistence for meetings and derived artifacts.

Provides MeetingRepository with the session_factory callable pattern.
Handles serialization between Pydantic schemas and SQLAlchemy models.

Every creation path is an INSERT ... ON CONFLICT statement so that
duplicate or concurrent webhook deliveries converge on one row per bot id
(and one row per calendar event) without in-process locking.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Iterable
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from src.meetsync.meetings.models import (
    ActionItemModel,
    DiarizationModel,
    MeetingModel,
    ParticipantModel,
    SummaryModel,
    TranscriptModel,
    UserSettingsModel,
)
from src.meetsync.meetings.schemas import (
    ActionItem,
    BotStatus,
    Correlation,
    Meeting,
    MeetingSummary,
    MeetingUpsert,
    Participant,
    ProcessingStatus,
    Utterance,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        bot_id=model.bot_id,
        user_id=model.user_id,
        bot_name=model.bot_name,
        meeting_url=model.meeting_url,
        calendar_event_id=model.calendar_event_id,
        correlation=Correlation.from_extra(model.correlation_data),
        status=BotStatus(model.status),
        processing_status=ProcessingStatus(model.processing_status),
        recording_mode=model.recording_mode,
        duration_seconds=model.duration_seconds,
        participant_count=model.participant_count,
        video_url=model.video_url,
        audio_url=model.audio_url,
        transcript_url=model.transcript_url,
        diarization_url=model.diarization_url,
        error_code=model.error_code,
        error_message=model.error_message,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
        completed_at=model.completed_at,
    )


def _upsert_values(data: MeetingUpsert) -> dict[str, Any]:
    """Column values for the fields explicitly set on a MeetingUpsert."""
    values: dict[str, Any] = {}
    for field in data.model_fields_set | {"bot_id", "user_id"}:
        value = getattr(data, field)
        if field == "correlation":
            values["correlation_data"] = value.to_extra() if value else {}
        elif field == "extra":
            values["extra_data"] = value
        elif isinstance(value, (BotStatus, ProcessingStatus)):
            values[field] = value.value
        else:
            values[field] = value
    return values


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async persistence for meetings, transcripts, summaries, and action items.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Lookups ──────────────────────────────────────────────────────────

    async def get_by_bot_id(self, bot_id: str) -> Meeting | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(MeetingModel).where(MeetingModel.bot_id == bot_id)
            )
            model = result.scalar_one_or_none()
            return _model_to_meeting(model) if model else None

    async def get_by_calendar_event_id(self, calendar_event_id: str) -> Meeting | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(MeetingModel).where(
                    MeetingModel.calendar_event_id == calendar_event_id
                )
            )
            model = result.scalar_one_or_none()
            return _model_to_meeting(model) if model else None

    async def get_by_correlation_event_id(self, event_id: str) -> Meeting | None:
        """Find a meeting whose correlation blob names this calendar event.

        Oldest row wins if (against the invariant) several match.
        """
        async for session in self._session_factory():
            result = await session.execute(
                select(MeetingModel)
                .where(MeetingModel.correlation_data["event_id"].astext == event_id)
                .order_by(MeetingModel.created_at)
                .limit(1)
            )
            model = result.scalar_one_or_none()
            return _model_to_meeting(model) if model else None

    # ── Writes ───────────────────────────────────────────────────────────

    async def upsert_meeting(self, data: MeetingUpsert) -> Meeting:
        """Insert a meeting or update the existing row with the same bot_id.

        On conflict only the non-null fields explicitly set on `data` are
        written; user_id is never reassigned once a row exists.
        """
        values = _upsert_values(data)
        update_set = {
            key: value
            for key, value in values.items()
            if key not in ("bot_id", "user_id") and value is not None
        }
        update_set["updated_at"] = func.now()

        stmt = (
            insert(MeetingModel)
            .values(**values)
            .on_conflict_do_update(index_elements=["bot_id"], set_=update_set)
            .returning(MeetingModel)
        )
        async for session in self._session_factory():
            result = await session.execute(
                stmt, execution_options={"populate_existing": True}
            )
            model = result.scalar_one()
            await session.commit()
            logger.debug("meeting.upserted", bot_id=data.bot_id, meeting_id=str(model.id))
            return _model_to_meeting(model)

    async def insert_placeholder(self, data: MeetingUpsert) -> tuple[Meeting, bool]:
        """Insert a calendar-seeded meeting unless one already exists.

        Conflicts on either bot_id or calendar_event_id leave the existing
        row untouched; that row is returned instead.

        Returns:
            (meeting, created) tuple.
        """
        stmt = (
            insert(MeetingModel)
            .values(**_upsert_values(data))
            .on_conflict_do_nothing()
            .returning(MeetingModel)
        )
        async for session in self._session_factory():
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            if model is not None:
                return _model_to_meeting(model), True

        existing = None
        if data.calendar_event_id:
            existing = await self.get_by_calendar_event_id(data.calendar_event_id)
        if existing is None:
            existing = await self.get_by_bot_id(data.bot_id)
        if existing is None:
            raise ValueError(f"Placeholder insert for {data.bot_id} conflicted but no row found")
        return existing, False

    async def replace_bot_id(self, meeting_id: uuid.UUID, bot_id: str) -> Meeting:
        """Swap a placeholder bot id for the vendor-issued one on the same row."""
        return await self.update_meeting(meeting_id, bot_id=bot_id)

    async def update_meeting(self, meeting_id: uuid.UUID, **fields: Any) -> Meeting:
        """Update columns on a meeting by primary key.

        Raises:
            ValueError: If the meeting does not exist.
        """
        values = {
            key: value.value if isinstance(value, (BotStatus, ProcessingStatus)) else value
            for key, value in fields.items()
        }
        async for session in self._session_factory():
            result = await session.execute(
                update(MeetingModel)
                .where(MeetingModel.id == meeting_id)
                .values(**values, updated_at=func.now())
                .returning(MeetingModel),
                execution_options={"populate_existing": True},
            )
            model = result.scalar_one_or_none()
            if model is None:
                raise ValueError(f"Meeting {meeting_id} not found")
            await session.commit()
            return _model_to_meeting(model)

    async def set_status_if_in(
        self,
        bot_id: str,
        status: BotStatus,
        allowed_from: Iterable[BotStatus],
    ) -> bool:
        """Conditionally set vendor status in a single statement.

        Returns:
            True if a row was updated, False if the bot is unknown or its
            current status is not in `allowed_from`.
        """
        async for session in self._session_factory():
            result = await session.execute(
                update(MeetingModel)
                .where(
                    MeetingModel.bot_id == bot_id,
                    MeetingModel.status.in_([s.value for s in allowed_from]),
                )
                .values(status=status.value, updated_at=func.now())
            )
            await session.commit()
            return result.rowcount > 0

    # ── Derived artifacts ────────────────────────────────────────────────

    async def save_transcript(
        self,
        meeting_id: uuid.UUID,
        utterances: list[Utterance],
        raw_data: dict | list | None = None,
    ) -> None:
        utterances_data = [u.model_dump(mode="json") for u in utterances]
        stmt = insert(TranscriptModel).values(
            meeting_id=meeting_id,
            utterances_data=utterances_data,
            raw_data=raw_data,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["meeting_id"],
            set_={
                "utterances_data": stmt.excluded.utterances_data,
                "raw_data": stmt.excluded.raw_data,
                "updated_at": func.now(),
            },
        )
        async for session in self._session_factory():
            await session.execute(stmt)
            await session.commit()

    async def save_diarization(self, meeting_id: uuid.UUID, entries: list[dict]) -> None:
        stmt = insert(DiarizationModel).values(meeting_id=meeting_id, entries_data=entries)
        stmt = stmt.on_conflict_do_update(
            index_elements=["meeting_id"],
            set_={"entries_data": stmt.excluded.entries_data},
        )
        async for session in self._session_factory():
            await session.execute(stmt)
            await session.commit()

    async def save_summary(self, meeting_id: uuid.UUID, summary: MeetingSummary) -> None:
        stmt = insert(SummaryModel).values(
            meeting_id=meeting_id,
            overview=summary.overview,
            key_points=summary.key_points,
            decisions=summary.decisions,
            next_steps=summary.next_steps,
            questions_data=[q.model_dump(mode="json") for q in summary.questions],
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["meeting_id"],
            set_={
                "overview": stmt.excluded.overview,
                "key_points": stmt.excluded.key_points,
                "decisions": stmt.excluded.decisions,
                "next_steps": stmt.excluded.next_steps,
                "questions_data": stmt.excluded.questions_data,
                "generated_at": func.now(),
            },
        )
        async for session in self._session_factory():
            await session.execute(stmt)
            await session.commit()

    async def replace_action_items(
        self, meeting_id: uuid.UUID, items: list[ActionItem]
    ) -> None:
        """Delete all action items for the meeting, then bulk-insert `items`."""
        async for session in self._session_factory():
            await session.execute(
                delete(ActionItemModel).where(ActionItemModel.meeting_id == meeting_id)
            )
            session.add_all(
                ActionItemModel(
                    meeting_id=meeting_id,
                    position=position,
                    description=item.description,
                    assignee=item.assignee,
                    due_date=item.due_date,
                    priority=item.priority,
                    context=item.context,
                    completed=item.completed,
                )
                for position, item in enumerate(items)
            )
            await session.commit()

    async def replace_participants(
        self, meeting_id: uuid.UUID, participants: list[Participant]
    ) -> None:
        """Replace the participant list and participant_count in one transaction."""
        async for session in self._session_factory():
            await session.execute(
                delete(ParticipantModel).where(ParticipantModel.meeting_id == meeting_id)
            )
            session.add_all(
                ParticipantModel(meeting_id=meeting_id, name=p.name, vendor_id=p.vendor_id)
                for p in participants
            )
            await session.execute(
                update(MeetingModel)
                .where(MeetingModel.id == meeting_id)
                .values(participant_count=len(participants), updated_at=func.now())
            )
            await session.commit()

    # ── User settings ────────────────────────────────────────────────────

    async def get_custom_vocabulary(self, user_id: str) -> list[str]:
        async for session in self._session_factory():
            result = await session.execute(
                select(UserSettingsModel.custom_vocabulary).where(
                    UserSettingsModel.user_id == user_id
                )
            )
            vocabulary = result.scalar_one_or_none()
            return [v for v in (vocabulary or []) if isinstance(v, str) and v.strip()]
