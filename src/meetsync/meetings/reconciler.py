"""MeetingReconciler -- applies vendor and calendar events to Meeting rows.

Events arrive at-least-once, out of order, and possibly concurrently. No
handler takes a lock or reads-then-writes to decide whether to create a
row: every creation is an upsert keyed on bot_id (or calendar_event_id for
placeholders), so duplicates converge on one record.

Lifecycle of a calendar-scheduled recording:

    calendar.event_created  -> placeholder row, bot_id "pending-<event_id>"
    bot.status_change       -> vendor status advances (never backwards)
    bot.completed           -> placeholder found by event id, bot_id swapped
                               in place, artifacts ingested

Ad-hoc bots skip the placeholder and are created (or found) by bot_id.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import IntegrityError

from src.meetsync.errors import AttributionError, OwnershipError
from src.meetsync.meetings.identity import ResolutionContext
from src.meetsync.meetings.schemas import (
    BotStatus,
    Correlation,
    Meeting,
    MeetingUpsert,
    ProcessingStatus,
    placeholder_bot_id,
)
from src.meetsync.webhooks.events import BotCompletedData

if TYPE_CHECKING:
    from src.meetsync.calendar.repository import CalendarRepository
    from src.meetsync.calendar.schemas import CalendarEvent
    from src.meetsync.meetings.bot.meetingbaas_client import MeetingBaasClient
    from src.meetsync.meetings.identity import UserResolver
    from src.meetsync.meetings.ingestion import ArtifactIngestionPipeline
    from src.meetsync.meetings.repository import MeetingRepository
    from src.meetsync.webhooks.events import CancelledInstance

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecoveryOutcome:
    """Result of a manual recovery request."""

    meeting: Meeting | None
    vendor_status: str | None
    recovered: bool


class MeetingReconciler:
    """Idempotent handlers for every event that touches a Meeting.

    Args:
        repository: MeetingRepository.
        resolver: UserResolver for events that create rows.
        client: MeetingBaasClient for scheduling and cancelling bots.
        pipeline: ArtifactIngestionPipeline run on completion.
        calendar_repository: CalendarRepository for the event cache.
        bot_name: Display-name prefix for scheduled bots.
        recording_mode: Vendor recording mode for scheduled bots.
        transcription_provider: Vendor transcription provider.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        repository: MeetingRepository,
        resolver: UserResolver,
        client: MeetingBaasClient,
        pipeline: ArtifactIngestionPipeline,
        calendar_repository: CalendarRepository,
        bot_name: str = "Potts Recorder",
        recording_mode: str = "speaker_view",
        transcription_provider: str = "gladia",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._resolver = resolver
        self._client = client
        self._pipeline = pipeline
        self._calendar_repository = calendar_repository
        self._bot_name = bot_name
        self._recording_mode = recording_mode
        self._transcription_provider = transcription_provider
        self._clock = clock

    def bot_name_for(self, title: str) -> str:
        return f"{self._bot_name} - {title}" if title else self._bot_name

    # ── Calendar events ──────────────────────────────────────────────────

    async def handle_event_created(
        self, calendar_id: str, instances: list[CalendarEvent]
    ) -> list[Meeting]:
        """Schedule bots for new future instances and seed a placeholder for each.

        A placeholder is seeded even when the vendor already flags the
        instance as bot-scheduled, so completion can always find its row.
        """
        user_id = await self._calendar_owner(calendar_id)
        if user_id is None:
            return []

        now = self._clock()
        seeded: list[Meeting] = []
        for instance in instances:
            if not instance.meeting_url or not instance.is_in_future(now):
                logger.debug(
                    "reconciler.instance_skipped",
                    calendar_id=calendar_id,
                    event_id=instance.event_id,
                    has_url=bool(instance.meeting_url),
                )
                continue
            seeded.append(await self._schedule_and_seed(user_id, calendar_id, instance))

        logger.info(
            "reconciler.event_created",
            calendar_id=calendar_id,
            instances=len(instances),
            seeded=len(seeded),
        )
        return seeded

    async def handle_event_updated(
        self, calendar_id: str, instances: list[CalendarEvent]
    ) -> list[Meeting]:
        """Refresh cached rows; schedule bots for instances that now need one."""
        now = self._clock()
        try:
            await self._calendar_repository.upsert_events(calendar_id, instances, fetched_at=now)
        except Exception:
            logger.exception("reconciler.cache_update_failed", calendar_id=calendar_id)

        needing_bot = [i for i in instances if i.needs_bot(now)]
        if not needing_bot:
            return []

        user_id = await self._calendar_owner(calendar_id)
        if user_id is None:
            return []
        return [
            await self._schedule_and_seed(user_id, calendar_id, instance)
            for instance in needing_bot
        ]

    async def handle_event_cancelled(
        self, calendar_id: str, instances: list[CancelledInstance]
    ) -> int:
        """Cancel scheduled bots for cancelled instances and drop their cache rows."""
        removed = 0
        for instance in instances:
            if instance.bot_id:
                try:
                    await self._client.cancel_scheduled_bot(instance.bot_id)
                except Exception:
                    logger.exception(
                        "reconciler.cancel_bot_failed",
                        calendar_id=calendar_id,
                        event_id=instance.event_id,
                        bot_id=instance.bot_id,
                    )
            if await self._calendar_repository.delete_event(instance.event_id):
                removed += 1

        logger.info(
            "reconciler.event_cancelled",
            calendar_id=calendar_id,
            instances=len(instances),
            removed=removed,
        )
        return removed

    async def seed_scheduled_meeting(
        self,
        user_id: str,
        calendar_id: str,
        event: CalendarEvent,
        correlation: Correlation | None = None,
    ) -> Meeting:
        """Insert the placeholder Meeting for a calendar event, or return the existing one."""
        correlation = correlation or Correlation(
            user_id=user_id,
            calendar_id=calendar_id,
            event_id=event.event_id,
            scheduled_start=event.start_time,
        )
        meeting, created = await self._repository.insert_placeholder(
            MeetingUpsert(
                bot_id=placeholder_bot_id(event.event_id),
                user_id=user_id,
                bot_name=self.bot_name_for(event.title),
                meeting_url=event.meeting_url,
                calendar_event_id=event.event_id,
                correlation=correlation,
                status=BotStatus.SCHEDULED,
                processing_status=ProcessingStatus.PENDING,
                recording_mode=self._recording_mode,
            )
        )
        logger.info(
            "reconciler.placeholder_seeded" if created else "reconciler.placeholder_exists",
            meeting_id=str(meeting.id),
            bot_id=meeting.bot_id,
            event_id=event.event_id,
        )
        return meeting

    # ── Bot events ───────────────────────────────────────────────────────

    async def handle_status_change(self, bot_id: str, status_code: str) -> bool:
        """Advance the vendor status; regressions and unknown bots are ignored.

        Returns:
            True if the stored status changed.
        """
        status = BotStatus.parse(status_code)
        if status is None:
            logger.warning("reconciler.unknown_status", bot_id=bot_id, status=status_code)
            return False

        allowed_from = [s for s in BotStatus if not s.is_terminal and s.rank <= status.rank]
        if await self._repository.set_status_if_in(bot_id, status, allowed_from):
            logger.info("reconciler.status_changed", bot_id=bot_id, status=status.value)
            return True

        meeting = await self._repository.get_by_bot_id(bot_id)
        if meeting is None:
            logger.warning("reconciler.status_for_unknown_bot", bot_id=bot_id, status=status.value)
        else:
            logger.info(
                "reconciler.status_regression_ignored",
                bot_id=bot_id,
                current=meeting.status.value,
                incoming=status.value,
            )
        return False

    async def handle_bot_failed(
        self,
        bot_id: str,
        error_code: str,
        error_message: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Meeting:
        """Mark the bot failed; processing status and artifacts are untouched.

        Raises:
            AttributionError: If no meeting exists and no user can be resolved.
        """
        correlation = Correlation.from_extra(extra)
        meeting = await self._locate_meeting(bot_id, correlation.event_id)
        created = False
        if meeting is None:
            resolved = await self._resolver.resolve_or_raise(
                ResolutionContext(correlation=correlation, bot_id=bot_id)
            )
            meeting, created = await self._create_meeting(
                MeetingUpsert(
                    bot_id=bot_id,
                    user_id=resolved.user_id,
                    calendar_event_id=correlation.event_id,
                    correlation=correlation,
                    extra=extra,
                    status=BotStatus.FAILED,
                    error_code=error_code,
                    error_message=error_message,
                )
            )
        if not created:
            meeting = await self._repository.update_meeting(
                meeting.id,
                status=BotStatus.FAILED,
                error_code=error_code,
                error_message=error_message,
            )

        logger.info(
            "reconciler.bot_failed",
            bot_id=bot_id,
            meeting_id=str(meeting.id),
            error_code=error_code,
        )
        return meeting

    async def handle_bot_completed(
        self,
        data: BotCompletedData,
        fallback_user_id: str | None = None,
    ) -> Meeting:
        """Record completion, then ingest transcript, diarization, and AI output.

        Args:
            data: Decoded bot.completed payload.
            fallback_user_id: Owner for a new row when the event is replayed
                on behalf of a known user; otherwise the resolver decides.

        Raises:
            AttributionError: If no meeting exists and no user can be resolved.
        """
        correlation = data.correlation
        event_id = data.event_id or correlation.event_id
        log = logger.bind(bot_id=data.bot_id, event_id=event_id)

        meeting = await self._locate_meeting(data.bot_id, event_id)
        if (
            meeting is not None
            and meeting.status == BotStatus.COMPLETED
            and meeting.processing_status == ProcessingStatus.COMPLETED
        ):
            log.info("reconciler.completion_replayed", meeting_id=str(meeting.id))
            return meeting

        if meeting is None:
            if fallback_user_id:
                user_id = fallback_user_id
            else:
                resolved = await self._resolver.resolve_or_raise(
                    ResolutionContext(
                        correlation=correlation,
                        bot_id=data.bot_id,
                        event_id=event_id,
                    )
                )
                user_id = resolved.user_id
            meeting, _ = await self._create_meeting(
                MeetingUpsert(
                    bot_id=data.bot_id,
                    user_id=user_id,
                    calendar_event_id=event_id,
                    correlation=correlation,
                    extra=data.extra,
                    status=BotStatus.COMPLETED,
                    processing_status=ProcessingStatus.PROCESSING,
                )
            )
            log.info("reconciler.meeting_created_on_completion", meeting_id=str(meeting.id))

        media = data.media
        meeting = await self._repository.update_meeting(
            meeting.id,
            status=BotStatus.COMPLETED,
            processing_status=ProcessingStatus.PROCESSING,
            duration_seconds=(
                int(round(data.duration_seconds)) if data.duration_seconds is not None else None
            ),
            video_url=media.video_url,
            audio_url=media.audio_url,
            transcript_url=media.transcript_url,
            diarization_url=media.diarization_url,
            correlation_data=meeting.correlation.merged_with(correlation).to_extra(),
        )
        if data.participants is not None:
            await self._repository.replace_participants(meeting.id, data.participants)

        try:
            result = await self._pipeline.ingest(meeting, media)
        except Exception:
            await self._repository.update_meeting(
                meeting.id, processing_status=ProcessingStatus.FAILED
            )
            raise

        if result.transcript_obtained:
            meeting = await self._repository.update_meeting(
                meeting.id,
                processing_status=ProcessingStatus.COMPLETED,
                completed_at=self._clock(),
            )
        else:
            meeting = await self._repository.update_meeting(
                meeting.id, processing_status=ProcessingStatus.FAILED
            )

        log.info(
            "reconciler.bot_completed",
            meeting_id=str(meeting.id),
            processing_status=meeting.processing_status.value,
            utterances=result.utterance_count,
        )
        return meeting

    # ── Manual recovery ──────────────────────────────────────────────────

    async def recover_meeting(self, bot_id: str, user_id: str) -> RecoveryOutcome:
        """Replay a missed completion by fetching the bot from the vendor.

        Raises:
            OwnershipError: If the meeting belongs to another user.
            VendorError: If the vendor lookup fails.
        """
        existing = await self._repository.get_by_bot_id(bot_id)
        if existing is not None:
            if existing.user_id != user_id:
                raise OwnershipError(f"Meeting for bot {bot_id} belongs to another user")
            if existing.processing_status == ProcessingStatus.COMPLETED:
                return RecoveryOutcome(
                    meeting=existing, vendor_status=existing.status.value, recovered=False
                )

        details = await self._client.get_bot(bot_id)
        raw_status = details.get("status")
        if isinstance(raw_status, dict):
            raw_status = raw_status.get("code")
        vendor_status = BotStatus.parse(raw_status) if isinstance(raw_status, str) else None

        if vendor_status != BotStatus.COMPLETED:
            logger.info("reconciler.recovery_not_completed", bot_id=bot_id, status=raw_status)
            return RecoveryOutcome(meeting=existing, vendor_status=raw_status, recovered=False)

        payload = BotCompletedData.model_validate({**details, "bot_id": bot_id})
        meeting = await self.handle_bot_completed(payload, fallback_user_id=user_id)
        logger.info("reconciler.meeting_recovered", bot_id=bot_id, meeting_id=str(meeting.id))
        return RecoveryOutcome(meeting=meeting, vendor_status=raw_status, recovered=True)

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _calendar_owner(self, calendar_id: str) -> str | None:
        try:
            resolved = await self._resolver.resolve_or_raise(
                ResolutionContext(calendar_id=calendar_id)
            )
        except AttributionError as exc:
            logger.warning("reconciler.calendar_unattributed", calendar_id=calendar_id, error=str(exc))
            return None
        return resolved.user_id

    async def _schedule_and_seed(
        self, user_id: str, calendar_id: str, instance: CalendarEvent
    ) -> Meeting:
        correlation = Correlation(
            user_id=user_id,
            calendar_id=calendar_id,
            event_id=instance.event_id,
            scheduled_start=instance.start_time,
        )
        if not instance.bot_scheduled:
            try:
                response = await self._client.schedule_calendar_bot(
                    calendar_id,
                    instance.event_id,
                    bot_name=self.bot_name_for(instance.title),
                    recording_mode=self._recording_mode,
                    series_id=instance.series_id,
                    correlation=correlation,
                    transcription_config={"provider": self._transcription_provider},
                )
                await self._calendar_repository.mark_bot_scheduled(
                    instance.event_id, (response or {}).get("bot_id")
                )
            except Exception:
                logger.exception(
                    "reconciler.schedule_failed",
                    calendar_id=calendar_id,
                    event_id=instance.event_id,
                )
        return await self.seed_scheduled_meeting(user_id, calendar_id, instance, correlation)

    async def _create_meeting(self, data: MeetingUpsert) -> tuple[Meeting, bool]:
        """Upsert a new row keyed on bot_id.

        A placeholder inserted for the same calendar event after the lookup
        missed trips the calendar_event_id unique constraint; that row is
        located again and returned instead.

        Returns:
            (meeting, created) tuple.
        """
        try:
            return await self._repository.upsert_meeting(data), True
        except IntegrityError:
            if not data.calendar_event_id:
                raise
            meeting = await self._locate_meeting(data.bot_id, data.calendar_event_id)
            if meeting is None:
                raise
            logger.info(
                "reconciler.concurrent_create_resolved",
                meeting_id=str(meeting.id),
                bot_id=data.bot_id,
                event_id=data.calendar_event_id,
            )
            return meeting, False

    async def _locate_meeting(self, bot_id: str, event_id: str | None) -> Meeting | None:
        """Find the row for a bot: by bot id, then by calendar event reference.

        A row found through the event reference takes over the real bot id.
        """
        meeting = await self._repository.get_by_bot_id(bot_id)
        if meeting is not None or not event_id:
            return meeting

        meeting = await self._repository.get_by_calendar_event_id(event_id)
        if meeting is None:
            meeting = await self._repository.get_by_correlation_event_id(event_id)
        if meeting is None:
            return None

        if meeting.bot_id != bot_id:
            logger.info(
                "reconciler.bot_id_swapped",
                meeting_id=str(meeting.id),
                previous=meeting.bot_id,
                bot_id=bot_id,
            )
            meeting = await self._repository.replace_bot_id(meeting.id, bot_id)
        return meeting
