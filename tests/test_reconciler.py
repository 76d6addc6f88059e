"""Tests for MeetingReconciler.

Covers idempotent creation under duplicate deliveries, placeholder seeding
from calendar events, placeholder-to-real bot id swap on completion, the
vendor status guard, bot.failed handling, and manual recovery.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.meetsync.errors import AttributionError, OwnershipError
from src.meetsync.meetings.identity import UserResolver
from src.meetsync.meetings.ingestion import IngestionResult
from src.meetsync.meetings.reconciler import MeetingReconciler
from src.meetsync.meetings.schemas import (
    BotStatus,
    Correlation,
    MeetingUpsert,
    Participant,
    ProcessingStatus,
)
from src.meetsync.webhooks.events import BotCompletedData, CancelledInstance
from tests.doubles import CALENDAR_ID, NOW, OTHER_USER_ID, USER_ID, make_event


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def pipeline():
    """Mocked ArtifactIngestionPipeline that always obtains a transcript."""
    mock = AsyncMock()
    mock.ingest = AsyncMock(
        return_value=IngestionResult(transcript_obtained=True, utterance_count=3)
    )
    return mock


@pytest.fixture
def reconciler(meeting_repo, calendar_repo, vendor_client, pipeline):
    calendar_repo.add_account(USER_ID, CALENDAR_ID)
    return MeetingReconciler(
        repository=meeting_repo,
        resolver=UserResolver(meeting_repo, calendar_repo),
        client=vendor_client,
        pipeline=pipeline,
        calendar_repository=calendar_repo,
        bot_name="Test Recorder",
        clock=lambda: NOW,
    )


def _completed(bot_id: str, **data) -> BotCompletedData:
    return BotCompletedData.model_validate({"bot_id": bot_id, **data})


# ── bot.completed ───────────────────────────────────────────────────────────


class TestBotCompleted:
    """Tests for handle_bot_completed."""

    @pytest.mark.asyncio
    async def test_duplicate_delivery_leaves_one_row(self, reconciler, meeting_repo):
        """The same bot.completed twice produces exactly one meeting."""
        bot_id = str(uuid.uuid4())
        payload = _completed(
            bot_id,
            transcription="https://cdn.example.com/t.json",
            extra={"user_id": USER_ID},
        )

        await reconciler.handle_bot_completed(payload)
        await reconciler.handle_bot_completed(payload)

        rows = [m for m in meeting_repo.meetings.values() if m.bot_id == bot_id]
        assert len(rows) == 1
        assert rows[0].user_id == USER_ID
        assert rows[0].status == BotStatus.COMPLETED
        assert rows[0].processing_status == ProcessingStatus.COMPLETED
        assert rows[0].completed_at == NOW

    @pytest.mark.asyncio
    async def test_created_then_completed_swaps_placeholder(
        self, reconciler, meeting_repo
    ):
        """A placeholder seeded by event_created is reused and takes the real bot id."""
        event = make_event("evt-1", NOW + timedelta(days=1))
        seeded = await reconciler.handle_event_created(CALENDAR_ID, [event])
        assert seeded[0].bot_id == "pending-evt-1"

        real_bot_id = str(uuid.uuid4())
        meeting = await reconciler.handle_bot_completed(
            _completed(real_bot_id, event_id="evt-1", mp4="https://cdn.example.com/v.mp4")
        )

        assert len(meeting_repo.meetings) == 1
        assert meeting.id == seeded[0].id
        assert meeting.bot_id == real_bot_id
        assert meeting.video_url == "https://cdn.example.com/v.mp4"

    @pytest.mark.asyncio
    async def test_lookup_falls_back_to_correlation_event_id(self, reconciler, meeting_repo):
        """A row whose correlation names the event is found when the direct reference is absent."""
        existing = await meeting_repo.upsert_meeting(
            MeetingUpsert(
                bot_id="pending-old",
                user_id=USER_ID,
                correlation=Correlation(user_id=USER_ID, event_id="evt-9"),
            )
        )
        real_bot_id = str(uuid.uuid4())

        meeting = await reconciler.handle_bot_completed(
            _completed(real_bot_id, extra={"event_id": "evt-9"})
        )

        assert meeting.id == existing.id
        assert meeting.bot_id == real_bot_id

    @pytest.mark.asyncio
    async def test_unattributable_completion_writes_nothing(self, reconciler, meeting_repo):
        """No correlation, calendar, or existing row -> AttributionError, no record."""
        with pytest.raises(AttributionError):
            await reconciler.handle_bot_completed(_completed(str(uuid.uuid4())))
        assert meeting_repo.meetings == {}

    @pytest.mark.asyncio
    async def test_no_transcript_marks_processing_failed(
        self, reconciler, meeting_repo, pipeline
    ):
        """Vendor status stays completed when ingestion obtains no transcript."""
        pipeline.ingest.return_value = IngestionResult(transcript_obtained=False)

        meeting = await reconciler.handle_bot_completed(
            _completed(str(uuid.uuid4()), extra={"user_id": USER_ID})
        )

        assert meeting.status == BotStatus.COMPLETED
        assert meeting.processing_status == ProcessingStatus.FAILED
        assert meeting.completed_at is None

    @pytest.mark.asyncio
    async def test_pipeline_crash_marks_failed_and_reraises(
        self, reconciler, meeting_repo, pipeline
    ):
        pipeline.ingest.side_effect = RuntimeError("boom")
        bot_id = str(uuid.uuid4())

        with pytest.raises(RuntimeError):
            await reconciler.handle_bot_completed(_completed(bot_id, extra={"user_id": USER_ID}))

        meeting = await meeting_repo.get_by_bot_id(bot_id)
        assert meeting.processing_status == ProcessingStatus.FAILED

    @pytest.mark.asyncio
    async def test_replayed_completion_keeps_processed_meeting(
        self, reconciler, meeting_repo, pipeline
    ):
        """A late redelivery with expired artifact links does not reprocess or regress."""
        bot_id = str(uuid.uuid4())
        payload = _completed(
            bot_id,
            transcription="https://cdn.example.com/t.json",
            extra={"user_id": USER_ID},
        )
        first = await reconciler.handle_bot_completed(payload)
        pipeline.ingest.return_value = IngestionResult(transcript_obtained=False)

        again = await reconciler.handle_bot_completed(payload)

        assert again.id == first.id
        assert again.processing_status == ProcessingStatus.COMPLETED
        assert meeting_repo.meetings[first.id].processing_status == ProcessingStatus.COMPLETED
        pipeline.ingest.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_processing_is_retried_on_redelivery(
        self, reconciler, meeting_repo, pipeline
    ):
        bot_id = str(uuid.uuid4())
        payload = _completed(bot_id, extra={"user_id": USER_ID})
        pipeline.ingest.return_value = IngestionResult(transcript_obtained=False)
        await reconciler.handle_bot_completed(payload)
        pipeline.ingest.return_value = IngestionResult(transcript_obtained=True)

        meeting = await reconciler.handle_bot_completed(payload)

        assert meeting.processing_status == ProcessingStatus.COMPLETED
        assert pipeline.ingest.await_count == 2

    @pytest.mark.asyncio
    async def test_placeholder_inserted_during_creation_is_adopted(
        self, reconciler, meeting_repo
    ):
        """A placeholder committed after the lookup missed takes the real bot id."""
        event = make_event("evt-8", NOW + timedelta(hours=1))
        upsert = meeting_repo.upsert_meeting

        async def upsert_after_placeholder(data):
            await reconciler.seed_scheduled_meeting(USER_ID, CALENDAR_ID, event)
            return await upsert(data)

        meeting_repo.upsert_meeting = upsert_after_placeholder
        real_bot_id = str(uuid.uuid4())

        meeting = await reconciler.handle_bot_completed(
            _completed(real_bot_id, event_id="evt-8", extra={"user_id": USER_ID})
        )

        assert len(meeting_repo.meetings) == 1
        assert meeting.bot_id == real_bot_id
        assert meeting.calendar_event_id == "evt-8"
        assert meeting.processing_status == ProcessingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unrelated_integrity_error_propagates(self, reconciler, meeting_repo):
        meeting_repo.upsert_meeting = AsyncMock(
            side_effect=IntegrityError("INSERT INTO meetings", {}, Exception("fk_user"))
        )

        with pytest.raises(IntegrityError):
            await reconciler.handle_bot_completed(
                _completed(str(uuid.uuid4()), event_id="evt-x", extra={"user_id": USER_ID})
            )

    @pytest.mark.asyncio
    async def test_participants_and_duration_are_stored(self, reconciler, meeting_repo):
        bot_id = str(uuid.uuid4())
        meeting = await reconciler.handle_bot_completed(
            _completed(
                bot_id,
                extra={"user_id": USER_ID},
                duration_seconds=1800.4,
                participants=["Alice", {"id": 7, "name": "Bob"}],
            )
        )

        assert meeting.duration_seconds == 1800
        assert meeting.participant_count == 2
        assert meeting_repo.participants[meeting.id] == [
            Participant(name="Alice"),
            Participant(name="Bob", vendor_id="7"),
        ]


# ── Calendar events ─────────────────────────────────────────────────────────


class TestCalendarEvents:
    """Tests for event_created / event_updated / event_cancelled."""

    @pytest.mark.asyncio
    async def test_already_scheduled_instance_still_gets_placeholder(
        self, reconciler, meeting_repo, vendor_client
    ):
        """bot_scheduled=true skips the vendor call but still seeds pending-<event_id>."""
        event = make_event("evt-2", NOW + timedelta(hours=2), bot_scheduled=True)

        seeded = await reconciler.handle_event_created(CALENDAR_ID, [event])

        vendor_client.schedule_calendar_bot.assert_not_called()
        assert len(seeded) == 1
        meeting = await meeting_repo.get_by_bot_id("pending-evt-2")
        assert meeting is not None
        assert meeting.user_id == USER_ID
        assert meeting.calendar_event_id == "evt-2"
        assert meeting.status == BotStatus.SCHEDULED
        assert meeting.processing_status == ProcessingStatus.PENDING
        assert meeting.correlation.calendar_id == CALENDAR_ID
        assert meeting.correlation.event_id == "evt-2"

    @pytest.mark.asyncio
    async def test_unscheduled_instance_is_scheduled_with_correlation(
        self, reconciler, vendor_client
    ):
        event = make_event("evt-3", NOW + timedelta(hours=2), title="Planning")

        await reconciler.handle_event_created(CALENDAR_ID, [event])

        vendor_client.schedule_calendar_bot.assert_awaited_once()
        kwargs = vendor_client.schedule_calendar_bot.call_args.kwargs
        assert kwargs["bot_name"] == "Test Recorder - Planning"
        assert kwargs["correlation"].user_id == USER_ID
        assert kwargs["correlation"].event_id == "evt-3"

    @pytest.mark.asyncio
    async def test_past_and_linkless_instances_are_skipped(
        self, reconciler, meeting_repo, vendor_client
    ):
        events = [
            make_event("past", NOW - timedelta(hours=1)),
            make_event("nolink", NOW + timedelta(hours=1), meeting_url=None),
        ]

        seeded = await reconciler.handle_event_created(CALENDAR_ID, events)

        assert seeded == []
        assert meeting_repo.meetings == {}
        vendor_client.schedule_calendar_bot.assert_not_called()

    @pytest.mark.asyncio
    async def test_schedule_failure_does_not_stop_batch(
        self, reconciler, meeting_repo, vendor_client
    ):
        vendor_client.schedule_calendar_bot.side_effect = [RuntimeError("vendor down"), {}]
        events = [
            make_event("evt-a", NOW + timedelta(hours=1)),
            make_event("evt-b", NOW + timedelta(hours=2)),
        ]

        seeded = await reconciler.handle_event_created(CALENDAR_ID, events)

        assert [m.calendar_event_id for m in seeded] == ["evt-a", "evt-b"]

    @pytest.mark.asyncio
    async def test_replayed_event_created_keeps_existing_row(self, reconciler, meeting_repo):
        event = make_event("evt-4", NOW + timedelta(hours=3))
        first = await reconciler.handle_event_created(CALENDAR_ID, [event])
        second = await reconciler.handle_event_created(CALENDAR_ID, [event])

        assert first[0].id == second[0].id
        assert len(meeting_repo.meetings) == 1

    @pytest.mark.asyncio
    async def test_unknown_calendar_seeds_nothing(self, reconciler, meeting_repo):
        event = make_event("evt-5", NOW + timedelta(hours=1), calendar_id="unknown")
        assert await reconciler.handle_event_created("unknown", [event]) == []
        assert meeting_repo.meetings == {}

    @pytest.mark.asyncio
    async def test_event_updated_refreshes_cache_and_schedules(
        self, reconciler, calendar_repo, vendor_client
    ):
        event = make_event("evt-6", NOW + timedelta(hours=4))

        seeded = await reconciler.handle_event_updated(CALENDAR_ID, [event])

        assert "evt-6" in calendar_repo.events
        assert calendar_repo.fetched_at["evt-6"] == NOW
        assert len(seeded) == 1
        vendor_client.schedule_calendar_bot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_event_updated_marks_cached_row_scheduled(
        self, reconciler, calendar_repo, vendor_client
    ):
        vendor_client.schedule_calendar_bot.return_value = {"bot_id": "bot-6"}
        event = make_event("evt-6", NOW + timedelta(hours=4))

        await reconciler.handle_event_updated(CALENDAR_ID, [event])

        assert calendar_repo.events["evt-6"].bot_scheduled is True
        assert calendar_repo.events["evt-6"].bot_id == "bot-6"

    @pytest.mark.asyncio
    async def test_event_cancelled_cancels_bot_and_drops_cache_row(
        self, reconciler, calendar_repo, vendor_client
    ):
        calendar_repo.seed_events([make_event("evt-7", NOW + timedelta(hours=1))], NOW)
        bot_id = str(uuid.uuid4())

        removed = await reconciler.handle_event_cancelled(
            CALENDAR_ID, [CancelledInstance(event_id="evt-7", bot_id=bot_id)]
        )

        assert removed == 1
        assert "evt-7" not in calendar_repo.events
        vendor_client.cancel_scheduled_bot.assert_awaited_once_with(bot_id)


# ── Status guard ────────────────────────────────────────────────────────────


class TestStatusChange:
    """Tests for the monotonic vendor status guard."""

    async def _meeting(self, meeting_repo, status: BotStatus):
        return await meeting_repo.upsert_meeting(
            MeetingUpsert(bot_id="bot-1", user_id=USER_ID, status=status)
        )

    @pytest.mark.asyncio
    async def test_forward_transition_applies(self, reconciler, meeting_repo):
        await self._meeting(meeting_repo, BotStatus.JOINING_CALL)
        assert await reconciler.handle_status_change("bot-1", "in_call_recording") is True
        assert (await meeting_repo.get_by_bot_id("bot-1")).status == BotStatus.IN_CALL_RECORDING

    @pytest.mark.asyncio
    async def test_backward_transition_is_ignored(self, reconciler, meeting_repo):
        await self._meeting(meeting_repo, BotStatus.IN_CALL_RECORDING)
        assert await reconciler.handle_status_change("bot-1", "joining_call") is False
        assert (await meeting_repo.get_by_bot_id("bot-1")).status == BotStatus.IN_CALL_RECORDING

    @pytest.mark.asyncio
    async def test_pause_resume_are_lateral(self, reconciler, meeting_repo):
        await self._meeting(meeting_repo, BotStatus.RECORDING_PAUSED)
        assert await reconciler.handle_status_change("bot-1", "recording_resumed") is True

    @pytest.mark.asyncio
    async def test_terminal_status_never_reopens(self, reconciler, meeting_repo):
        await self._meeting(meeting_repo, BotStatus.COMPLETED)
        assert await reconciler.handle_status_change("bot-1", "transcribing") is False
        assert (await meeting_repo.get_by_bot_id("bot-1")).status == BotStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_status_change_leaves_processing_status(self, reconciler, meeting_repo):
        meeting = await meeting_repo.upsert_meeting(
            MeetingUpsert(
                bot_id="bot-1",
                user_id=USER_ID,
                status=BotStatus.QUEUED,
                processing_status=ProcessingStatus.PENDING,
            )
        )
        await reconciler.handle_status_change("bot-1", "joining_call")
        assert meeting_repo.meetings[meeting.id].processing_status == ProcessingStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_bot_and_unknown_code_are_ignored(self, reconciler, meeting_repo):
        assert await reconciler.handle_status_change("missing", "queued") is False
        await self._meeting(meeting_repo, BotStatus.QUEUED)
        assert await reconciler.handle_status_change("bot-1", "teleporting") is False


# ── bot.failed ──────────────────────────────────────────────────────────────


class TestBotFailed:
    """Tests for handle_bot_failed."""

    @pytest.mark.asyncio
    async def test_existing_meeting_marked_failed(self, reconciler, meeting_repo):
        """bot.failed {bot_id: b1, error_code: BOT_NOT_ACCEPTED} on an existing meeting."""
        existing = await meeting_repo.upsert_meeting(
            MeetingUpsert(
                bot_id="b1",
                user_id=USER_ID,
                status=BotStatus.IN_WAITING_ROOM,
                processing_status=ProcessingStatus.PENDING,
            )
        )

        meeting = await reconciler.handle_bot_failed("b1", "BOT_NOT_ACCEPTED")

        assert meeting.id == existing.id
        assert meeting.status == BotStatus.FAILED
        assert meeting.error_code == "BOT_NOT_ACCEPTED"
        assert meeting.processing_status == ProcessingStatus.PENDING

    @pytest.mark.asyncio
    async def test_unknown_bot_created_when_attributable(self, reconciler, meeting_repo):
        meeting = await reconciler.handle_bot_failed(
            "b2", "MEETING_ENDED", "Nobody joined", extra={"user_id": USER_ID}
        )
        assert meeting.user_id == USER_ID
        assert meeting.status == BotStatus.FAILED
        assert meeting.error_message == "Nobody joined"

    @pytest.mark.asyncio
    async def test_unknown_unattributable_bot_raises(self, reconciler, meeting_repo):
        with pytest.raises(AttributionError):
            await reconciler.handle_bot_failed("b3", "MEETING_ENDED")
        assert meeting_repo.meetings == {}

    @pytest.mark.asyncio
    async def test_placeholder_inserted_during_creation_is_marked_failed(
        self, reconciler, meeting_repo
    ):
        event = make_event("evt-9", NOW + timedelta(hours=1))
        upsert = meeting_repo.upsert_meeting

        async def upsert_after_placeholder(data):
            await reconciler.seed_scheduled_meeting(USER_ID, CALENDAR_ID, event)
            return await upsert(data)

        meeting_repo.upsert_meeting = upsert_after_placeholder

        meeting = await reconciler.handle_bot_failed(
            "b4", "BOT_NOT_ACCEPTED", extra={"user_id": USER_ID, "event_id": "evt-9"}
        )

        assert len(meeting_repo.meetings) == 1
        assert meeting.bot_id == "b4"
        assert meeting.status == BotStatus.FAILED
        assert meeting.error_code == "BOT_NOT_ACCEPTED"


# ── Manual recovery ─────────────────────────────────────────────────────────


class TestRecovery:
    """Tests for recover_meeting."""

    @pytest.mark.asyncio
    async def test_other_users_meeting_is_forbidden(self, reconciler, meeting_repo):
        await meeting_repo.upsert_meeting(MeetingUpsert(bot_id="b1", user_id=OTHER_USER_ID))
        with pytest.raises(OwnershipError):
            await reconciler.recover_meeting("b1", USER_ID)

    @pytest.mark.asyncio
    async def test_completed_meeting_is_left_alone(self, reconciler, meeting_repo, vendor_client):
        await meeting_repo.upsert_meeting(
            MeetingUpsert(
                bot_id="b1",
                user_id=USER_ID,
                processing_status=ProcessingStatus.COMPLETED,
            )
        )
        outcome = await reconciler.recover_meeting("b1", USER_ID)

        assert outcome.recovered is False
        vendor_client.get_bot.assert_not_called()

    @pytest.mark.asyncio
    async def test_completed_vendor_bot_is_replayed(self, reconciler, meeting_repo, vendor_client):
        vendor_client.get_bot.return_value = {
            "bot_id": "b9",
            "status": {"code": "completed"},
            "transcription": "https://cdn.example.com/t.json",
            "video": "https://cdn.example.com/v.mp4",
        }

        outcome = await reconciler.recover_meeting("b9", USER_ID)

        assert outcome.recovered is True
        assert outcome.meeting.user_id == USER_ID
        assert outcome.meeting.video_url == "https://cdn.example.com/v.mp4"
        assert outcome.meeting.processing_status == ProcessingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_bot_still_running_is_not_replayed(self, reconciler, meeting_repo, vendor_client):
        vendor_client.get_bot.return_value = {"status": "in_call_recording"}

        outcome = await reconciler.recover_meeting("b9", USER_ID)

        assert outcome.recovered is False
        assert outcome.vendor_status == "in_call_recording"
        assert meeting_repo.meetings == {}
