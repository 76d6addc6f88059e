"""Tests for the artifact ingestion pipeline.

Covers transcript shape handling, JSONL diarization parsing, independent
degradation of each stage, and the fetcher's error wrapping.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.meetsync.errors import ArtifactError, GenerationError
from src.meetsync.meetings.ingestion import (
    ArtifactFetcher,
    ArtifactIngestionPipeline,
    extract_utterances,
    parse_jsonl,
)
from src.meetsync.meetings.minutes.generator import GeneratedMinutes
from src.meetsync.meetings.schemas import (
    ActionItem,
    MediaUrls,
    Meeting,
    MeetingSummary,
)
from tests.doubles import USER_ID

TRANSCRIPT_URL = "https://cdn.example.com/transcript.json"
RAW_URL = "https://cdn.example.com/raw.json"
DIARIZATION_URL = "https://cdn.example.com/diarization.jsonl"

UTTERANCES = [
    {"speaker": 0, "text": "Let's start.", "start": 0.0, "end": 1.5},
    {"speaker": 1, "words": [{"text": "Sounds"}, {"text": "good"}]},
]


def _meeting() -> Meeting:
    now = datetime.now(timezone.utc)
    return Meeting(bot_id="bot-1", user_id=USER_ID, created_at=now, updated_at=now)


# ── Parsing ──────────────────────────────────────────────────────────────────


class TestExtractUtterances:
    """All vendor transcript shapes decode to the same list."""

    def test_bare_list(self):
        assert len(extract_utterances(UTTERANCES)) == 2

    def test_utterances_key(self):
        assert len(extract_utterances({"utterances": UTTERANCES})) == 2

    def test_nested_result(self):
        utterances = extract_utterances({"result": {"utterances": UTTERANCES}})
        assert utterances[1].display_text == "Sounds good"
        assert utterances[1].speaker_label == "Speaker 1"

    def test_unknown_shape_is_empty(self):
        assert extract_utterances({"text": "hello"}) == []
        assert extract_utterances("nope") == []

    def test_non_dict_items_dropped(self):
        assert len(extract_utterances([UTTERANCES[0], "junk", 42])) == 1


class TestParseJsonl:
    def test_malformed_lines_dropped_individually(self):
        text = '{"speaker": "A", "start": 0}\n\nnot json\n[1, 2]\n{"speaker": "B", "start": 3}\n'
        entries = parse_jsonl(text)
        assert [e["speaker"] for e in entries] == ["A", "B"]


# ── Pipeline ─────────────────────────────────────────────────────────────────


@pytest.fixture
def fetcher():
    mock = AsyncMock()
    mock.fetch_json = AsyncMock(return_value={"utterances": UTTERANCES})
    mock.fetch_text = AsyncMock(return_value='{"speaker": "A"}\n{"speaker": "B"}\n')
    return mock


@pytest.fixture
def generator():
    mock = AsyncMock()
    mock.generate = AsyncMock(
        return_value=GeneratedMinutes(
            summary=MeetingSummary(overview="Kickoff"),
            action_items=[ActionItem(description="Send notes")],
        )
    )
    return mock


class TestArtifactIngestionPipeline:
    """Each stage degrades without taking the others down."""

    @pytest.mark.asyncio
    async def test_full_ingestion(self, meeting_repo, fetcher, generator):
        meeting = _meeting()
        meeting_repo.vocabulary[USER_ID] = ["MeetSync"]
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher, generator)

        result = await pipeline.ingest(
            meeting,
            MediaUrls(transcript_url=TRANSCRIPT_URL, diarization_url=DIARIZATION_URL),
        )

        assert result.transcript_obtained is True
        assert result.utterance_count == 2
        assert result.diarization_entries == 2
        assert result.summary_saved is True
        assert result.action_item_count == 1
        assert meeting_repo.summaries[meeting.id].overview == "Kickoff"
        assert generator.generate.call_args.args[1] == ["MeetSync"]

    @pytest.mark.asyncio
    async def test_raw_transcript_stored_alongside(self, meeting_repo, fetcher):
        meeting = _meeting()
        fetcher.fetch_json.side_effect = [{"utterances": UTTERANCES}, {"provider": "gladia"}]
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher)

        await pipeline.ingest(
            meeting, MediaUrls(transcript_url=TRANSCRIPT_URL, raw_transcript_url=RAW_URL)
        )

        assert meeting_repo.transcripts[meeting.id]["raw_data"] == {"provider": "gladia"}

    @pytest.mark.asyncio
    async def test_missing_transcript_url(self, meeting_repo, fetcher, generator):
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher, generator)

        result = await pipeline.ingest(_meeting(), MediaUrls())

        assert result.transcript_obtained is False
        fetcher.fetch_json.assert_not_called()
        generator.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_transcript_fetch_failure(self, meeting_repo, fetcher):
        fetcher.fetch_json.side_effect = ArtifactError("expired")
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher)

        result = await pipeline.ingest(_meeting(), MediaUrls(transcript_url=TRANSCRIPT_URL))

        assert result.transcript_obtained is False
        assert meeting_repo.transcripts == {}

    @pytest.mark.asyncio
    async def test_diarization_failure_keeps_transcript(self, meeting_repo, fetcher):
        fetcher.fetch_text.side_effect = ArtifactError("gone")
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher)

        result = await pipeline.ingest(
            _meeting(),
            MediaUrls(transcript_url=TRANSCRIPT_URL, diarization_url=DIARIZATION_URL),
        )

        assert result.transcript_obtained is True
        assert result.diarization_entries is None

    @pytest.mark.asyncio
    async def test_diarization_save_failure_keeps_transcript(
        self, meeting_repo, fetcher, generator
    ):
        meeting = _meeting()
        meeting_repo.save_diarization = AsyncMock(side_effect=RuntimeError("db down"))
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher, generator)

        result = await pipeline.ingest(
            meeting,
            MediaUrls(transcript_url=TRANSCRIPT_URL, diarization_url=DIARIZATION_URL),
        )

        assert result.transcript_obtained is True
        assert result.diarization_entries is None
        assert meeting.id in meeting_repo.transcripts
        assert result.summary_saved is True

    @pytest.mark.asyncio
    async def test_transcript_save_failure_reports_no_transcript(
        self, meeting_repo, fetcher, generator
    ):
        meeting_repo.save_transcript = AsyncMock(side_effect=RuntimeError("db down"))
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher, generator)

        result = await pipeline.ingest(_meeting(), MediaUrls(transcript_url=TRANSCRIPT_URL))

        assert result.transcript_obtained is False
        generator.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_generation_failure_keeps_transcript(self, meeting_repo, fetcher, generator):
        generator.generate.side_effect = GenerationError("LLM unavailable")
        meeting = _meeting()
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher, generator)

        result = await pipeline.ingest(meeting, MediaUrls(transcript_url=TRANSCRIPT_URL))

        assert result.transcript_obtained is True
        assert result.summary_saved is False
        assert meeting.id not in meeting_repo.summaries

    @pytest.mark.asyncio
    async def test_partial_generation_saves_what_succeeded(
        self, meeting_repo, fetcher, generator
    ):
        generator.generate.return_value = GeneratedMinutes(summary=None, action_items=[])
        meeting = _meeting()
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher, generator)

        result = await pipeline.ingest(meeting, MediaUrls(transcript_url=TRANSCRIPT_URL))

        assert result.summary_saved is False
        assert result.action_item_count == 0
        assert meeting_repo.action_items[meeting.id] == []

    @pytest.mark.asyncio
    async def test_empty_transcript_skips_generation(self, meeting_repo, fetcher, generator):
        fetcher.fetch_json.return_value = {"utterances": []}
        pipeline = ArtifactIngestionPipeline(meeting_repo, fetcher, generator)

        result = await pipeline.ingest(_meeting(), MediaUrls(transcript_url=TRANSCRIPT_URL))

        assert result.transcript_obtained is True
        generator.generate.assert_not_called()


# ── Fetcher ──────────────────────────────────────────────────────────────────


class TestArtifactFetcher:
    @pytest.mark.asyncio
    async def test_fetch_json(self):
        response = httpx.Response(
            200, json={"utterances": []}, request=httpx.Request("GET", TRANSCRIPT_URL)
        )
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=response):
            assert await ArtifactFetcher().fetch_json(TRANSCRIPT_URL) == {"utterances": []}

    @pytest.mark.asyncio
    async def test_invalid_json_raises_artifact_error(self):
        response = httpx.Response(
            200, text="<html>", request=httpx.Request("GET", TRANSCRIPT_URL)
        )
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=response):
            with pytest.raises(ArtifactError):
                await ArtifactFetcher().fetch_json(TRANSCRIPT_URL)
