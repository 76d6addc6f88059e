"""ArtifactIngestionPipeline -- transcript, diarization, and AI output for a completed bot.

Runs inside bot.completed handling, after the meeting row has been marked
`processing`. Each stage degrades independently:

- transcript download/parse failure -> logged as ArtifactError, no transcript
- diarization failure               -> logged, transcript still kept
- AI generation failure             -> logged, summary/action items absent

Only the presence of a transcript decides whether processing completed,
which the reconciler reads from IngestionResult.transcript_obtained.

Vendor artifact URLs are presigned and expire, so downloads happen here
rather than lazily on first view.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.meetsync.errors import ArtifactError, GenerationError
from src.meetsync.meetings.schemas import MediaUrls, Meeting, Utterance

if TYPE_CHECKING:
    from src.meetsync.meetings.minutes.generator import MinutesGenerator
    from src.meetsync.meetings.repository import MeetingRepository

logger = structlog.get_logger(__name__)

_artifact_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
    reraise=True,
)


# ── Parsing ──────────────────────────────────────────────────────────────────


def extract_utterances(payload: Any) -> list[Utterance]:
    """Pull utterances out of any of the vendor's transcript shapes.

    Accepts a bare list, `{"utterances": [...]}`, or
    `{"result": {"utterances": [...]}}`; anything else yields [].
    """
    if isinstance(payload, dict):
        if isinstance(payload.get("utterances"), list):
            payload = payload["utterances"]
        elif isinstance(payload.get("result"), dict) and isinstance(
            payload["result"].get("utterances"), list
        ):
            payload = payload["result"]["utterances"]
    if not isinstance(payload, list):
        return []

    utterances: list[Utterance] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        try:
            utterances.append(Utterance.model_validate(item))
        except ValidationError:
            logger.debug("ingestion.utterance_dropped", keys=sorted(item))
    return utterances


def parse_jsonl(text: str) -> list[dict]:
    """Parse line-delimited JSON, dropping blank and malformed lines individually."""
    entries: list[dict] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries


# ── Downloads ────────────────────────────────────────────────────────────────


class ArtifactFetcher:
    """Downloads presigned vendor artifacts.

    Args:
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    @_artifact_retry
    async def _get(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response

    async def fetch_json(self, url: str) -> Any:
        try:
            response = await self._get(url)
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ArtifactError(f"Failed to fetch JSON artifact: {exc}") from exc

    async def fetch_text(self, url: str) -> str:
        try:
            response = await self._get(url)
        except httpx.HTTPError as exc:
            raise ArtifactError(f"Failed to fetch artifact: {exc}") from exc
        return response.text


# ── Pipeline ─────────────────────────────────────────────────────────────────


@dataclass
class IngestionResult:
    transcript_obtained: bool = False
    utterance_count: int = 0
    diarization_entries: int | None = None
    summary_saved: bool = False
    action_item_count: int | None = None


class ArtifactIngestionPipeline:
    """Fetches and persists post-meeting artifacts, then runs AI generation.

    Args:
        repository: MeetingRepository for transcript/summary persistence.
        fetcher: ArtifactFetcher for presigned URL downloads.
        minutes_generator: MinutesGenerator, or None to skip AI output.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        fetcher: ArtifactFetcher,
        minutes_generator: MinutesGenerator | None = None,
    ) -> None:
        self._repository = repository
        self._fetcher = fetcher
        self._minutes_generator = minutes_generator

    async def ingest(self, meeting: Meeting, media: MediaUrls) -> IngestionResult:
        result = IngestionResult()
        log = logger.bind(meeting_id=str(meeting.id), bot_id=meeting.bot_id)

        utterances = await self._ingest_transcript(meeting, media, result, log)

        if media.diarization_url:
            await self._ingest_diarization(meeting, media.diarization_url, result, log)

        generator = self._minutes_generator
        if utterances and generator is not None:
            await self._generate_minutes(generator, meeting, utterances, result, log)

        log.info(
            "ingestion.finished",
            transcript_obtained=result.transcript_obtained,
            utterances=result.utterance_count,
            diarization_entries=result.diarization_entries,
            summary_saved=result.summary_saved,
            action_items=result.action_item_count,
        )
        return result

    async def _ingest_transcript(
        self,
        meeting: Meeting,
        media: MediaUrls,
        result: IngestionResult,
        log: Any,
    ) -> list[Utterance]:
        if not media.transcript_url:
            log.warning("ingestion.no_transcript_url")
            return []

        try:
            payload = await self._fetcher.fetch_json(media.transcript_url)
        except ArtifactError:
            log.exception("ingestion.transcript_fetch_failed")
            return []
        utterances = extract_utterances(payload)

        raw_data = None
        if media.raw_transcript_url:
            try:
                raw_data = await self._fetcher.fetch_json(media.raw_transcript_url)
            except ArtifactError as exc:
                log.warning("ingestion.raw_transcript_fetch_failed", error=str(exc))

        try:
            await self._repository.save_transcript(meeting.id, utterances, raw_data=raw_data)
        except Exception:
            log.exception("ingestion.transcript_save_failed", utterances=len(utterances))
            return []
        result.transcript_obtained = True
        result.utterance_count = len(utterances)
        log.info("ingestion.transcript_saved", utterances=len(utterances))
        return utterances

    async def _ingest_diarization(
        self,
        meeting: Meeting,
        url: str,
        result: IngestionResult,
        log: Any,
    ) -> None:
        try:
            text = await self._fetcher.fetch_text(url)
        except ArtifactError as exc:
            log.warning("ingestion.diarization_fetch_failed", error=str(exc))
            return
        entries = parse_jsonl(text)
        try:
            await self._repository.save_diarization(meeting.id, entries)
        except Exception:
            log.exception("ingestion.diarization_save_failed", entries=len(entries))
            return
        result.diarization_entries = len(entries)
        log.info("ingestion.diarization_saved", entries=len(entries))

    async def _generate_minutes(
        self,
        generator: MinutesGenerator,
        meeting: Meeting,
        utterances: list[Utterance],
        result: IngestionResult,
        log: Any,
    ) -> None:
        try:
            vocabulary = await self._repository.get_custom_vocabulary(meeting.user_id)
            minutes = await generator.generate(utterances, vocabulary)
        except GenerationError as exc:
            log.warning("ingestion.generation_failed", error=str(exc))
            return
        except Exception:
            log.exception("ingestion.generation_error")
            return

        if minutes.summary is not None:
            await self._repository.save_summary(meeting.id, minutes.summary)
            result.summary_saved = True
        if minutes.action_items is not None:
            await self._repository.replace_action_items(meeting.id, minutes.action_items)
            result.action_item_count = len(minutes.action_items)
