"""MinutesGenerator -- summary, action items, and Q&A from a meeting transcript.

Uses instructor + litellm for structured extraction: each request names a
Pydantic response model and instructor validates (and re-asks on) the
LLM output. The three extractions are independent and run concurrently.

Custom vocabulary configured by the user (product names, people, jargon)
is appended to every system prompt so spellings in the output match.

Exports:
    MinutesGenerator: Main generation service.
    GeneratedMinutes: Result container; a part that failed is None.
    format_transcript_for_prompt: Utterances -> "Speaker N: text" lines.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import instructor
import litellm
import structlog
from pydantic import BaseModel, Field

from src.meetsync.errors import GenerationError
from src.meetsync.meetings.schemas import (
    ActionItem,
    MeetingSummary,
    QuestionAnswer,
    Utterance,
)

logger = structlog.get_logger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_MODEL = "anthropic/claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 2048


# ── Pydantic Response Models for Instructor ──────────────────────────────────


class ExtractedSummary(BaseModel):
    """Structured meeting summary extracted by the LLM."""

    overview: str = Field(
        description="2-4 sentence overview of the meeting purpose and outcome"
    )
    key_points: list[str] = Field(
        default_factory=list, description="The 3-5 most important points discussed"
    )
    decisions: list[str] = Field(
        default_factory=list, description="Explicit decisions made (may be empty)"
    )
    next_steps: list[str] = Field(
        default_factory=list, description="Follow-ups mentioned (may be empty)"
    )


class ExtractedActionItems(BaseModel):
    """All action items found in the transcript."""

    action_items: list[ActionItem] = Field(default_factory=list)


class ExtractedQuestions(BaseModel):
    """Question/answer pairs found in the transcript."""

    questions: list[QuestionAnswer] = Field(default_factory=list)


# ── System Prompts ───────────────────────────────────────────────────────────

LANGUAGE_NOTE = (
    "The transcript may contain Indonesian and/or English content. Always "
    "respond in English, translating any Indonesian content."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert meeting analyst. Analyze the meeting transcript and "
    "provide a clear, actionable summary: an overview of what the meeting was "
    "about and what it accomplished, the key points, explicit decisions, and "
    "next steps. Be concise but comprehensive. " + LANGUAGE_NOTE
)

ACTION_ITEMS_SYSTEM_PROMPT = (
    "You are an expert at identifying action items from meeting discussions. "
    "Extract only explicitly mentioned or strongly implied tasks, without "
    "duplicates. Use assignee names exactly as spoken; leave assignee and "
    "due date empty when not stated. " + LANGUAGE_NOTE
)

QA_SYSTEM_PROMPT = (
    "You are an expert at identifying questions and their answers in meeting "
    "discussions. Include implicit requests for information, skip small talk, "
    "and mark questions without a clear answer as 'Not answered'. " + LANGUAGE_NOTE
)


# ── Helpers ──────────────────────────────────────────────────────────────────


def format_transcript_for_prompt(utterances: list[Utterance]) -> str:
    return "\n".join(f"{u.speaker_label}: {u.display_text}" for u in utterances)


def _with_vocabulary(system_prompt: str, vocabulary: list[str]) -> str:
    if not vocabulary:
        return system_prompt
    return (
        f"{system_prompt}\n\nCUSTOM VOCABULARY: the following terms may appear "
        f"in the transcript; use these exact spellings: {', '.join(vocabulary)}"
    )


@dataclass
class GeneratedMinutes:
    """Generation output. A part is None when its extraction failed."""

    summary: MeetingSummary | None
    action_items: list[ActionItem] | None


# ── MinutesGenerator ─────────────────────────────────────────────────────────


class MinutesGenerator:
    """Generates summary, action items, and Q&A from transcripts.

    Args:
        model: litellm model identifier.
        max_tokens: Completion token cap per request.
        timeout: Per-request timeout in seconds.
        client: Pre-built instructor client (defaults to litellm.acompletion).
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = 60.0,
        client: Any | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client = client or instructor.from_litellm(litellm.acompletion)

    async def generate(
        self,
        utterances: list[Utterance],
        vocabulary: list[str] | None = None,
    ) -> GeneratedMinutes:
        """Run the three extractions concurrently.

        Q&A failure alone is tolerated (the summary is saved without it).

        Raises:
            GenerationError: If the transcript is empty or both the summary
                and action item extractions failed.
        """
        if not any(u.display_text.strip() for u in utterances):
            raise GenerationError("Transcript is empty")
        transcript_text = format_transcript_for_prompt(utterances)

        vocabulary = vocabulary or []
        summary_result, actions_result, questions_result = await asyncio.gather(
            self._extract(ExtractedSummary, SUMMARY_SYSTEM_PROMPT, transcript_text, vocabulary),
            self._extract(
                ExtractedActionItems, ACTION_ITEMS_SYSTEM_PROMPT, transcript_text, vocabulary
            ),
            self._extract(ExtractedQuestions, QA_SYSTEM_PROMPT, transcript_text, vocabulary),
            return_exceptions=True,
        )

        for part, result in (
            ("summary", summary_result),
            ("action_items", actions_result),
            ("questions", questions_result),
        ):
            if isinstance(result, BaseException):
                logger.warning(
                    "minutes.extraction_failed",
                    part=part,
                    error=str(result),
                    exc_info=result,
                )

        if isinstance(summary_result, BaseException) and isinstance(actions_result, BaseException):
            raise GenerationError("Summary and action item generation both failed") from summary_result

        summary = None
        if not isinstance(summary_result, BaseException):
            questions = (
                [] if isinstance(questions_result, BaseException) else questions_result.questions
            )
            summary = MeetingSummary(
                overview=summary_result.overview,
                key_points=summary_result.key_points,
                decisions=summary_result.decisions,
                next_steps=summary_result.next_steps,
                questions=questions,
            )

        action_items = None
        if not isinstance(actions_result, BaseException):
            action_items = actions_result.action_items

        logger.info(
            "minutes.generated",
            utterances=len(utterances),
            summary=summary is not None,
            action_items=len(action_items) if action_items is not None else None,
            vocabulary_terms=len(vocabulary),
        )
        return GeneratedMinutes(summary=summary, action_items=action_items)

    async def _extract(
        self,
        response_model: type[BaseModel],
        system_prompt: str,
        transcript_text: str,
        vocabulary: list[str],
    ) -> Any:
        return await self._client.chat.completions.create(
            model=self._model,
            response_model=response_model,
            messages=[
                {"role": "system", "content": _with_vocabulary(system_prompt, vocabulary)},
                {"role": "user", "content": f"Transcript:\n{transcript_text}"},
            ],
            max_tokens=self._max_tokens,
            temperature=0.1,
            timeout=self._timeout,
        )
