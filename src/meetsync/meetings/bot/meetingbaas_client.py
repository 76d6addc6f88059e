"""Async HTTP client wrapper for the MeetingBaas v2 REST API.

Provides MeetingBaasClient covering the bot lifecycle (create, status,
list, leave, delete data, retry transcription, cancel scheduled) and the
calendar integration (raw calendars, connections, events, bot scheduling).

Retry policy (tenacity AsyncRetrying):
- 429: sleep the server's Retry-After (default 1s), then retry; raises
  RateLimitError once the budget is spent
- 5xx and network errors: exponential backoff via get_retry_delay()
- any other 4xx: VendorError immediately, never retried

All methods validate ids/URLs before sending and log with structlog.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from src.meetsync.calendar.schemas import CalendarEvent, RawCalendar, VendorCalendar
from src.meetsync.core.monitoring import track_vendor_call
from src.meetsync.errors import RateLimitError, VendorError
from src.meetsync.meetings.bot.validation import (
    normalize_timestamp,
    validate_bot_id,
    validate_bot_name,
    validate_calendar_id,
    validate_meeting_url,
)
from src.meetsync.meetings.schemas import Correlation

logger = structlog.get_logger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_BASE_URL = "https://api.meetingbaas.com/v2"
API_KEY_HEADER = "x-meeting-baas-api-key"
MAX_RETRY_DELAY_MS = 30_000
DEFAULT_RETRY_AFTER_SECONDS = 1.0


def get_retry_delay(attempt: int, base_delay_ms: int = 1000) -> int:
    """Backoff delay in milliseconds for a zero-based retry attempt."""
    return min(base_delay_ms * 2**attempt, MAX_RETRY_DELAY_MS)


def _parse_retry_after(value: str | None) -> float:
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return max(float(value), 0.0)
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    if isinstance(exc, VendorError):
        return exc.status_code is not None and exc.status_code >= 500
    return isinstance(exc, httpx.TransportError)


def _unwrap(payload: Any) -> Any:
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class MeetingBaasClient:
    """Async client for the MeetingBaas REST API.

    Constructed once at startup and shared by the reconciler, calendar
    cache, and auto-scheduler.

    Args:
        api_key: MeetingBaas API key.
        base_url: API root (default: v2 production).
        timeout: Per-request timeout in seconds.
        max_retries: Retries after the first attempt.
        retry_base_ms: Base backoff delay in milliseconds.
        sleep: Awaitable sleep used between retries (injectable for tests).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_ms: int = 1000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_base_ms = retry_base_ms
        self._sleep = sleep
        self._headers = {
            API_KEY_HEADER: api_key,
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with the configured timeout."""
        return httpx.AsyncClient(headers=self._headers, timeout=self._timeout)

    # ── Transport ────────────────────────────────────────────────────────

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError) and exc.retry_after is not None:
            return exc.retry_after
        return get_retry_delay(retry_state.attempt_number - 1, self._retry_base_ms) / 1000

    async def _send(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        async with self._client() as client:
            response = await client.request(
                method,
                f"{self._base_url}{path}",
                json=json,
                params=params,
            )

        if response.status_code == 429:
            raise RateLimitError(
                "Rate limit exceeded",
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            raise VendorError(
                body.get("message") or body.get("error") or response.reason_phrase,
                code=body.get("code") or f"HTTP_{response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return _unwrap(response.json())

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        async with track_vendor_call(operation):
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self._max_retries + 1),
                    wait=self._wait,
                    retry=retry_if_exception(_is_retryable),
                    sleep=self._sleep,
                    reraise=True,
                ):
                    with attempt:
                        if attempt.retry_state.attempt_number > 1:
                            logger.info(
                                "meetingbaas.retrying",
                                operation=operation,
                                attempt=attempt.retry_state.attempt_number,
                            )
                        return await self._send(method, path, json=json, params=params)
            except httpx.TransportError as exc:
                raise VendorError(
                    f"Network error calling MeetingBaas: {exc}",
                    code="NETWORK_ERROR",
                ) from exc
            except VendorError as exc:
                logger.warning(
                    "meetingbaas.request_failed",
                    operation=operation,
                    status_code=exc.status_code,
                    code=exc.code,
                    error=str(exc),
                )
                raise

    # ── Bots ─────────────────────────────────────────────────────────────

    async def create_bot(
        self,
        meeting_url: str,
        bot_name: str,
        recording_mode: str = "speaker_view",
        correlation: Correlation | None = None,
        transcription_config: dict | None = None,
    ) -> dict:
        """Send a bot to an ad-hoc meeting.

        POST /bots

        Returns:
            Vendor response containing at least `bot_id`.
        """
        platform = validate_meeting_url(meeting_url)
        body: dict[str, Any] = {
            "meeting_url": meeting_url.strip(),
            "bot_name": validate_bot_name(bot_name),
            "recording_mode": recording_mode,
            "transcription_enabled": True,
            "transcription_config": transcription_config or {"provider": "gladia"},
        }
        if correlation is not None:
            body["extra"] = correlation.to_extra()
        data = await self._request("POST", "/bots", operation="create_bot", json=body)
        logger.info(
            "meetingbaas.bot_created",
            bot_id=data.get("bot_id"),
            platform=platform,
        )
        return data

    async def get_bot(self, bot_id: str) -> dict:
        """GET /bots/{bot_id} -- full bot details including status and artifacts."""
        validate_bot_id(bot_id)
        return await self._request("GET", f"/bots/{bot_id}", operation="get_bot")

    async def list_bots(self) -> list[dict]:
        data = await self._request("GET", "/bots", operation="list_bots")
        return data if isinstance(data, list) else []

    async def leave_meeting(self, bot_id: str) -> dict:
        """POST /bots/{bot_id}/leave -- ask the bot to leave its call."""
        validate_bot_id(bot_id)
        data = await self._request("POST", f"/bots/{bot_id}/leave", operation="leave_meeting")
        logger.info("meetingbaas.bot_leave_requested", bot_id=bot_id)
        return data if isinstance(data, dict) else {}

    async def delete_bot_data(self, bot_id: str) -> None:
        """POST /bots/{bot_id}/delete-data -- purge recordings and transcripts."""
        validate_bot_id(bot_id)
        await self._request("POST", f"/bots/{bot_id}/delete-data", operation="delete_bot_data")
        logger.info("meetingbaas.bot_data_deleted", bot_id=bot_id)

    async def retry_transcription(self, bot_id: str) -> None:
        """POST /bots/{bot_id}/retry-transcription"""
        validate_bot_id(bot_id)
        await self._request(
            "POST",
            f"/bots/{bot_id}/retry-transcription",
            operation="retry_transcription",
        )
        logger.info("meetingbaas.transcription_retry_requested", bot_id=bot_id)

    async def cancel_scheduled_bot(self, bot_id: str) -> None:
        """DELETE /bots/scheduled/{bot_id} -- cancel a calendar-scheduled bot."""
        validate_bot_id(bot_id)
        await self._request(
            "DELETE", f"/bots/scheduled/{bot_id}", operation="cancel_scheduled_bot"
        )
        logger.info("meetingbaas.scheduled_bot_cancelled", bot_id=bot_id)

    # ── Calendars ────────────────────────────────────────────────────────

    async def list_raw_calendars(
        self,
        oauth_client_id: str,
        oauth_client_secret: str,
        oauth_refresh_token: str,
        platform: str = "Google",
    ) -> list[RawCalendar]:
        """POST /calendars/list-raw -- provider calendars visible to a credential."""
        data = await self._request(
            "POST",
            "/calendars/list-raw",
            operation="list_raw_calendars",
            json={
                "platform": platform,
                "oauth_client_id": oauth_client_id,
                "oauth_client_secret": oauth_client_secret,
                "oauth_refresh_token": oauth_refresh_token,
            },
        )
        if isinstance(data, dict):
            data = data.get("calendars", [])
        return [RawCalendar.model_validate(c) for c in data or []]

    async def create_calendar(
        self,
        oauth_client_id: str,
        oauth_client_secret: str,
        oauth_refresh_token: str,
        platform: str = "google",
        raw_calendar_id: str | None = None,
    ) -> VendorCalendar:
        """Register a calendar connection with the vendor.

        POST /calendars. When no raw calendar id is given the first (primary)
        calendar visible to the credential is used.
        """
        if raw_calendar_id is None:
            raw_calendars = await self.list_raw_calendars(
                oauth_client_id,
                oauth_client_secret,
                oauth_refresh_token,
                platform="Google" if platform == "google" else "Microsoft",
            )
            if not raw_calendars:
                raise VendorError("No calendars found for this account", code="NO_CALENDARS")
            raw_calendar_id = raw_calendars[0].id

        data = await self._request(
            "POST",
            "/calendars",
            operation="create_calendar",
            json={
                "calendar_platform": platform,
                "oauth_client_id": oauth_client_id,
                "oauth_client_secret": oauth_client_secret,
                "oauth_refresh_token": oauth_refresh_token,
                "raw_calendar_id": raw_calendar_id,
            },
        )
        if isinstance(data, dict) and "calendar" in data:
            data = data["calendar"]
        calendar = VendorCalendar.from_vendor(data)
        logger.info("meetingbaas.calendar_created", calendar_id=calendar.calendar_id)
        return calendar

    async def list_calendars(self) -> list[VendorCalendar]:
        data = await self._request("GET", "/calendars", operation="list_calendars")
        return [VendorCalendar.from_vendor(c) for c in data or []] if isinstance(data, list) else []

    async def list_calendar_events(
        self,
        calendar_id: str,
        start_date: str | date | datetime | None = None,
        end_date: str | date | datetime | None = None,
        limit: int | None = None,
    ) -> list[CalendarEvent]:
        """GET /calendars/{calendar_id}/events

        Date-only bounds are expanded to midnight UTC before sending.
        """
        validate_calendar_id(calendar_id)
        params: dict[str, Any] = {}
        if start_date:
            params["start_date"] = normalize_timestamp(start_date, field="start_date")
        if end_date:
            params["end_date"] = normalize_timestamp(end_date, field="end_date")
        if limit:
            params["limit"] = limit

        data = await self._request(
            "GET",
            f"/calendars/{calendar_id}/events",
            operation="list_calendar_events",
            params=params or None,
        )
        events = [
            CalendarEvent.model_validate({"calendar_id": calendar_id, **item})
            for item in (data if isinstance(data, list) else [])
        ]
        logger.info(
            "meetingbaas.calendar_events_listed",
            calendar_id=calendar_id,
            count=len(events),
        )
        return events

    async def schedule_calendar_bot(
        self,
        calendar_id: str,
        event_id: str,
        bot_name: str,
        recording_mode: str = "speaker_view",
        series_id: str | None = None,
        correlation: Correlation | None = None,
        transcription_config: dict | None = None,
    ) -> dict:
        """POST /calendars/{calendar_id}/bots -- schedule a bot for one event."""
        validate_calendar_id(calendar_id)
        body: dict[str, Any] = {
            "event_id": event_id,
            "bot_name": validate_bot_name(bot_name),
            "recording_mode": recording_mode,
            "transcription_enabled": True,
            "transcription_config": transcription_config or {"provider": "gladia"},
        }
        if series_id:
            body["series_id"] = series_id
        if correlation is not None:
            body["extra"] = correlation.to_extra()

        data = await self._request(
            "POST",
            f"/calendars/{calendar_id}/bots",
            operation="schedule_calendar_bot",
            json=body,
        )
        data = data if isinstance(data, dict) else {}
        logger.info(
            "meetingbaas.bot_scheduled",
            calendar_id=calendar_id,
            event_id=event_id,
            bot_id=data.get("bot_id"),
        )
        return data

    async def delete_calendar(self, calendar_id: str) -> None:
        """DELETE /calendars/{calendar_id}"""
        validate_calendar_id(calendar_id)
        await self._request("DELETE", f"/calendars/{calendar_id}", operation="delete_calendar")
        logger.info("meetingbaas.calendar_deleted", calendar_id=calendar_id)
