"""Input validation for MeetingBaas API calls.

Every check raises InputValidationError so bad input is rejected before
a request is ever sent to the vendor.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

from src.meetsync.errors import InputValidationError

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

# (platform, pattern) -- first match wins
MEETING_URL_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("google_meet", re.compile(r"^https://meet\.google\.com/[a-z]{3}-[a-z]{4}-[a-z]{3}$", re.IGNORECASE)),
    ("zoom", re.compile(r"^https://([\w-]+\.)?zoom\.us/j/\d+")),
    ("teams", re.compile(r"^https://teams\.microsoft\.com/l/meetup-join/")),
    ("webex", re.compile(r"^https://[\w-]+\.webex\.com/")),
]


def detect_platform(url: str | None) -> str | None:
    """Return the meeting platform for a URL, or None if unsupported."""
    if not url:
        return None
    trimmed = url.strip()
    for platform, pattern in MEETING_URL_PATTERNS:
        if pattern.match(trimmed):
            return platform
    return None


def validate_meeting_url(url: str | None) -> str:
    """Validate a meeting URL and return its platform name."""
    if not url or not url.strip():
        raise InputValidationError("Meeting URL is required", field="meeting_url")
    platform = detect_platform(url)
    if platform is None:
        raise InputValidationError(
            "Invalid or unsupported meeting URL format", field="meeting_url"
        )
    return platform


def validate_bot_id(bot_id: str | None) -> str:
    if not bot_id or not _UUID_RE.match(bot_id):
        raise InputValidationError(f"Invalid bot ID: {bot_id!r}", field="bot_id")
    return bot_id


def validate_calendar_id(calendar_id: str | None) -> str:
    if not calendar_id or not _UUID_RE.match(calendar_id):
        raise InputValidationError(
            f"Invalid calendar ID: {calendar_id!r}", field="calendar_id"
        )
    return calendar_id


def validate_bot_name(bot_name: str | None) -> str:
    if not bot_name or not bot_name.strip():
        raise InputValidationError("Bot name is required", field="bot_name")
    return bot_name.strip()


def normalize_timestamp(value: str | datetime | date, field: str = "timestamp") -> str:
    """Return an ISO 8601 string suitable for vendor query parameters.

    Date-only input is expanded to midnight UTC (`2025-01-20` becomes
    `2025-01-20T00:00:00Z`); full datetimes are passed through unchanged.
    """
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return f"{value.isoformat()}T00:00:00Z"
    if not value or not isinstance(value, str):
        raise InputValidationError("Timestamp is required", field=field)

    text = value.strip()
    if re.fullmatch(r"\d{4}-\d{2}-\d{2}", text):
        try:
            date.fromisoformat(text)
        except ValueError as exc:
            raise InputValidationError(f"Invalid date: {value!r}", field=field) from exc
        return f"{text}T00:00:00Z"
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InputValidationError(f"Invalid timestamp: {value!r}", field=field) from exc
    return text


def parse_timestamp(value: str | datetime | date, field: str = "timestamp") -> datetime:
    """Parse an ISO 8601 timestamp (or date) into an aware UTC datetime."""
    parsed = datetime.fromisoformat(normalize_timestamp(value, field).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
