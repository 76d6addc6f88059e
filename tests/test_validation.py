"""Tests for vendor input validation helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.meetsync.errors import InputValidationError
from src.meetsync.meetings.bot.validation import (
    detect_platform,
    normalize_timestamp,
    parse_timestamp,
    validate_bot_id,
    validate_meeting_url,
)


class TestMeetingUrls:
    @pytest.mark.parametrize(
        "url,platform",
        [
            ("https://meet.google.com/abc-defg-hij", "google_meet"),
            ("https://us02web.zoom.us/j/123456789?pwd=x", "zoom"),
            ("https://teams.microsoft.com/l/meetup-join/19%3ameeting", "teams"),
            ("https://acme.webex.com/meet/jdoe", "webex"),
        ],
    )
    def test_supported_platforms(self, url, platform):
        assert validate_meeting_url(url) == platform

    def test_unsupported_url(self):
        assert detect_platform("https://example.com/room") is None
        with pytest.raises(InputValidationError) as exc_info:
            validate_meeting_url("https://example.com/room")
        assert exc_info.value.field == "meeting_url"

    def test_blank_url(self):
        with pytest.raises(InputValidationError):
            validate_meeting_url("  ")


class TestIds:
    def test_uuid_accepted(self):
        bot_id = "6f1f0c4e-4a53-4d0e-9b8e-0b6a3c1f2d7e"
        assert validate_bot_id(bot_id) == bot_id

    def test_placeholder_rejected(self):
        with pytest.raises(InputValidationError):
            validate_bot_id("pending-evt-1")


class TestTimestamps:
    def test_date_only_expanded_to_midnight_utc(self):
        assert normalize_timestamp("2025-01-20") == "2025-01-20T00:00:00Z"

    def test_full_timestamp_passed_through(self):
        assert normalize_timestamp("2025-01-20T10:30:00+02:00") == "2025-01-20T10:30:00+02:00"

    def test_invalid_date(self):
        with pytest.raises(InputValidationError):
            normalize_timestamp("2025-02-30")

    def test_garbage(self):
        with pytest.raises(InputValidationError):
            normalize_timestamp("tomorrow", field="start_date")

    def test_parse_naive_assumed_utc(self):
        assert parse_timestamp("2025-01-20T10:30:00") == datetime(
            2025, 1, 20, 10, 30, tzinfo=timezone.utc
        )
