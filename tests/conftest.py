"""Shared test fixtures.

Provides:
- meeting_repo / calendar_repo: in-memory repository doubles
- vendor_client: AsyncMock standing in for MeetingBaasClient
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest

from tests.doubles import InMemoryCalendarRepository, InMemoryMeetingRepository


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def meeting_repo():
    return InMemoryMeetingRepository()


@pytest.fixture
def calendar_repo():
    return InMemoryCalendarRepository()


@pytest.fixture
def vendor_client():
    """Mocked MeetingBaasClient."""
    client = AsyncMock()
    client.schedule_calendar_bot = AsyncMock(return_value={"bot_id": str(uuid.uuid4())})
    client.cancel_scheduled_bot = AsyncMock(return_value=None)
    client.list_calendar_events = AsyncMock(return_value=[])
    client.list_calendars = AsyncMock(return_value=[])
    client.get_bot = AsyncMock(return_value={})
    return client
