"""Tests for the calendar and bot recovery endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from src.meetsync.api.deps import get_current_user_id
from src.meetsync.api.v1 import bots, calendar
from src.meetsync.calendar.schemas import AutoScheduleResult, CacheResult
from src.meetsync.config import get_settings
from src.meetsync.errors import OwnershipError, VendorError
from src.meetsync.meetings.reconciler import RecoveryOutcome
from src.meetsync.meetings.schemas import Meeting, ProcessingStatus
from tests.doubles import CALENDAR_ID, NOW, OTHER_USER_ID, USER_ID, make_event


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def cache():
    mock = AsyncMock()
    mock.get_events = AsyncMock(
        return_value=CacheResult(
            events=[
                make_event("with-link", NOW + timedelta(hours=1)),
                make_event("no-link", NOW + timedelta(hours=2), meeting_url=None),
            ],
            source="cache",
        )
    )
    return mock


@pytest.fixture
def scheduler():
    mock = AsyncMock()
    mock.run_for_user = AsyncMock(
        return_value=AutoScheduleResult(scheduled=2, failed=1, skipped=4, errors=["e1: boom"])
    )
    return mock


@pytest.fixture
def reconciler():
    return AsyncMock()


@pytest.fixture
def app(calendar_repo, cache, scheduler, reconciler):
    calendar_repo.add_account(USER_ID, CALENDAR_ID)
    app = FastAPI()
    app.include_router(calendar.router)
    app.include_router(bots.router)
    app.state.calendar_cache = cache
    app.state.calendar_repository = calendar_repo
    app.state.auto_scheduler = scheduler
    app.state.reconciler = reconciler
    app.dependency_overrides[get_current_user_id] = lambda: USER_ID
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


# ── Authentication ───────────────────────────────────────────────────────────


class TestBearerAuth:
    """get_current_user_id reads `sub` from a provider-issued token."""

    def test_missing_token_401(self, app):
        app.dependency_overrides.clear()
        response = TestClient(app).post("/calendar/force-sync")
        assert response.status_code == 401

    def test_valid_token(self, app, scheduler):
        app.dependency_overrides.clear()
        settings = get_settings()
        token = jwt.encode(
            {"sub": USER_ID, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )

        response = TestClient(app).post(
            "/calendar/force-sync", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200
        scheduler.run_for_user.assert_awaited_once_with(USER_ID)

    def test_bad_signature_401(self, app):
        app.dependency_overrides.clear()
        token = jwt.encode({"sub": USER_ID}, "some-other-secret", algorithm="HS256")
        response = TestClient(app).post(
            "/calendar/force-sync", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401


# ── GET /calendar/events ─────────────────────────────────────────────────────


class TestCalendarEvents:
    def test_returns_only_events_with_links(self, client):
        response = client.get("/calendar/events", params={"calendar_id": CALENDAR_ID})

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "cache"
        assert body["count"] == 1
        assert body["events"][0]["event_id"] == "with-link"

    def test_dates_parsed_and_forwarded(self, client, cache):
        client.get(
            "/calendar/events",
            params={
                "calendar_id": CALENDAR_ID,
                "start_date": "2025-01-20",
                "end_date": "2025-01-27T00:00:00Z",
                "force_refresh": "true",
            },
        )

        kwargs = cache.get_events.call_args.kwargs
        assert kwargs["start"] == datetime(2025, 1, 20, tzinfo=timezone.utc)
        assert kwargs["end"] == datetime(2025, 1, 27, tzinfo=timezone.utc)
        assert kwargs["force_refresh"] is True

    def test_malformed_date_400(self, client, cache):
        response = client.get(
            "/calendar/events", params={"calendar_id": CALENDAR_ID, "start_date": "next week"}
        )
        assert response.status_code == 400
        cache.get_events.assert_not_called()

    def test_foreign_calendar_404(self, client, calendar_repo):
        calendar_repo.add_account(OTHER_USER_ID, "their-calendar")
        response = client.get("/calendar/events", params={"calendar_id": "their-calendar"})
        assert response.status_code == 404

    def test_vendor_error_502(self, client, cache):
        cache.get_events.side_effect = VendorError("upstream down", status_code=503)
        response = client.get("/calendar/events", params={"calendar_id": CALENDAR_ID})
        assert response.status_code == 502


# ── POST /calendar/force-sync ────────────────────────────────────────────────


class TestForceSync:
    def test_reports_batch_result(self, client):
        response = client.post("/calendar/force-sync")

        assert response.status_code == 200
        assert response.json() == {
            "scheduled": 2,
            "failed": 1,
            "skipped": 4,
            "errors": ["e1: boom"],
        }


# ── POST /bots/{bot_id}/recover ──────────────────────────────────────────────


class TestRecoverBot:
    def test_recovered(self, client, reconciler):
        meeting = Meeting(
            id=uuid.uuid4(),
            bot_id="b1",
            user_id=USER_ID,
            processing_status=ProcessingStatus.COMPLETED,
            created_at=NOW,
            updated_at=NOW,
        )
        reconciler.recover_meeting.return_value = RecoveryOutcome(
            meeting=meeting, vendor_status="completed", recovered=True
        )

        response = client.post("/bots/b1/recover")

        assert response.status_code == 200
        body = response.json()
        assert body["recovered"] is True
        assert body["meeting_id"] == str(meeting.id)
        assert body["processing_status"] == "completed"
        reconciler.recover_meeting.assert_awaited_once_with("b1", USER_ID)

    def test_other_users_meeting_403(self, client, reconciler):
        reconciler.recover_meeting.side_effect = OwnershipError("not yours")
        assert client.post("/bots/b1/recover").status_code == 403

    def test_unknown_bot_404(self, client, reconciler):
        reconciler.recover_meeting.side_effect = VendorError("missing", status_code=404)
        assert client.post("/bots/b1/recover").status_code == 404

    def test_vendor_failure_502(self, client, reconciler):
        reconciler.recover_meeting.side_effect = VendorError("boom", status_code=500)
        assert client.post("/bots/b1/recover").status_code == 502
