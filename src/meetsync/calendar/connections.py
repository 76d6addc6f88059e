"""Calendar connection lifecycle events.

Keeps CalendarAccount.is_active in step with the vendor's view of each
connection. Inactive accounts drop out of auto-scheduling and are cleaned
out of the event cache by the orphan sweep.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from src.meetsync.calendar.repository import CalendarRepository

logger = structlog.get_logger(__name__)


class CalendarConnectionHandler:
    """Applies calendar.connection_* and calendar.events_synced events."""

    def __init__(self, repository: CalendarRepository) -> None:
        self._repository = repository

    async def handle_connection_event(
        self,
        event: str,
        calendar_id: str,
        status: str | None = None,
        error: object | None = None,
    ) -> int:
        """Update the active flag for a connection event.

        Returns:
            Number of accounts updated.
        """
        if event == "calendar.connection_created":
            is_active = True
        elif event == "calendar.connection_updated":
            is_active = status == "active"
        elif event in ("calendar.connection_deleted", "calendar.connection_error"):
            is_active = False
        else:
            raise ValueError(f"Not a connection event: {event}")

        updated = await self._repository.set_active(calendar_id, is_active)
        log = logger.warning if event == "calendar.connection_error" else logger.info
        log(
            "calendar.connection_changed",
            webhook_event=event,
            calendar_id=calendar_id,
            is_active=is_active,
            status=status,
            error=error,
            accounts_updated=updated,
        )
        if updated == 0:
            logger.warning(
                "calendar.connection_unknown", calendar_id=calendar_id, webhook_event=event
            )
        return updated

    async def handle_events_synced(self, calendar_id: str) -> None:
        logger.info("calendar.events_synced", calendar_id=calendar_id)
