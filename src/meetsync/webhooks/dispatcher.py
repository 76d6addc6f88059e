"""WebhookDispatcher -- routes authenticated webhook envelopes to handlers.

The dispatcher never raises. The vendor retries any non-2xx response, and
a payload that failed once will fail again, so every outcome past
authentication is logged, counted, and acknowledged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from src.meetsync.core.monitoring import webhook_events_total
from src.meetsync.webhooks.events import (
    KNOWN_EVENTS,
    BotCompletedEvent,
    BotFailedEvent,
    BotStatusChangeEvent,
    CalendarConnectionEvent,
    CalendarEventCancelledEvent,
    CalendarEventCreatedEvent,
    CalendarEventsSyncedEvent,
    CalendarEventUpdatedEvent,
    WebhookEvent,
    parse_webhook_event,
)

if TYPE_CHECKING:
    from src.meetsync.calendar.connections import CalendarConnectionHandler
    from src.meetsync.meetings.reconciler import MeetingReconciler

logger = structlog.get_logger(__name__)


class WebhookDispatcher:
    """Decodes an envelope into a typed event and invokes its handler.

    Args:
        reconciler: MeetingReconciler for bot and calendar-event events.
        connections: CalendarConnectionHandler for connection events.
    """

    def __init__(
        self,
        reconciler: MeetingReconciler,
        connections: CalendarConnectionHandler,
    ) -> None:
        self._reconciler = reconciler
        self._connections = connections

    async def dispatch(self, envelope: dict[str, Any]) -> str:
        """Handle one envelope and return its outcome label.

        Outcomes: "processed", "unknown", "invalid", "error".
        """
        event_name = envelope.get("event")
        if event_name not in KNOWN_EVENTS:
            logger.warning("webhook.unknown_event", webhook_event=event_name)
            webhook_events_total.labels(event="unknown", outcome="unknown").inc()
            return "unknown"

        try:
            event = parse_webhook_event(envelope)
        except ValidationError as exc:
            logger.exception(
                "webhook.invalid_payload",
                webhook_event=event_name,
                errors=exc.error_count(),
            )
            webhook_events_total.labels(event=event_name, outcome="invalid").inc()
            return "invalid"

        try:
            await self._route(event)
        except Exception:
            logger.exception("webhook.handler_error", webhook_event=event_name)
            webhook_events_total.labels(event=event_name, outcome="error").inc()
            return "error"

        webhook_events_total.labels(event=event_name, outcome="processed").inc()
        return "processed"

    async def _route(self, event: WebhookEvent) -> None:
        if isinstance(event, BotCompletedEvent):
            logger.info("webhook.bot_completed", bot_id=event.data.bot_id)
            await self._reconciler.handle_bot_completed(event.data)

        elif isinstance(event, BotFailedEvent):
            logger.info(
                "webhook.bot_failed",
                bot_id=event.data.bot_id,
                error_code=event.data.error_code,
            )
            await self._reconciler.handle_bot_failed(
                event.data.bot_id,
                event.data.error_code,
                error_message=event.data.error_message,
                extra=event.data.extra,
            )

        elif isinstance(event, BotStatusChangeEvent):
            logger.info(
                "webhook.bot_status_change",
                bot_id=event.data.bot_id,
                status=event.data.status.code,
            )
            await self._reconciler.handle_status_change(
                event.data.bot_id, event.data.status.code
            )

        elif isinstance(event, CalendarEventCreatedEvent):
            await self._reconciler.handle_event_created(
                event.data.calendar_id, event.data.instances
            )

        elif isinstance(event, CalendarEventUpdatedEvent):
            await self._reconciler.handle_event_updated(
                event.data.calendar_id, event.data.instances
            )

        elif isinstance(event, CalendarEventCancelledEvent):
            await self._reconciler.handle_event_cancelled(
                event.data.calendar_id, event.data.cancelled_instances
            )

        elif isinstance(event, CalendarConnectionEvent):
            await self._connections.handle_connection_event(
                event.event,
                event.data.calendar_id,
                status=event.data.status,
                error=event.data.error,
            )

        elif isinstance(event, CalendarEventsSyncedEvent):
            await self._connections.handle_events_synced(event.data.calendar_id)
