"""UserResolver -- attributes inbound vendor events to an owning user.

Strategies run in a fixed order and the first match wins, even if a later
strategy would name a different user:

1. correlation  -- `user_id` echoed back in the bot's correlation blob
2. calendar     -- owner of the CalendarAccount linked to the calendar id
3. bot_id       -- owner of an existing Meeting with this bot id
4. event_id     -- owner of an existing Meeting for this calendar event
                   (direct reference first, then correlation blob)

No strategy ever falls back to a default user. An event that cannot be
attributed is rejected so no orphaned rows are written.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from src.meetsync.errors import AttributionError
from src.meetsync.meetings.schemas import Correlation

if TYPE_CHECKING:
    from src.meetsync.calendar.repository import CalendarRepository
    from src.meetsync.meetings.repository import MeetingRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolutionContext:
    """Everything an inbound event offers for attribution."""

    correlation: Correlation = field(default_factory=Correlation)
    calendar_id: str | None = None
    bot_id: str | None = None
    event_id: str | None = None

    @property
    def effective_calendar_id(self) -> str | None:
        return self.calendar_id or self.correlation.calendar_id

    @property
    def effective_event_id(self) -> str | None:
        return self.event_id or self.correlation.event_id


@dataclass(frozen=True)
class ResolvedUser:
    user_id: str
    strategy: str


Strategy = Callable[[ResolutionContext], Awaitable[str | None]]


class UserResolver:
    """Ordered fallback chain mapping an event to a user id.

    Args:
        meeting_repository: Lookups for existing meetings.
        calendar_repository: Lookups for calendar accounts.
    """

    def __init__(
        self,
        meeting_repository: MeetingRepository,
        calendar_repository: CalendarRepository,
    ) -> None:
        self._meetings = meeting_repository
        self._calendars = calendar_repository
        self._strategies: list[tuple[str, Strategy]] = [
            ("correlation", self._from_correlation),
            ("calendar", self._from_calendar),
            ("bot_id", self._from_bot_id),
            ("event_id", self._from_event_id),
        ]

    async def resolve(self, context: ResolutionContext) -> ResolvedUser | None:
        for name, strategy in self._strategies:
            try:
                user_id = await strategy(context)
            except Exception:
                logger.exception("user_resolver.strategy_error", strategy=name)
                continue
            if user_id:
                logger.debug("user_resolver.resolved", strategy=name, user_id=user_id)
                return ResolvedUser(user_id=user_id, strategy=name)

        logger.warning(
            "user_resolver.unresolved",
            bot_id=context.bot_id,
            calendar_id=context.effective_calendar_id,
            event_id=context.effective_event_id,
        )
        return None

    async def resolve_or_raise(self, context: ResolutionContext) -> ResolvedUser:
        resolved = await self.resolve(context)
        if resolved is None:
            raise AttributionError(
                f"Cannot attribute event (bot_id={context.bot_id}, "
                f"calendar_id={context.effective_calendar_id}, "
                f"event_id={context.effective_event_id}) to a user"
            )
        return resolved

    # ── Strategies ───────────────────────────────────────────────────────

    async def _from_correlation(self, context: ResolutionContext) -> str | None:
        user_id = context.correlation.user_id
        return user_id if isinstance(user_id, str) and user_id else None

    async def _from_calendar(self, context: ResolutionContext) -> str | None:
        calendar_id = context.effective_calendar_id
        if not calendar_id:
            return None
        account = await self._calendars.get_account_by_calendar_id(calendar_id)
        return account.user_id if account else None

    async def _from_bot_id(self, context: ResolutionContext) -> str | None:
        if not context.bot_id:
            return None
        meeting = await self._meetings.get_by_bot_id(context.bot_id)
        return meeting.user_id if meeting else None

    async def _from_event_id(self, context: ResolutionContext) -> str | None:
        event_id = context.effective_event_id
        if not event_id:
            return None
        meeting = await self._meetings.get_by_calendar_event_id(event_id)
        if meeting is None:
            meeting = await self._meetings.get_by_correlation_event_id(event_id)
        return meeting.user_id if meeting else None
