"""Test support: event builders and in-memory collaborators.

Free of pytest so they can be used from any test tree or a local dry run.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from calpresence.models import (
    CalendarEvent,
    ChatMessage,
    ChatStatus,
    ChatUser,
    Presence,
    ShowAs,
    UserSettings,
)
from calpresence.providers import (
    DEFAULT_WINDOW_MINUTES,
    CalendarProvider,
    ChatProvider,
    SettingsStore,
)

BASE_TIME = datetime(2020, 3, 1, 15, 0, tzinfo=UTC)


def make_event(
    event_id: str = "1",
    *,
    name: str = "Quick Chat",
    show_as: ShowAs = ShowAs.BUSY,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    location: str = "",
    body: str = "",
) -> CalendarEvent:
    start = start_time or BASE_TIME
    return CalendarEvent(
        id=event_id,
        name=name,
        start_time=start,
        end_time=end_time or start + timedelta(minutes=30),
        location=location,
        body=body,
        show_as=show_as,
    )


class StaticCalendarProvider(CalendarProvider):
    """Serves fixed events per window size; ``None`` entries simulate auth failure."""

    def __init__(
        self,
        events: Sequence[CalendarEvent] | None = (),
        *,
        by_window: dict[int, Sequence[CalendarEvent] | None] | None = None,
    ) -> None:
        self._events = None if events is None else list(events)
        self._by_window = dict(by_window or {})
        self.calls: list[tuple[str, int]] = []

    async def get_events(
        self,
        user_id: str,
        token: dict[str, Any] | None,
        window_minutes: int = DEFAULT_WINDOW_MINUTES,
    ) -> list[CalendarEvent] | None:
        self.calls.append((user_id, window_minutes))
        if window_minutes in self._by_window:
            events = self._by_window[window_minutes]
            return None if events is None else list(events)
        return None if self._events is None else list(self._events)


class InMemorySettingsStore(SettingsStore):
    """Dict-backed settings store that applies proposed writes."""

    def __init__(self, settings: Sequence[UserSettings] = ()) -> None:
        self.settings: dict[str, UserSettings] = {s.email: s for s in settings}
        self.current_event_writes: list[tuple[str, CalendarEvent | None]] = []
        self.reminder_writes: list[tuple[str, str]] = []

    async def get_all(self) -> list[UserSettings]:
        return list(self.settings.values())

    async def get_many(self, user_ids: Sequence[str]) -> list[UserSettings]:
        return [self.settings[u] for u in user_ids if u in self.settings]

    async def set_current_event(self, user_id: str, event: CalendarEvent | None) -> None:
        self.current_event_writes.append((user_id, event))
        current = self.settings[user_id]
        self.settings[user_id] = current.model_copy(update={"current_event": event})

    async def set_last_reminder_event_id(self, user_id: str, event_id: str) -> None:
        self.reminder_writes.append((user_id, event_id))
        current = self.settings[user_id]
        self.settings[user_id] = current.model_copy(update={"last_reminder_event_id": event_id})


@dataclass
class RecordingChatProvider(ChatProvider):
    """Records every chat call; ``users`` maps email to chat identity."""

    users: dict[str, ChatUser] = field(default_factory=dict)
    statuses: list[tuple[str, str | None, ChatStatus]] = field(default_factory=list)
    presences: list[tuple[str, str | None, Presence]] = field(default_factory=list)
    messages: list[tuple[str, ChatMessage]] = field(default_factory=list)
    lookups: list[str] = field(default_factory=list)

    async def set_status(self, user_id: str, token: str | None, status: ChatStatus) -> None:
        self.statuses.append((user_id, token, status))

    async def set_presence(self, user_id: str, token: str | None, presence: Presence) -> None:
        self.presences.append((user_id, token, presence))

    async def send_message(self, bot_token: str, message: ChatMessage) -> None:
        self.messages.append((bot_token, message))

    async def resolve_user_by_email(self, bot_token: str, email: str) -> ChatUser | None:
        self.lookups.append(email)
        return self.users.get(email)

    @property
    def side_effect_count(self) -> int:
        return len(self.statuses) + len(self.presences) + len(self.messages)
