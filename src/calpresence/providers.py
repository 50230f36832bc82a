"""Collaborator contracts consumed by the reconciler.

Transport, OAuth and persistence live behind these interfaces; the engine
only ever sees ``CalendarEvent`` / ``UserSettings`` / ``ChatStatus`` values.
"""

from __future__ import annotations

import abc
from collections.abc import Sequence
from typing import Any

from calpresence.models import (
    CalendarEvent,
    ChatMessage,
    ChatStatus,
    ChatUser,
    Presence,
    UserSettings,
)

DEFAULT_WINDOW_MINUTES = 1


class CalendarProvider(abc.ABC):
    """Source of calendar events overlapping a short window around now."""

    @abc.abstractmethod
    async def get_events(
        self,
        user_id: str,
        token: dict[str, Any] | None,
        window_minutes: int = DEFAULT_WINDOW_MINUTES,
    ) -> list[CalendarEvent] | None:
        """Return events overlapping the window.

        ``None`` signals an unrecoverable auth failure for this user; the
        provider is responsible for clearing tokens and notifying the user.
        """
        ...


class SettingsStore(abc.ABC):
    """Persistent per-user settings."""

    @abc.abstractmethod
    async def get_all(self) -> list[UserSettings]:
        ...

    @abc.abstractmethod
    async def get_many(self, user_ids: Sequence[str]) -> list[UserSettings]:
        ...

    @abc.abstractmethod
    async def set_current_event(self, user_id: str, event: CalendarEvent | None) -> None:
        """Upsert the current event, or remove it when *event* is ``None``."""
        ...

    @abc.abstractmethod
    async def set_last_reminder_event_id(self, user_id: str, event_id: str) -> None:
        ...


class ChatProvider(abc.ABC):
    """Chat platform operations used for status, presence and reminders."""

    @abc.abstractmethod
    async def set_status(self, user_id: str, token: str | None, status: ChatStatus) -> None:
        ...

    @abc.abstractmethod
    async def set_presence(self, user_id: str, token: str | None, presence: Presence) -> None:
        ...

    @abc.abstractmethod
    async def send_message(self, bot_token: str, message: ChatMessage) -> None:
        ...

    @abc.abstractmethod
    async def resolve_user_by_email(self, bot_token: str, email: str) -> ChatUser | None:
        ...


class RoomDirectory(abc.ABC):
    """Meeting-room lookup by nickname or name."""

    @abc.abstractmethod
    def resolve_urls_by_name(self, query: str) -> list[str]:
        """Return URLs of rooms matching *query*; empty on no match or fetch failure."""
        ...
