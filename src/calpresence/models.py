"""Canonical record shapes shared by the decision engine and its collaborators.

- ``ShowAs``: ordered calendar visibility (``FREE < TENTATIVE < BUSY < OUT_OF_OFFICE``)
- ``CalendarEvent``: immutable event snapshot fetched for one reconciliation pass
- ``UserSettings``: per-user configuration read from the settings store
- ``ChatStatus`` / ``StatusMapping``: outbound status and name-matching rules
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ShowAs(IntEnum):
    """Calendar visibility classification, ordered by priority."""

    FREE = 1
    TENTATIVE = 2
    BUSY = 3
    OUT_OF_OFFICE = 4


class Presence(StrEnum):
    """Chat presence value pushed alongside a status."""

    auto = "auto"
    away = "away"


class CalendarEvent(BaseModel):
    """Event shape produced by calendar providers."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    start_time: datetime
    end_time: datetime
    location: str = ""
    body: str = ""
    show_as: ShowAs = ShowAs.FREE

    @field_validator("location", "body", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ChatStatus(BaseModel):
    """Status record sent to the chat platform.

    ``expiration`` is the absolute instant after which the platform clears the
    status (and do-not-disturb, when ``dnd`` is set).
    """

    model_config = ConfigDict(frozen=True)

    text: str = ""
    emoji: str = ""
    expiration: datetime | None = None
    dnd: bool | None = None


class StatusMapping(BaseModel):
    """Case-insensitive substring rule from event name to a fixed status."""

    model_config = ConfigDict(frozen=True)

    calendar_text: str
    chat_status: ChatStatus


class UserSettings(BaseModel):
    """Per-user configuration, keyed by email."""

    model_config = ConfigDict(extra="ignore")

    email: str
    chat_token: str | None = None
    calendar_token: dict[str, Any] | None = None
    default_status: ChatStatus | None = None
    status_mappings: list[StatusMapping] = Field(default_factory=list)
    current_event: CalendarEvent | None = None
    zoom_links_disabled: bool = False
    meeting_reminder_timing_override_minutes: int | None = None
    last_reminder_event_id: str | None = None
    snoozed: bool = False


class ChatUser(BaseModel):
    """Chat identity resolved from a user's email."""

    model_config = ConfigDict(frozen=True)

    id: str
    time_zone: str = "UTC"


class ChatMessage(BaseModel):
    """Direct message addressed to a chat user."""

    model_config = ConfigDict(frozen=True)

    text: str
    channel_user_id: str


@dataclass(frozen=True)
class ReminderDecision:
    """A reminder that should be sent for ``event``."""

    event: CalendarEvent
    message: str
