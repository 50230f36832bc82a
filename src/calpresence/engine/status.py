"""Chat status and presence resolution for the relevant calendar event."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, tzinfo
from typing import assert_never
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calpresence.models import CalendarEvent, ChatStatus, Presence, ShowAs, UserSettings

logger = logging.getLogger(__name__)

AWAY_TEXT = "Away"
AWAY_EMOJI = ":spiral_calendar_pad:"
OOO_EMOJI = ":ooo:"
EMPTY_STATUS = ChatStatus(text="", emoji="")


def _coerce_zoneinfo(timezone: str) -> ZoneInfo | tzinfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, falling back to UTC", timezone)
        return UTC


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def ooo_date_string(end: datetime | None, tz: str, *, now: datetime | None = None) -> str:
    """Describe when an out-of-office period ends, from the user's point of view.

    Same calendar day (in *tz*) renders a time of day (``3:45:00 PM``), any
    other day renders weekday, month and day (``Saturday, January 4``). The
    year is never included.
    """
    if end is None:
        return ""

    zone = _coerce_zoneinfo(tz)
    local_end = _as_aware(end).astimezone(zone)
    local_today = _as_aware(now or datetime.now(UTC)).astimezone(zone).date()

    if local_end.date() == local_today:
        hour = local_end.hour % 12 or 12
        return f"{hour}:{local_end:%M:%S} {'AM' if local_end.hour < 12 else 'PM'}"
    return f"{local_end:%A, %B} {local_end.day}"


def _default_status(
    show_as: ShowAs,
    settings: UserSettings,
    selected: CalendarEvent | None,
    user_time_zone: str,
    expiration: datetime | None,
    now: datetime | None,
) -> ChatStatus:
    if show_as is ShowAs.FREE:
        return settings.default_status or EMPTY_STATUS
    if show_as is ShowAs.TENTATIVE or show_as is ShowAs.BUSY:
        return ChatStatus(text=AWAY_TEXT, emoji=AWAY_EMOJI, expiration=expiration)
    if show_as is ShowAs.OUT_OF_OFFICE:
        end = selected.end_time if selected is not None else None
        until = ooo_date_string(end, user_time_zone, now=now)
        return ChatStatus(text=f"OOO until {until}", emoji=OOO_EMOJI, expiration=expiration)
    assert_never(show_as)


def resolve_status(
    settings: UserSettings,
    selected: CalendarEvent | None,
    user_time_zone: str = "UTC",
    *,
    now: datetime | None = None,
) -> ChatStatus:
    """Resolve the chat status for *selected* under the user's configuration.

    The first status mapping whose ``calendar_text`` occurs (case-insensitively)
    in the event name wins; otherwise the default for the event's ``show_as``
    applies. Stored mappings are never modified: a matched mapping is copied
    with the event's end time as its expiration.
    """
    if selected is None:
        return _default_status(ShowAs.FREE, settings, None, user_time_zone, None, now)

    expiration = selected.end_time
    if settings.status_mappings:
        name = selected.name.lower()
        for mapping in settings.status_mappings:
            if mapping.calendar_text and mapping.calendar_text.lower() in name:
                return mapping.chat_status.model_copy(update={"expiration": expiration})

    return _default_status(selected.show_as, settings, selected, user_time_zone, expiration, now)


def resolve_presence(selected: CalendarEvent | None) -> Presence:
    """``away`` for busy or out-of-office events, ``auto`` otherwise."""
    if selected is not None and selected.show_as > ShowAs.TENTATIVE:
        return Presence.away
    return Presence.auto
