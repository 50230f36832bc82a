"""Meeting reminder decisions.

Reminders look at one of two event sets: the immediate window already used
for status, or a wider per-user override window fetched separately by the
caller. ``override_window_minutes`` tells the caller whether that second
fetch is needed at all.
"""

from __future__ import annotations

from collections.abc import Sequence

from calpresence.engine.links import upcoming_event_message
from calpresence.engine.selection import select_highest_priority
from calpresence.models import CalendarEvent, ReminderDecision, UserSettings
from calpresence.providers import DEFAULT_WINDOW_MINUTES, RoomDirectory


def override_window_minutes(
    settings: UserSettings,
    default_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> int | None:
    """Return the override lookahead when it widens the default window, else ``None``."""
    override = settings.meeting_reminder_timing_override_minutes
    if override is None or override <= default_minutes:
        return None
    return override


def reminder_candidate(
    settings: UserSettings,
    primary_events: Sequence[CalendarEvent],
    override_events: Sequence[CalendarEvent] | None = None,
    default_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> CalendarEvent | None:
    if override_window_minutes(settings, default_minutes) is not None:
        return select_highest_priority(override_events or [])
    return select_highest_priority(primary_events)


def decide_reminder(
    settings: UserSettings,
    primary_events: Sequence[CalendarEvent],
    override_events: Sequence[CalendarEvent] | None = None,
    *,
    rooms: RoomDirectory | None = None,
    default_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> ReminderDecision | None:
    """Decide whether a reminder fires for this run.

    A reminder fires for the highest-priority candidate when it has not been
    reminded about yet (``last_reminder_event_id``) and a message with a
    meeting link can be composed. The caller sends the message and only then
    persists the candidate id as the new dedup token.
    """
    candidate = reminder_candidate(settings, primary_events, override_events, default_minutes)
    if candidate is None or candidate.id == settings.last_reminder_event_id:
        return None

    message = upcoming_event_message(candidate, settings, rooms)
    if message is None:
        return None
    return ReminderDecision(event=candidate, message=message)
