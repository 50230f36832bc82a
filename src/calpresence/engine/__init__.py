"""Pure decision logic: event selection, status resolution, reminders and links."""

from calpresence.engine.links import (
    additional_links,
    extract_links,
    first_body_url,
    location_url,
    upcoming_event_message,
)
from calpresence.engine.reminders import (
    decide_reminder,
    override_window_minutes,
    reminder_candidate,
)
from calpresence.engine.selection import has_changed, select_highest_priority
from calpresence.engine.status import ooo_date_string, resolve_presence, resolve_status

__all__ = [
    "additional_links",
    "decide_reminder",
    "extract_links",
    "first_body_url",
    "has_changed",
    "location_url",
    "ooo_date_string",
    "override_window_minutes",
    "reminder_candidate",
    "resolve_presence",
    "resolve_status",
    "select_highest_priority",
    "upcoming_event_message",
]
