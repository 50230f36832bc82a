"""Relevant-event selection and the change guard used before status writes."""

from __future__ import annotations

from collections.abc import Sequence

from calpresence.models import CalendarEvent


def _priority_key(event: CalendarEvent) -> tuple[int, float]:
    return (int(event.show_as), event.start_time.timestamp())


def select_highest_priority(events: Sequence[CalendarEvent]) -> CalendarEvent | None:
    """Return the event with the highest ``show_as``, or ``None`` for no events.

    Ties on ``show_as`` go to the most recently started event, so a meeting
    that just began wins over one that is about to end. The input is not
    reordered.
    """
    if not events:
        return None
    # max() keeps the first of equal keys, matching a stable descending sort.
    return max(events, key=_priority_key)


def has_changed(previous: CalendarEvent | None, selected: CalendarEvent | None) -> bool:
    """Return True when the selected event differs from the recorded one.

    Events are compared by id only; an edited event with the same id is
    considered unchanged.
    """
    if previous is None or selected is None:
        return (previous is None) != (selected is None)
    return previous.id != selected.id
