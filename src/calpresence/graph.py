"""Normalisation of Microsoft Graph ``calendarView`` payloads into ``CalendarEvent``.

A Graph-backed ``CalendarProvider`` is expected to build its request window with
``calendar_view_window`` and map each returned item through
``graph_event_to_calendar_event``.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from calpresence.models import CalendarEvent, ShowAs

PRIVATE_EVENT_NAME = "Private event"
_FRACTION_RE = re.compile(r"(\d*)")

_SHOW_AS_BY_GRAPH_VALUE = {
    "oof": ShowAs.OUT_OF_OFFICE,
    "busy": ShowAs.BUSY,
    "workingelsewhere": ShowAs.BUSY,
    "tentative": ShowAs.TENTATIVE,
    "free": ShowAs.FREE,
}


def to_show_as(value: Any) -> ShowAs:
    """Map a Graph ``showAs`` string onto ``ShowAs``; unknown values are ``FREE``."""
    if not isinstance(value, str):
        return ShowAs.FREE
    return _SHOW_AS_BY_GRAPH_VALUE.get(value.strip().lower(), ShowAs.FREE)


def _parse_graph_datetime(value: str) -> datetime:
    # Graph omits the offset and means UTC unless a Prefer time zone header is sent.
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    # Graph sends seven fractional digits; fromisoformat accepts at most six.
    head, dot, tail = normalized.partition(".")
    if dot:
        fraction = _FRACTION_RE.match(tail)
        digits = fraction.group(1) if fraction else ""
        offset = tail[len(digits) :]
        normalized = f"{head}.{digits[:6]}{offset}"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Calendar returned an invalid dateTime: {value}") from exc
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def _nested_text(payload: dict[str, Any], key: str, field: str) -> str:
    container = payload.get(key)
    if not isinstance(container, dict):
        return ""
    value = container.get(field)
    return value if isinstance(value, str) else ""


def graph_event_to_calendar_event(payload: dict[str, Any]) -> CalendarEvent:
    """Build a ``CalendarEvent`` from one Graph event resource.

    Events whose ``sensitivity`` is anything but ``normal`` have their subject
    replaced so private titles never reach a shared chat status.
    """
    sensitivity = payload.get("sensitivity")
    if sensitivity == "normal":
        name = str(payload.get("subject") or "")
    else:
        name = PRIVATE_EVENT_NAME

    return CalendarEvent(
        id=str(payload["id"]),
        name=name,
        start_time=_parse_graph_datetime(_nested_text(payload, "start", "dateTime")),
        end_time=_parse_graph_datetime(_nested_text(payload, "end", "dateTime")),
        location=_nested_text(payload, "location", "displayName"),
        body=_nested_text(payload, "body", "content"),
        show_as=to_show_as(payload.get("showAs")),
    )


def calendar_view_window(now: datetime, lookahead_minutes: int) -> tuple[datetime, datetime]:
    """Return the ``(start, end)`` query window around *now*.

    The window reaches one minute further back than forward so events that
    started during the previous invocation are still seen.
    """
    start = now - timedelta(minutes=lookahead_minutes + 1)
    end = now + timedelta(minutes=lookahead_minutes)
    return start, end
