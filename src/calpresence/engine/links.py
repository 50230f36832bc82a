"""Meeting-link extraction from event locations and (possibly HTML) bodies.

A location is a ``;``-separated list of free-text entries (room names,
people, URLs). A body is whatever the calendar stored, often Outlook HTML.
Nothing in here raises on odd input: "no link" is a normal outcome.
"""

from __future__ import annotations

import html
import re

from calpresence.models import CalendarEvent, UserSettings
from calpresence.providers import RoomDirectory

# Permissive on purpose: location and body text routinely carry query strings,
# fragments and tracking parameters.
_URL_PATTERN = r"\w+://[-a-zA-Z0-9:@;?&=/%+.*!'(),$_{}^~\[\]`#|]+"
_URL_RE = re.compile(_URL_PATTERN)
_SCHEME_RE = re.compile(r"^\w+://\S+")
# Decoded entities may leave markup characters glued to a URL.
_LINK_END_RE = re.compile(r"[<>\"]")

# Alternatives are tried left to right at every position, so anchors and
# angle-wrapped URLs win over the generic tag rule, and any other markup is
# consumed before the plain-text rule can see it.
_BODY_TOKEN_RE = re.compile(
    r"<!--.*?-->"
    r"|<(?P<block>style|script)\b.*?</(?P=block)\s*>"
    r"|<a\b[^>]*?\bhref\s*=\s*[\"']?(?P<href>[^\"'\s>]+)[^>]*>"
    r"|<(?P<angle>\w+://[^\s<>\"]+)>"
    r"|<[/!?]?[A-Za-z][^>]*>"
    rf"|(?P<plain>{_URL_PATTERN})",
    re.IGNORECASE | re.DOTALL,
)

_TRAILING_PUNCTUATION = ".,;"

UPCOMING_MEETING_TEMPLATE = "You have an upcoming meeting: *{name}* at {url}"
EXTRA_LINKS_HEADER = ". Here are some links I found in the event:\n"
EXTRA_LINK_BULLET = "• {link}"


def _clean_link(raw: str) -> str | None:
    parts = html.unescape(raw).split()
    if not parts:
        return None
    candidate = _LINK_END_RE.split(parts[0], maxsplit=1)[0].rstrip(_TRAILING_PUNCTUATION)
    return candidate if _SCHEME_RE.match(candidate) else None


def extract_links(text: str | None) -> list[str]:
    """Return URLs found in *text*, in document order and without duplicates.

    Three sources are recognised: ``href`` targets of anchor tags, URLs wrapped
    in angle brackets (``<https://...>``) and bare URLs in the text between
    tags. Comments, ``<style>``/``<script>`` blocks and all other markup are
    skipped. Entities are decoded and trailing sentence punctuation dropped.
    """
    if not text:
        return []

    seen: set[str] = set()
    links: list[str] = []
    for match in _BODY_TOKEN_RE.finditer(text):
        raw = match.group("href") or match.group("angle") or match.group("plain")
        if raw is None:
            continue
        link = _clean_link(raw)
        if link is None or link in seen:
            continue
        seen.add(link)
        links.append(link)
    return links


def _room_url(location: str, rooms: RoomDirectory) -> str | None:
    urls: list[str] = []
    for segment in location.split(";"):
        query = segment.strip().lower()
        if not query:
            continue
        for url in rooms.resolve_urls_by_name(query):
            if url not in urls:
                urls.append(url)
    return urls[0] if len(urls) == 1 else None


def location_url(
    event: CalendarEvent | None,
    zoom_links_disabled: bool,
    rooms: RoomDirectory | None = None,
) -> str | None:
    """Return the meeting URL named in the event location, if any.

    The first URL-shaped token across the ``;``-separated segments wins. When
    the location holds no URL, the room directory is asked about each segment
    and its URL is used if exactly one room matches.
    """
    if zoom_links_disabled or event is None or not event.location.strip():
        return None

    for segment in event.location.split(";"):
        match = _URL_RE.search(segment)
        if match:
            return match.group(0).removesuffix(";")

    if rooms is None:
        return None
    return _room_url(event.location, rooms)


def additional_links(event: CalendarEvent | None) -> list[str]:
    """Links found in the event body."""
    if event is None:
        return []
    return extract_links(event.body)


def first_body_url(event: CalendarEvent | None) -> str | None:
    """First link of the event body, used when the location yields none.

    Shares ``extract_links`` with ``additional_links``, so URLs sitting in
    markup attributes other than ``href`` (images, stylesheets) never win.
    """
    if event is None:
        return None
    links = extract_links(event.body)
    return links[0] if links else None


def upcoming_event_message(
    event: CalendarEvent | None,
    settings: UserSettings,
    rooms: RoomDirectory | None = None,
) -> str | None:
    """Compose the reminder text for *event*, or ``None`` when there is no link to share."""
    if event is None or settings.zoom_links_disabled:
        return None

    url = location_url(event, settings.zoom_links_disabled, rooms) or first_body_url(event)
    if url is None:
        return None

    message = UPCOMING_MEETING_TEMPLATE.format(name=event.name, url=url)
    extras = [link for link in additional_links(event) if link != url]
    if extras:
        bullets = "\n".join(EXTRA_LINK_BULLET.format(link=link) for link in extras)
        message = f"{message}{EXTRA_LINKS_HEADER}{bullets}"
    return message
