"""Meeting-room directory with an explicit, owner-controlled cache.

Room data is a JSON array published at a configured URL. The reconciler owns
one ``RoomDirectoryCache`` and refreshes it (at most once per TTL) before a
batch; link extraction then queries the cached rooms synchronously.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from calpresence.providers import RoomDirectory

logger = logging.getLogger(__name__)

DEFAULT_ROOMS_TTL_SECONDS = 3600
DEFAULT_ROOMS_TIMEOUT_SECONDS = 10.0
DEFAULT_ROOMS_RETRY_SECONDS = 60.0


class Room(BaseModel):
    """One bookable space from the directory feed."""

    model_config = ConfigDict(extra="ignore")

    id: str
    url: str
    nicknames: list[str] = Field(default_factory=list)
    address: str | None = None
    office: str | None = None
    floor: int | None = None
    type: str | None = None


def room_matches(room: Room, query: str) -> bool:
    """True when a nickname, or the dash-separated id read as words, contains *query*."""
    needle = query.strip().lower()
    if not needle:
        return False
    if any(needle in nickname.lower() for nickname in room.nicknames):
        return True
    return needle in room.id.replace("-", " ").lower()


def _parse_rooms(payload: Any) -> list[Room]:
    if not isinstance(payload, list):
        logger.warning("Room directory payload is not a JSON array; ignoring it")
        return []
    rooms: list[Room] = []
    for entry in payload:
        try:
            rooms.append(Room.model_validate(entry))
        except ValidationError as exc:
            logger.debug("Skipping malformed room entry: %s", exc.errors()[:1])
    return rooms


class HttpRoomSource:
    """Fetches the room directory JSON over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_ROOMS_TIMEOUT_SECONDS,
    ) -> None:
        self._url = url
        self._http_client = http_client
        self._timeout = timeout_seconds

    async def fetch(self) -> list[Room]:
        """Return the published rooms, or an empty list when the fetch fails."""
        try:
            if self._http_client is not None:
                response = await self._http_client.get(self._url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self._url)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Failed to fetch room directory from %s: %s", self._url, exc)
            return []
        return _parse_rooms(payload)


class RoomDirectoryCache(RoomDirectory):
    """Cached room directory.

    ``refresh()`` reloads from the source when the cache is empty or older
    than ``ttl_seconds`` (``0`` disables expiry after the first successful
    load). A failed reload keeps previously loaded rooms, and the source is
    not asked again until ``retry_seconds`` have passed unless forced.
    """

    def __init__(
        self,
        source: HttpRoomSource | None,
        *,
        ttl_seconds: float = DEFAULT_ROOMS_TTL_SECONDS,
        retry_seconds: float = DEFAULT_ROOMS_RETRY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl_seconds
        self._retry = retry_seconds
        self._clock = clock
        self._rooms: list[Room] = []
        self._loaded_at: float | None = None
        self._failed_at: float | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def rooms(self) -> list[Room]:
        return list(self._rooms)

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        if self._ttl <= 0:
            return False
        return self._clock() - self._loaded_at >= self._ttl

    def invalidate(self) -> None:
        self._loaded_at = None
        self._failed_at = None

    def _should_fetch(self, force: bool) -> bool:
        if force:
            return True
        if not self.is_stale():
            return False
        if self._failed_at is None:
            return True
        return self._clock() - self._failed_at >= self._retry

    async def refresh(self, *, force: bool = False) -> None:
        if self._source is None:
            return
        if not self._should_fetch(force):
            return

        async with self._refresh_lock:
            if not self._should_fetch(force):
                return
            rooms = await self._source.fetch()
            if not rooms:
                self._failed_at = self._clock()
                logger.debug("Room directory reload failed; retrying in %ss", self._retry)
                return
            self._rooms = rooms
            self._loaded_at = self._clock()
            self._failed_at = None
            logger.info("Loaded %d rooms into the room directory cache", len(rooms))

    def resolve_urls_by_name(self, query: str) -> list[str]:
        return [room.url for room in self._rooms if room_matches(room, query)]
