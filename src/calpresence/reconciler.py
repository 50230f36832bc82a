"""Per-user reconciliation of calendar state into chat status and reminders.

One run for one user:

1. Fetch events for the immediate window (and the reminder override window
   when the user configured a wider one).
2. Select the relevant event and compare it with the recorded current event.
3. Decide whether a meeting reminder fires.
4. Resolve the chat user and apply the side effects.

Status writes (status + presence, then the current-event record) and the
reminder (message, then the dedup token) run concurrently. Every side effect
is awaited before the first failure is re-raised, and a record is only
persisted after the chat calls it depends on succeeded, so a failed run is
simply retried by the next scheduled invocation.

Many users are reconciled concurrently; each user's failure is captured in
its ``ReconcileOutcome`` and never aborts its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

import httpx

from calpresence.config import DEFAULT_BATCH_SIZE, DEFAULT_MAX_CONCURRENCY, AppConfig
from calpresence.core.metrics import ReconcilerMetrics
from calpresence.core.telemetry import reconcile_span
from calpresence.engine.reminders import decide_reminder, override_window_minutes
from calpresence.engine.selection import has_changed, select_highest_priority
from calpresence.engine.status import resolve_presence, resolve_status
from calpresence.models import (
    CalendarEvent,
    ChatMessage,
    ChatUser,
    ReminderDecision,
    UserSettings,
)
from calpresence.providers import (
    DEFAULT_WINDOW_MINUTES,
    CalendarProvider,
    ChatProvider,
    SettingsStore,
)
from calpresence.rooms import HttpRoomSource, RoomDirectoryCache

logger = logging.getLogger(__name__)

SKIP_REASON_AUTH = "auth"
SKIP_REASON_NO_CHAT_USER = "no_chat_user"


class ReconcileStatus(StrEnum):
    """Terminal state of one user's reconciliation."""

    unchanged = "unchanged"
    applied = "applied"
    skipped_auth = "skipped_auth"
    skipped_no_chat_user = "skipped_no_chat_user"
    failed = "failed"


class ReconcileError(RuntimeError):
    """Raised when a side effect for one user fails."""

    def __init__(self, user_id: str, cause: BaseException) -> None:
        self.user_id = user_id
        self.cause = cause
        super().__init__(f"Reconciliation failed for {user_id}: {type(cause).__name__}: {cause}")


@dataclass
class ReconcileOutcome:
    """What happened for one user in one run."""

    user_id: str
    status: ReconcileStatus
    status_updated: bool = False
    reminder_sent: bool = False
    error: ReconcileError | None = None


def chunk_user_ids(user_ids: Sequence[str], size: int) -> list[list[str]]:
    """Split *user_ids* into consecutive batches of at most *size* ids."""
    if size <= 0:
        raise ValueError(f"batch size must be positive, got {size}")
    return [list(user_ids[i : i + size]) for i in range(0, len(user_ids), size)]


async def _settle(*aws) -> None:  # noqa: ANN002
    """Await every awaitable, then re-raise the first failure (if any)."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result


class Reconciler:
    """Composes selection, change detection, status and reminders per user."""

    def __init__(
        self,
        *,
        calendar: CalendarProvider,
        settings_store: SettingsStore,
        chat: ChatProvider,
        bot_token: str,
        rooms: RoomDirectoryCache | None = None,
        default_window_minutes: int = DEFAULT_WINDOW_MINUTES,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        metrics: ReconcilerMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._calendar = calendar
        self._settings_store = settings_store
        self._chat = chat
        self._bot_token = bot_token
        self._rooms = rooms
        self._window = default_window_minutes
        self._batch_size = batch_size
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._metrics = metrics or ReconcilerMetrics()
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        calendar: CalendarProvider,
        settings_store: SettingsStore,
        chat: ChatProvider,
        http_client: httpx.AsyncClient | None = None,
    ) -> Reconciler:
        rooms: RoomDirectoryCache | None = None
        if config.rooms.url:
            source = HttpRoomSource(
                config.rooms.url,
                http_client=http_client,
                timeout_seconds=config.rooms.timeout_seconds,
            )
            rooms = RoomDirectoryCache(source, ttl_seconds=config.rooms.ttl_seconds)
        return cls(
            calendar=calendar,
            settings_store=settings_store,
            chat=chat,
            bot_token=config.chat.bot_token,
            rooms=rooms,
            default_window_minutes=config.reconcile.default_window_minutes,
            batch_size=config.reconcile.batch_size,
            max_concurrency=config.reconcile.max_concurrency,
        )

    # ------------------------------------------------------------------
    # Single user
    # ------------------------------------------------------------------

    async def reconcile_user(self, settings: UserSettings) -> ReconcileOutcome:
        """Reconcile one user.

        Raises ``ReconcileError`` when a calendar fetch, chat call or settings
        write fails.
        """
        user_id = settings.email
        with reconcile_span(user_id):
            try:
                return await self._reconcile(settings)
            except ReconcileError:
                raise
            except Exception as exc:
                raise ReconcileError(user_id, exc) from exc

    async def _reconcile(self, settings: UserSettings) -> ReconcileOutcome:
        user_id = settings.email
        token = settings.calendar_token

        events = await self._calendar.get_events(user_id, token, self._window)
        if events is None:
            logger.info("Calendar authorization unavailable; skipping user")
            self._metrics.user_skipped(SKIP_REASON_AUTH)
            return ReconcileOutcome(user_id=user_id, status=ReconcileStatus.skipped_auth)

        relevant = select_highest_priority(events)

        override_events: list[CalendarEvent] | None = None
        override = override_window_minutes(settings, self._window)
        if override is not None:
            override_events = await self._calendar.get_events(user_id, token, override) or []

        should_update_status = has_changed(settings.current_event, relevant)
        reminder = decide_reminder(
            settings,
            events,
            override_events,
            rooms=self._rooms,
            default_minutes=self._window,
        )

        if not should_update_status and reminder is None:
            logger.debug("Nothing to update")
            return ReconcileOutcome(user_id=user_id, status=ReconcileStatus.unchanged)

        chat_user = await self._chat.resolve_user_by_email(self._bot_token, user_id)
        if chat_user is None:
            logger.warning("No chat user found for this email; skipping side effects")
            self._metrics.user_skipped(SKIP_REASON_NO_CHAT_USER)
            return ReconcileOutcome(user_id=user_id, status=ReconcileStatus.skipped_no_chat_user)

        side_effects = []
        if should_update_status:
            side_effects.append(self._apply_status(settings, relevant, chat_user))
        if reminder is not None:
            side_effects.append(self._send_reminder(settings, chat_user, reminder))
        await _settle(*side_effects)

        return ReconcileOutcome(
            user_id=user_id,
            status=ReconcileStatus.applied,
            status_updated=should_update_status,
            reminder_sent=reminder is not None,
        )

    async def _apply_status(
        self,
        settings: UserSettings,
        relevant: CalendarEvent | None,
        chat_user: ChatUser,
    ) -> None:
        status = resolve_status(settings, relevant, chat_user.time_zone, now=self._clock())
        presence = resolve_presence(relevant)

        await _settle(
            self._chat.set_status(settings.email, settings.chat_token, status),
            self._chat.set_presence(settings.email, settings.chat_token, presence),
        )
        await self._settings_store.set_current_event(settings.email, relevant)

        self._metrics.status_updated()
        logger.info(
            "Updated chat status to %r (presence=%s) for event %s",
            status.text,
            presence.value,
            relevant.id if relevant is not None else None,
        )

    async def _send_reminder(
        self,
        settings: UserSettings,
        chat_user: ChatUser,
        reminder: ReminderDecision,
    ) -> None:
        message = ChatMessage(text=reminder.message, channel_user_id=chat_user.id)
        await self._chat.send_message(self._bot_token, message)
        await self._settings_store.set_last_reminder_event_id(settings.email, reminder.event.id)

        self._metrics.reminder_sent()
        logger.info("Sent meeting reminder for event %s", reminder.event.id)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _reconcile_isolated(self, settings: UserSettings) -> ReconcileOutcome:
        async with self._semaphore:
            try:
                return await self.reconcile_user(settings)
            except ReconcileError as exc:
                self._metrics.reconcile_failed()
                logger.error("Reconciliation failed for %s: %s", settings.email, exc.cause)
                return ReconcileOutcome(
                    user_id=settings.email,
                    status=ReconcileStatus.failed,
                    error=exc,
                )

    async def reconcile_many(self, settings_list: Sequence[UserSettings]) -> list[ReconcileOutcome]:
        """Reconcile every user concurrently; outcomes keep the input order."""
        if self._rooms is not None:
            await self._rooms.refresh()
        return list(await asyncio.gather(*(self._reconcile_isolated(s) for s in settings_list)))

    async def run_batch(self, user_ids: Sequence[str]) -> list[ReconcileOutcome]:
        """Load settings for *user_ids* and reconcile them."""
        try:
            settings_list = await self._settings_store.get_many(user_ids)
        except Exception as exc:
            logger.error("Failed to load settings for a batch of %d users: %s", len(user_ids), exc)
            self._metrics.reconcile_failed(len(user_ids))
            return [
                ReconcileOutcome(
                    user_id=user_id,
                    status=ReconcileStatus.failed,
                    error=ReconcileError(user_id, exc),
                )
                for user_id in user_ids
            ]
        return await self.reconcile_many(settings_list)

    async def run_all(self) -> list[ReconcileOutcome]:
        """Reconcile every known user, fanned out in batches of ``batch_size``."""
        all_settings = await self._settings_store.get_all()
        batches = chunk_user_ids([s.email for s in all_settings], self._batch_size)
        logger.info("Reconciling %d users in %d batches", len(all_settings), len(batches))

        results = await asyncio.gather(*(self.run_batch(batch) for batch in batches))
        outcomes = [outcome for batch in results for outcome in batch]

        failed = sum(1 for o in outcomes if o.status is ReconcileStatus.failed)
        if failed:
            logger.warning("%d of %d reconciliations failed", failed, len(outcomes))
        return outcomes
