from __future__ import annotations

import asyncio
import logging
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from clubnotify.db.models import NotificationItem, NotificationRecord
from clubnotify.notifications.service import BatchResult, NotificationService
from clubnotify.realtime.feed import ChangeEvent, Subscription

if TYPE_CHECKING:
    from clubnotify.push.platform import PushPlatformAdapter
    from clubnotify.realtime.feed import InMemoryChangeFeed
    from clubnotify.realtime.supabase import SupabaseRealtimeFeed

    ChangeFeed = Union[InMemoryChangeFeed, SupabaseRealtimeFeed]

logger = logging.getLogger(__name__)


class ContextState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    REFRESHING = "refreshing"


class NotificationContext:
    """
    Client-side read-through cache of one user's notifications in one tenant.

    Any change event on the watched tables triggers a full re-fetch; the
    previous list stays visible while it runs. Every bind bumps a
    generation counter, and results or events from an older generation
    are dropped, so nothing from a previous scope reaches the new state.
    """

    def __init__(
        self,
        service: NotificationService,
        feed: "ChangeFeed",
        *,
        platform: Optional["PushPlatformAdapter"] = None,
        notifications_table: str = "notifications",
        reads_table: str = "notification_reads",
        deletions_table: str = "notification_deletions",
    ) -> None:
        self._service = service
        self._feed = feed
        self._platform = platform
        self._tables = (notifications_table, reads_table, deletions_table)

        self._state = ContextState.UNINITIALIZED
        self._tenant_id: str | None = None
        self._user_id: str | None = None
        self._generation = 0
        self._subscriptions: list[Subscription] = []
        self._records: list[NotificationRecord] = []
        self._unread_count = 0
        self._refresh_task: asyncio.Task | None = None
        self._refresh_again = False
        self._listeners: list[Callable[["NotificationContext"], Any]] = []
        self.last_error: Exception | None = None

    # ── Read-only state ───────────────────────────────────────────────

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def tenant_id(self) -> str | None:
        return self._tenant_id

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def records(self) -> list[NotificationRecord]:
        return list(self._records)

    @property
    def notifications(self) -> list[NotificationItem]:
        if self._user_id is None:
            return []
        return [NotificationItem.for_user(record, self._user_id) for record in self._records]

    @property
    def unread_count(self) -> int:
        return self._unread_count

    @property
    def pending_refresh(self) -> asyncio.Task | None:
        if self._refresh_task is None or self._refresh_task.done():
            return None
        return self._refresh_task

    def add_listener(self, callback: Callable[["NotificationContext"], Any]) -> Callable[[], None]:
        """
        Register a callback fired after every state change. Returns a remover.
        """
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    # ── Scope ─────────────────────────────────────────────────────────

    async def bind(self, tenant_id: str, user_id: str) -> None:
        if (
            self._state != ContextState.UNINITIALIZED
            and (tenant_id, user_id) == (self._tenant_id, self._user_id)
        ):
            return

        self.unbind()
        self._tenant_id, self._user_id = tenant_id, user_id
        generation = self._generation
        self._set_state(ContextState.LOADING)

        notifications_table, reads_table, deletions_table = self._tables
        watches = (
            (notifications_table, {"tenant_id": tenant_id}),
            (reads_table, {"user_id": user_id}),
            (deletions_table, {"user_id": user_id}),
        )
        for table, filters in watches:
            subscription = await self._feed.subscribe(
                table, partial(self._on_change, generation), filters
            )
            if generation != self._generation:
                # Rebound while joining; this channel belongs to a dead scope
                subscription.unsubscribe()
                return
            self._subscriptions.append(subscription)

        logger.debug("Notification context bound to tenant=%s user=%s", tenant_id, user_id)
        await self.refresh()

    def unbind(self) -> None:
        """
        Tear down subscriptions and reset to Uninitialized. Synchronous.
        """
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

        self._generation += 1
        self._refresh_task = None
        self._refresh_again = False
        was_bound = self._state != ContextState.UNINITIALIZED
        self._tenant_id = None
        self._user_id = None
        self._records = []
        self._unread_count = 0
        self.last_error = None
        self._state = ContextState.UNINITIALIZED
        if was_bound:
            self._notify()

    # ── Refresh ───────────────────────────────────────────────────────

    def _on_change(self, generation: int, event: ChangeEvent) -> None:
        if generation != self._generation:
            return
        logger.debug("Change on %s (%s), refreshing", event.table, event.type.value)
        self.schedule_refresh()

    def schedule_refresh(self) -> asyncio.Task | None:
        if self._tenant_id is None or self._user_id is None:
            return None
        if self._refresh_task is not None and not self._refresh_task.done():
            # Coalesce bursts into one extra pass after the in-flight fetch
            self._refresh_again = True
            return self._refresh_task
        self._refresh_task = asyncio.create_task(self._refresh_loop(self._generation))
        return self._refresh_task

    async def refresh(self) -> None:
        """
        Re-fetch list and unread count; resolves once the state is current.
        """
        if self._tenant_id is None or self._user_id is None:
            logger.debug("No tenant/user bound, skipping refresh")
            return
        task = self.schedule_refresh()
        if task is not None:
            await asyncio.shield(task)

    async def _refresh_loop(self, generation: int) -> None:
        while generation == self._generation:
            self._refresh_again = False
            await self._load(generation)
            if not self._refresh_again:
                break

    async def _load(self, generation: int) -> None:
        tenant_id, user_id = self._tenant_id, self._user_id
        if tenant_id is None or user_id is None:
            return
        if self._state == ContextState.READY:
            self._set_state(ContextState.REFRESHING)

        try:
            records = await self._service.list(tenant_id, user_id)
        except Exception as exc:  # noqa: BLE001
            if generation != self._generation:
                return
            logger.warning("Error refreshing notifications: %s", exc)
            self.last_error = exc
            self._set_state(ContextState.READY)
            return

        if generation != self._generation:
            logger.debug("Dropping notifications fetched for a previous scope")
            return

        # Counted from the fetched list so the badge always agrees with it
        count = sum(1 for record in records if record.is_unread_for(user_id))
        self._records = records
        self._unread_count = count
        self.last_error = None
        self._set_state(ContextState.READY)
        await self._update_badge(count)

    async def _update_badge(self, count: int) -> None:
        if self._platform is None:
            return
        try:
            await self._platform.set_badge_count(count)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Could not update badge count: %s", exc)

    async def clear_badge(self) -> None:
        await self._update_badge(0)

    # ── Actions ───────────────────────────────────────────────────────

    async def mark_as_read(self, notification_id: str) -> None:
        if self._user_id is None:
            return
        await self._service.mark_read(notification_id, self._user_id)
        await self.refresh()

    async def mark_all_as_read(self) -> BatchResult | None:
        if self._user_id is None or self._tenant_id is None:
            return None
        result = await self._service.mark_all_read(self._tenant_id, self._user_id)
        await self.refresh()
        return result

    async def clear_notification(self, notification_id: str) -> None:
        if self._user_id is None:
            return
        await self._service.delete(notification_id, self._user_id)
        await self.refresh()

    async def clear_all_notifications(self) -> BatchResult | None:
        if self._user_id is None or self._tenant_id is None:
            return None
        result = await self._service.delete_all(self._tenant_id, self._user_id)
        await self.refresh()
        return result

    async def refresh_notifications(self) -> None:
        await self.refresh()

    def _set_state(self, state: ContextState) -> None:
        self._state = state
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as exc:  # noqa: BLE001
                logger.error("Notification listener error: %s", exc)
