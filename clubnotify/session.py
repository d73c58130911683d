from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, cast

from clubnotify.core import Settings, get_settings
from clubnotify.core.logging import configure_logging
from clubnotify.db.models import NavigateAction, NotificationItem, PushTokenRecord
from clubnotify.db.supabase import SupabaseClient
from clubnotify.notifications.context import NotificationContext
from clubnotify.notifications.service import BatchResult, NotificationService
from clubnotify.push.controller import PushRegistrationController, RegistrationOutcome
from clubnotify.push.platform import PlatformToken, PushPlatformAdapter
from clubnotify.push.registry import PushTokenRegistry
from clubnotify.realtime.supabase import SupabaseRealtimeFeed

if TYPE_CHECKING:
    from clubnotify.notifications.context import ChangeFeed
    from clubnotify.notifications.service import NotificationBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionState:
    """What the auth and tenant providers currently report."""
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    valid: bool = True

    @property
    def is_authenticated(self) -> bool:
        return self.valid and bool(self.user_id)


class NotificationsProvider:
    """
    Single entry point UI screens talk to.

    Follows the auth and tenant providers: a new user starts push
    registration and binds the context, a tenant switch re-scopes the
    context, and a lost session tears the subscription down and stops
    issuing backend calls.
    """

    def __init__(
        self,
        context: NotificationContext,
        controller: PushRegistrationController,
        *,
        backend: Optional["NotificationBackend"] = None,
        feed: Optional["ChangeFeed"] = None,
    ) -> None:
        self.context = context
        self.controller = controller
        self._backend = backend
        self._feed = feed
        self._session = SessionState(valid=False)
        self._epoch = 0

    @classmethod
    def build(
        cls,
        backend: "NotificationBackend",
        feed: "ChangeFeed",
        platform: PushPlatformAdapter,
        settings: Settings | None = None,
    ) -> "NotificationsProvider":
        tables: dict[str, Any] = {}
        if settings is not None:
            tables = {
                "notifications_table": settings.notifications_table,
                "reads_table": settings.notification_reads_table,
                "deletions_table": settings.notification_deletions_table,
            }
        context = NotificationContext(NotificationService(backend), feed, platform=platform, **tables)
        controller = PushRegistrationController(platform, PushTokenRegistry(backend))
        return cls(context, controller, backend=backend, feed=feed)

    @classmethod
    def from_settings(
        cls,
        platform: PushPlatformAdapter,
        *,
        access_token: str | None = None,
        settings: Settings | None = None,
    ) -> "NotificationsProvider":
        """
        Production wiring: Supabase REST for storage, Supabase Realtime for the feed.
        """
        settings = settings or get_settings()
        configure_logging(settings)

        backend = SupabaseClient(settings, access_token=access_token)
        feed = SupabaseRealtimeFeed(settings, access_token=access_token)
        logger.info("Notifications provider using %s in %s", settings.supabase_url, settings.environment)
        return cls.build(backend, feed, platform, settings)

    def set_access_token(self, access_token: str | None) -> None:
        """
        Forward a refreshed session JWT to the REST client and the feed.
        """
        for target in (self._backend, self._feed):
            setter = getattr(target, "set_access_token", None)
            if setter is not None:
                setter(access_token)

    async def close(self) -> None:
        self.context.unbind()
        self.controller.detach()
        if self._feed is not None:
            await self._feed.close()
        if self._backend is not None:
            await self._backend.close()

    @property
    def session(self) -> SessionState:
        return self._session

    async def on_session_changed(self, session: SessionState | None) -> None:
        previous = self._session
        session = session or SessionState(valid=False)
        self._session = session
        self._epoch += 1
        epoch = self._epoch

        if not session.is_authenticated:
            if previous.is_authenticated:
                logger.info("Session lost, tearing down notifications")
            self.context.unbind()
            self.controller.detach()
            return

        user_id = cast(str, session.user_id)
        if session.tenant_id:
            await self.context.bind(session.tenant_id, user_id)
        else:
            logger.debug("No tenant for %s, notifications unbound", user_id)
            self.context.unbind()

        if epoch != self._epoch:
            # Superseded by a newer session change or a logout while binding
            logger.debug("Session change for %s superseded", user_id)
            return

        if self.controller.user_id != user_id:
            outcome = await self.controller.start(user_id)
            logger.debug("Push registration on session start: %s", outcome.value)
        elif self.controller.retry_pending:
            outcome = await self.controller.retry()
            logger.debug("Push registration retry: %s", outcome.value)

    async def on_push_token_changed(self, token: PlatformToken) -> RegistrationOutcome:
        return await self.controller.on_token_changed(token)

    def on_push_received(self, data: dict[str, Any] | None = None) -> NavigateAction | None:
        """
        A push arrived while the app is running: re-fetch, and hand back the
        navigation hint from its payload, if any, for the tap handler.
        """
        self.context.schedule_refresh()
        data = data or {}
        route = data.get("screen") or data.get("route")
        if not route:
            return None
        params = data.get("params") or {}
        return NavigateAction(route=str(route), params={k: str(v) for k, v in params.items()})

    async def logout(self, *, forget_all_devices: bool = False) -> None:
        """
        Unsubscribe first, then remove this device's token (or every token).
        """
        self._epoch += 1
        self._session = SessionState(valid=False)
        self.context.unbind()
        removed = await self.controller.teardown(revoke_all=forget_all_devices)
        if not removed:
            logger.info("No push token removed on logout")

    # ── State exposed to screens ──────────────────────────────────────

    @property
    def notifications(self) -> list[NotificationItem]:
        return self.context.notifications

    @property
    def unread_count(self) -> int:
        return self.context.unread_count

    @property
    def push_token(self) -> PlatformToken | None:
        return self.controller.push_token

    @property
    def is_push_registered(self) -> bool:
        return self.controller.is_push_registered

    def add_listener(self, callback: Callable[[NotificationContext], Any]) -> Callable[[], None]:
        return self.context.add_listener(callback)

    # ── Actions ───────────────────────────────────────────────────────

    async def mark_as_read(self, notification_id: str) -> None:
        await self.context.mark_as_read(notification_id)

    async def mark_all_as_read(self) -> BatchResult | None:
        return await self.context.mark_all_as_read()

    async def clear_notification(self, notification_id: str) -> None:
        await self.context.clear_notification(notification_id)

    async def clear_all_notifications(self) -> BatchResult | None:
        return await self.context.clear_all_notifications()

    async def refresh_notifications(self) -> None:
        await self.context.refresh()

    async def register_for_push_notifications(self) -> RegistrationOutcome:
        return await self.controller.force_registration()

    async def list_push_tokens(self) -> list[PushTokenRecord]:
        return await self.controller.list_tokens()
