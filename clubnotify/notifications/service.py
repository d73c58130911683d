from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Union

from clubnotify.core.errors import BackendError, NotAuthenticated, RecordNotFound, TenantNotFound
from clubnotify.db.models import NavigateAction, NoAction, NotificationRecord, NotificationType

if TYPE_CHECKING:
    from clubnotify.db.memory import InMemoryBackend
    from clubnotify.db.supabase import SupabaseClient

    NotificationBackend = Union[SupabaseClient, InMemoryBackend]

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of a markAllRead/deleteAll sweep; callers re-query for truth."""
    attempted: int = 0
    succeeded: int = 0
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise NotAuthenticated("A signed-in user is required")
    return user_id


class NotificationService:
    """
    CRUD and query facade over the notification store.

    Visibility for a recipient is "tenant matches and recipient not in
    deleted_by"; unread is counted over that same visible list. Read and
    delete are idempotent set additions, never removals, so they commute
    across devices.
    """

    def __init__(self, backend: "NotificationBackend") -> None:
        self._backend = backend

    async def list(self, tenant_id: str, user_id: str) -> list[NotificationRecord]:
        """
        Notifications visible to `user_id` in `tenant_id`, newest first.

        Raises TenantNotFound only when the tenant itself does not exist.
        """

        try:
            records = await self._backend.list_notifications(tenant_id)
            if not records and not await self._backend.tenant_exists(tenant_id):
                raise TenantNotFound(f"Tenant {tenant_id} not found", status_code=404)
        except BackendError as exc:
            logger.warning("Error fetching notifications for tenant %s: %s", tenant_id, exc)
            raise

        return [record for record in records if record.is_visible_to(user_id)]

    async def unread_count(self, tenant_id: str, user_id: str) -> int:
        visible = await self.list(tenant_id, user_id)
        return sum(1 for record in visible if not record.is_read_by(user_id))

    async def mark_read(self, notification_id: str, user_id: str) -> None:
        user_id = _require_user(user_id)
        try:
            added = await self._backend.add_notification_reader(notification_id, user_id)
        except RecordNotFound:
            logger.info("Notification %s already gone, nothing to mark read", notification_id)
            return
        except BackendError as exc:
            logger.warning("Error marking notification %s as read: %s", notification_id, exc)
            raise

        if not added:
            logger.debug("Notification %s already read by %s", notification_id, user_id)

    async def delete(self, notification_id: str, user_id: str) -> None:
        """
        Dismiss a notification for one recipient. The record stays for everyone else.
        """
        user_id = _require_user(user_id)
        try:
            added = await self._backend.add_notification_deleter(notification_id, user_id)
        except RecordNotFound:
            logger.info("Notification %s already gone, nothing to delete", notification_id)
            return
        except BackendError as exc:
            logger.warning("Error deleting notification %s: %s", notification_id, exc)
            raise

        if not added:
            logger.debug("Notification %s already deleted by %s", notification_id, user_id)

    async def mark_all_read(self, tenant_id: str, user_id: str) -> BatchResult:
        user_id = _require_user(user_id)
        visible = await self.list(tenant_id, user_id)
        targets = [record.id for record in visible if not record.is_read_by(user_id)]
        return await self._sweep("mark read", targets, user_id, self.mark_read)

    async def delete_all(self, tenant_id: str, user_id: str) -> BatchResult:
        user_id = _require_user(user_id)
        visible = await self.list(tenant_id, user_id)
        targets = [record.id for record in visible]
        return await self._sweep("delete", targets, user_id, self.delete)

    async def _sweep(
        self,
        label: str,
        notification_ids: list[str],
        user_id: str,
        operation: Callable[[str, str], Awaitable[None]],
    ) -> BatchResult:
        # Per-item failures are recorded, not raised; nothing is rolled back
        outcomes = await asyncio.gather(
            *(operation(notification_id, user_id) for notification_id in notification_ids),
            return_exceptions=True,
        )

        result = BatchResult(attempted=len(notification_ids))
        for notification_id, outcome in zip(notification_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Failed to %s notification %s: %s", label, notification_id, outcome)
                result.failed.append(notification_id)
            else:
                result.succeeded += 1

        logger.info(
            "Batch %s for %s: %d/%d succeeded",
            label,
            user_id,
            result.succeeded,
            result.attempted,
        )
        return result

    async def create(
        self,
        tenant_id: str,
        type: NotificationType | str,
        title: str,
        message: str,
        action: NoAction | NavigateAction | None = None,
    ) -> NotificationRecord:
        """
        Broadcast a new notification to every member of the tenant.
        """
        notification_type = NotificationType(type)
        payload = action.model_dump() if action is not None and action.kind != "none" else None

        try:
            record = await self._backend.insert_notification(
                tenant_id=tenant_id,
                type=notification_type,
                title=title,
                message=message,
                action=payload,
            )
        except BackendError as exc:
            logger.warning("Error creating notification for tenant %s: %s", tenant_id, exc)
            raise

        logger.info("Created %s notification %s for tenant %s", notification_type.value, record.id, tenant_id)
        return record
