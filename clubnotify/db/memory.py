"""In-process backend with the same async surface as `SupabaseClient`.

Every mutation is published on an `InMemoryChangeFeed`, so sessions
sharing one backend re-converge the same way they do against Supabase.
"""

from __future__ import annotations

import itertools
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from clubnotify.core.errors import RecordConflict, RecordNotFound
from clubnotify.db.models import (
    NotificationRecord,
    NotificationType,
    PushPlatform,
    PushTokenRecord,
)
from clubnotify.realtime.feed import ChangeEvent, ChangeType, InMemoryChangeFeed


class InMemoryBackend:
    def __init__(
        self,
        feed: Optional[InMemoryChangeFeed] = None,
        *,
        notifications_table: str = "notifications",
        reads_table: str = "notification_reads",
        deletions_table: str = "notification_deletions",
        push_tokens_table: str = "push_tokens",
    ) -> None:
        self.feed = feed or InMemoryChangeFeed()
        self.notifications_table = notifications_table
        self.reads_table = reads_table
        self.deletions_table = deletions_table
        self.push_tokens_table = push_tokens_table

        self._tenants: set[str] = set()
        self._notifications: dict[str, dict[str, Any]] = {}
        self._reads: dict[str, list[str]] = {}
        self._deletions: dict[str, list[str]] = {}
        self._push_tokens: dict[tuple[str, str], PushTokenRecord] = {}
        self._sequence = itertools.count()

    # ── Tenants ───────────────────────────────────────────────────────

    def add_tenant(self, tenant_id: str) -> None:
        self._tenants.add(tenant_id)

    async def tenant_exists(self, tenant_id: str) -> bool:
        return tenant_id in self._tenants

    # ── Notifications ─────────────────────────────────────────────────

    def _record(self, notification_id: str) -> NotificationRecord:
        row = self._notifications[notification_id]
        return NotificationRecord.model_validate(
            {
                **{k: v for k, v in row.items() if k != "seq"},
                "read_by": list(self._reads.get(notification_id, [])),
                "deleted_by": list(self._deletions.get(notification_id, [])),
            }
        )

    async def list_notifications(self, tenant_id: str) -> list[NotificationRecord]:
        rows = [row for row in self._notifications.values() if row["tenant_id"] == tenant_id]
        # created_at can tie; insertion order breaks the tie
        rows.sort(key=lambda row: (row["created_at"], row["seq"]), reverse=True)
        return [self._record(row["id"]) for row in rows]

    async def get_notification(self, notification_id: str) -> NotificationRecord | None:
        if notification_id not in self._notifications:
            return None
        return self._record(notification_id)

    async def insert_notification(
        self,
        *,
        tenant_id: str,
        type: NotificationType,
        title: str,
        message: str,
        action: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        self._tenants.add(tenant_id)
        row: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "tenant_id": tenant_id,
            "type": type.value,
            "title": title,
            "message": message,
            "action": action,
            "created_at": datetime.now(timezone.utc),
            "seq": next(self._sequence),
        }
        self._notifications[row["id"]] = row
        self._publish(self.notifications_table, ChangeType.INSERT, row)
        return self._record(row["id"])

    def _add_recipient(
        self,
        table: str,
        store: dict[str, list[str]],
        notification_id: str,
        user_id: str,
    ) -> bool:
        if notification_id not in self._notifications:
            raise RecordNotFound(f"Notification {notification_id} not found", status_code=404)
        recipients = store.setdefault(notification_id, [])
        if user_id in recipients:
            return False
        recipients.append(user_id)
        tenant_id = self._notifications[notification_id]["tenant_id"]
        self._publish(
            table,
            ChangeType.INSERT,
            {"notification_id": notification_id, "user_id": user_id, "tenant_id": tenant_id},
        )
        return True

    async def add_notification_reader(self, notification_id: str, user_id: str) -> bool:
        return self._add_recipient(self.reads_table, self._reads, notification_id, user_id)

    async def add_notification_deleter(self, notification_id: str, user_id: str) -> bool:
        return self._add_recipient(self.deletions_table, self._deletions, notification_id, user_id)

    def remove_notification(self, notification_id: str) -> None:
        """Physically drop a row, as an administrator would in the dashboard."""
        row = self._notifications.pop(notification_id)
        self._reads.pop(notification_id, None)
        self._deletions.pop(notification_id, None)
        self._publish(self.notifications_table, ChangeType.DELETE, {}, old=row)

    # ── Push tokens ───────────────────────────────────────────────────

    async def find_push_token(self, user_id: str, token: str) -> PushTokenRecord | None:
        return self._push_tokens.get((user_id, token))

    async def insert_push_token(
        self,
        *,
        user_id: str,
        token: str,
        platform: PushPlatform,
        device_id: str | None = None,
        device_token: str | None = None,
    ) -> PushTokenRecord:
        key = (user_id, token)
        if key in self._push_tokens:
            raise RecordConflict("Duplicate push token", status_code=409)
        now = datetime.now(timezone.utc)
        record = PushTokenRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=token,
            platform=platform,
            device_id=device_id,
            device_token=device_token,
            last_registered_at=now,
            created_at=now,
        )
        self._push_tokens[key] = record
        return record

    async def touch_push_token(self, user_id: str, token: str) -> PushTokenRecord:
        key = (user_id, token)
        if key not in self._push_tokens:
            raise RecordNotFound("Push token not found", status_code=404)
        record = self._push_tokens[key].model_copy(
            update={"last_registered_at": datetime.now(timezone.utc)}
        )
        self._push_tokens[key] = record
        return record

    async def delete_push_token(self, user_id: str, token: str) -> bool:
        return self._push_tokens.pop((user_id, token), None) is not None

    async def delete_push_tokens_for_user(self, user_id: str) -> int:
        keys = [key for key in self._push_tokens if key[0] == user_id]
        for key in keys:
            del self._push_tokens[key]
        return len(keys)

    async def list_push_tokens(self, user_id: str) -> list[PushTokenRecord]:
        records = [record for (owner, _), record in self._push_tokens.items() if owner == user_id]
        records.sort(key=lambda record: record.last_registered_at, reverse=True)
        return records

    async def close(self) -> None:
        await self.feed.close()

    def _publish(
        self,
        table: str,
        change_type: ChangeType,
        record: dict[str, Any],
        old: dict[str, Any] | None = None,
    ) -> None:
        self.feed.publish(
            ChangeEvent(
                table=table,
                type=change_type,
                record={k: v for k, v in record.items() if k != "seq"},
                old_record={k: v for k, v in (old or {}).items() if k != "seq"},
            )
        )
