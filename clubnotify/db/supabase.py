from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx

from clubnotify.core import Settings, get_settings
from clubnotify.core.errors import BackendError, RecordConflict, RecordNotFound
from clubnotify.db.models import (
    NotificationRecord,
    NotificationType,
    PushPlatform,
    PushTokenRecord,
)

# PostgreSQL error codes surfaced by PostgREST
_UNIQUE_VIOLATION = "23505"
_FOREIGN_KEY_VIOLATION = "23503"


class SupabaseError(BackendError):
    pass


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("code")
    return None


class SupabaseClient:
    """
    Async Supabase REST client for the notification subsystem.

    Per-recipient read/delete state lives in join tables keyed by
    (notification_id, user_id); set additions are inserts that ignore
    duplicates, so repeating them is harmless and concurrent devices
    never overwrite each other.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        base_url = str(self._settings.supabase_url).rstrip("/")
        api_key = self._settings.supabase_service_key or self._settings.supabase_anon_key
        self._rest = httpx.AsyncClient(
            base_url=f"{base_url}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {access_token or api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=self._settings.request_timeout,
            transport=transport,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    def set_access_token(self, access_token: str | None) -> None:
        """
        Switch the bearer token to the signed-in user's JWT so RLS applies.
        """
        api_key = self._rest.headers["apikey"]
        self._rest.headers["Authorization"] = f"Bearer {access_token or api_key}"

    async def close(self) -> None:
        await self._rest.aclose()

    # ── Row helpers ───────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            return await self._rest.request(
                method,
                f"/{table}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise SupabaseError(
                f"Supabase REST {method} failed for '{table}'",
                detail=str(exc),
            ) from exc

    async def _select_rows(
        self,
        table: str,
        params: dict[str, Any],
    ) -> list[dict[str, Any]]:
        response = await self._request("GET", table, params={"select": "*", **params})
        if response.status_code >= 400:
            raise SupabaseError(
                f"Supabase REST GET failed for '{table}'",
                status_code=response.status_code,
                detail=response.text,
            )
        items: list[dict[str, Any]] = response.json()
        return items

    async def _get_single_row(
        self,
        table: str,
        params: dict[str, Any],
    ) -> dict[str, Any] | None:
        items = await self._select_rows(table, {**params, "limit": 1})
        if not items:
            return None
        return items[0]

    async def _insert_row(
        self,
        table: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            table,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if response.status_code == 409 and _error_code(response) == _UNIQUE_VIOLATION:
            raise RecordConflict(
                f"Duplicate row for '{table}'",
                status_code=response.status_code,
                detail=response.text,
            )
        if response.status_code >= 400:
            raise SupabaseError(
                f"Supabase REST INSERT failed for '{table}'",
                status_code=response.status_code,
                detail=response.text,
            )
        items: list[dict[str, Any]] = response.json()
        if not items:
            raise SupabaseError(f"Empty insert response for table '{table}'")
        return items[0]

    async def _insert_ignore_duplicates(
        self,
        table: str,
        payload: dict[str, Any],
        on_conflict: str,
    ) -> bool:
        """
        INSERT ... ON CONFLICT DO NOTHING. Returns True when a row was added.
        """
        response = await self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json=payload,
            headers={"Prefer": "resolution=ignore-duplicates,return=representation"},
        )
        if response.status_code == 409 and _error_code(response) == _FOREIGN_KEY_VIOLATION:
            raise RecordNotFound(
                f"Referenced row missing for '{table}'",
                status_code=404,
                detail=response.text,
            )
        if response.status_code >= 400:
            raise SupabaseError(
                f"Supabase REST UPSERT failed for '{table}'",
                status_code=response.status_code,
                detail=response.text,
            )
        items: list[dict[str, Any]] = response.json()
        return bool(items)

    async def _update_rows(
        self,
        table: str,
        params: dict[str, Any],
        payload: dict[str, Any],
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "PATCH",
            table,
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if response.status_code >= 400:
            raise SupabaseError(
                f"Supabase REST UPDATE failed for '{table}'",
                status_code=response.status_code,
                detail=response.text,
            )
        items: list[dict[str, Any]] = response.json()
        return items

    async def _delete_rows(
        self,
        table: str,
        params: dict[str, Any],
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "DELETE",
            table,
            params=params,
            headers={"Prefer": "return=representation"},
        )
        if response.status_code >= 400:
            raise SupabaseError(
                f"Supabase REST DELETE failed for '{table}'",
                status_code=response.status_code,
                detail=response.text,
            )
        items: list[dict[str, Any]] = response.json()
        return items

    # ── Notifications ─────────────────────────────────────────────────

    def _notification_select(self) -> str:
        reads = self._settings.notification_reads_table
        deletions = self._settings.notification_deletions_table
        return f"*,{reads}(user_id),{deletions}(user_id)"

    def _notification_from_row(self, row: dict[str, Any]) -> NotificationRecord:
        reads = row.pop(self._settings.notification_reads_table, None) or []
        deletions = row.pop(self._settings.notification_deletions_table, None) or []
        return NotificationRecord.model_validate(
            {
                **row,
                "read_by": [item["user_id"] for item in reads],
                "deleted_by": [item["user_id"] for item in deletions],
            }
        )

    async def tenant_exists(self, tenant_id: str) -> bool:
        row = await self._get_single_row(
            self._settings.tenants_table,
            params={"id": f"eq.{tenant_id}", "select": "id"},
        )
        return row is not None

    async def list_notifications(self, tenant_id: str) -> list[NotificationRecord]:
        """
        Return every notification broadcast to the tenant, newest first,
        with read_by/deleted_by materialized from the join tables.
        """

        items = await self._select_rows(
            self._settings.notifications_table,
            params={
                "tenant_id": f"eq.{tenant_id}",
                "select": self._notification_select(),
                "order": "created_at.desc",
            },
        )
        return [self._notification_from_row(item) for item in items]

    async def get_notification(self, notification_id: str) -> NotificationRecord | None:
        row = await self._get_single_row(
            self._settings.notifications_table,
            params={
                "id": f"eq.{notification_id}",
                "select": self._notification_select(),
            },
        )
        if row is None:
            return None
        return self._notification_from_row(row)

    async def insert_notification(
        self,
        *,
        tenant_id: str,
        type: NotificationType,
        title: str,
        message: str,
        action: dict[str, Any] | None = None,
    ) -> NotificationRecord:
        payload: dict[str, Any] = {
            "tenant_id": tenant_id,
            "type": type.value,
            "title": title,
            "message": message,
        }
        if action is not None:
            payload["action"] = action
        row = await self._insert_row(self._settings.notifications_table, payload)
        return NotificationRecord.model_validate({**row, "read_by": [], "deleted_by": []})

    async def add_notification_reader(self, notification_id: str, user_id: str) -> bool:
        return await self._insert_ignore_duplicates(
            self._settings.notification_reads_table,
            {"notification_id": notification_id, "user_id": user_id},
            on_conflict="notification_id,user_id",
        )

    async def add_notification_deleter(self, notification_id: str, user_id: str) -> bool:
        return await self._insert_ignore_duplicates(
            self._settings.notification_deletions_table,
            {"notification_id": notification_id, "user_id": user_id},
            on_conflict="notification_id,user_id",
        )

    # ── Push tokens ───────────────────────────────────────────────────

    async def find_push_token(self, user_id: str, token: str) -> PushTokenRecord | None:
        row = await self._get_single_row(
            self._settings.push_tokens_table,
            params={"user_id": f"eq.{user_id}", "token": f"eq.{token}"},
        )
        if row is None:
            return None
        return PushTokenRecord.model_validate(row)

    async def insert_push_token(
        self,
        *,
        user_id: str,
        token: str,
        platform: PushPlatform,
        device_id: str | None = None,
        device_token: str | None = None,
    ) -> PushTokenRecord:
        payload: dict[str, Any] = {
            "user_id": user_id,
            "token": token,
            "platform": platform.value,
            "last_registered_at": datetime.now(timezone.utc).isoformat(),
        }
        if device_id:
            payload["device_id"] = device_id
        if device_token:
            payload["device_token"] = device_token
        row = await self._insert_row(self._settings.push_tokens_table, payload)
        return PushTokenRecord.model_validate(row)

    async def touch_push_token(self, user_id: str, token: str) -> PushTokenRecord:
        """
        Refresh last_registered_at for an existing (user, token) record.
        """
        items = await self._update_rows(
            self._settings.push_tokens_table,
            params={"user_id": f"eq.{user_id}", "token": f"eq.{token}"},
            payload={"last_registered_at": datetime.now(timezone.utc).isoformat()},
        )
        if not items:
            raise RecordNotFound("Push token not found", status_code=404)
        return PushTokenRecord.model_validate(items[0])

    async def delete_push_token(self, user_id: str, token: str) -> bool:
        items = await self._delete_rows(
            self._settings.push_tokens_table,
            params={"user_id": f"eq.{user_id}", "token": f"eq.{token}"},
        )
        return bool(items)

    async def delete_push_tokens_for_user(self, user_id: str) -> int:
        items = await self._delete_rows(
            self._settings.push_tokens_table,
            params={"user_id": f"eq.{user_id}"},
        )
        return len(items)

    async def list_push_tokens(self, user_id: str) -> list[PushTokenRecord]:
        items = await self._select_rows(
            self._settings.push_tokens_table,
            params={"user_id": f"eq.{user_id}", "order": "last_registered_at.desc"},
        )
        return [PushTokenRecord.model_validate(item) for item in items]


_supabase_client: SupabaseClient | None = None


def get_supabase_client() -> SupabaseClient:
    """
    Lazy singleton for SupabaseClient.

    Callers own shutdown: await `close()` when the session ends.
    """

    global _supabase_client
    if _supabase_client is None:
        _supabase_client = SupabaseClient()
    return _supabase_client
