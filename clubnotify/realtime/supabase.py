"""Supabase Realtime change feed.

Speaks the Phoenix channel protocol over a single websocket: one
channel per subscription, joined with a `postgres_changes` config,
kept alive with heartbeats and rejoined after reconnects.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import websockets

from clubnotify.core import Settings, get_settings
from clubnotify.realtime.feed import ChangeCallback, ChangeEvent, ChangeType, Subscription

logger = logging.getLogger(__name__)


class SupabaseRealtimeFeed:
    """Manages the websocket connection to Supabase Realtime.

    Example:
        feed = SupabaseRealtimeFeed(settings, access_token=session_jwt)
        sub = await feed.subscribe("notifications", on_change, {"tenant_id": "t1"})
        ...
        sub.unsubscribe()
        await feed.close()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        access_token: str | None = None,
        schema: str = "public",
    ) -> None:
        self._settings = settings or get_settings()
        self._access_token = access_token
        self._schema = schema
        self._subscriptions: dict[str, Subscription] = {}
        self._refs = itertools.count(1)
        self._ws: Any = None
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_delay = 1.0
        self._max_reconnect_delay = 60.0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def url(self) -> str:
        return f"{self._settings.realtime_url}?apikey={self._settings.supabase_anon_key}&vsn=1.0.0"

    def set_access_token(self, access_token: str | None) -> None:
        self._access_token = access_token

    # ── Subscription Management ───────────────────────────────────────

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        filters: Optional[dict[str, str]] = None,
    ) -> Subscription:
        """Join a channel for changes on `table`, optionally filtered by column equality."""
        subscription = Subscription(table, callback, filters, on_close=self._leave)
        self._subscriptions[subscription.topic] = subscription

        if not self._running:
            await self.start()
        elif self._ws is not None:
            await self._send_join(subscription)
        return subscription

    def _leave(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.topic, None)
        if self._ws is None:
            return
        message = self._message(subscription.topic, "phx_leave", {})
        try:
            asyncio.get_running_loop().create_task(self._send(message))
        except RuntimeError:
            # No loop left; the server drops the channel with the socket
            pass

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Supabase realtime feed started")

    async def close(self) -> None:
        self._running = False
        for subscription in list(self._subscriptions.values()):
            subscription.unsubscribe()

        for task in (self._heartbeat_task, self._task):
            if task is not None:
                task.cancel()

        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Error closing realtime socket: %s", exc)
            self._ws = None

        self._task = None
        self._heartbeat_task = None
        logger.info("Supabase realtime feed stopped")

    async def _run(self) -> None:
        delay = self._reconnect_delay
        connected_before = False

        while self._running:
            try:
                async with websockets.connect(self.url) as ws:
                    self._ws = ws
                    delay = self._reconnect_delay

                    for subscription in list(self._subscriptions.values()):
                        await self._send_join(subscription)
                    if connected_before:
                        self._resync()
                    connected_before = True

                    self._heartbeat_task = asyncio.create_task(self._heartbeat())
                    try:
                        async for message in ws:
                            if not self._running:
                                break
                            self._handle_message(message)
                    finally:
                        self._heartbeat_task.cancel()
                        self._ws = None

                if self._running:
                    logger.info("Realtime stream closed by server, reconnecting in %ss", delay)
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self._max_reconnect_delay)

            except asyncio.CancelledError:
                break
            except Exception as exc:  # noqa: BLE001
                if self._running:
                    logger.warning("Realtime stream error: %s, reconnecting in %ss", exc, delay)
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, self._max_reconnect_delay)

    def _resync(self) -> None:
        """Tell every subscriber that changes may have been missed while offline."""
        subscriptions = list(self._subscriptions.values())
        logger.info("Realtime reconnected, resyncing %d subscriptions", len(subscriptions))
        for subscription in subscriptions:
            subscription.deliver(ChangeEvent(table=subscription.table, type=ChangeType.RESYNC))

    async def _heartbeat(self) -> None:
        while self._running:
            await asyncio.sleep(self._settings.realtime_heartbeat_interval)
            await self._send(self._message("phoenix", "heartbeat", {}))

    # ── Wire Messages ─────────────────────────────────────────────────

    def _message(self, topic: str, event: str, payload: dict[str, Any]) -> dict[str, Any]:
        return {"topic": topic, "event": event, "payload": payload, "ref": str(next(self._refs))}

    def join_payload(self, subscription: Subscription) -> dict[str, Any]:
        change: dict[str, Any] = {"event": "*", "schema": self._schema, "table": subscription.table}
        if subscription.filters:
            # Realtime accepts a single filter per change config
            column, value = next(iter(subscription.filters.items()))
            change["filter"] = f"{column}=eq.{value}"

        payload: dict[str, Any] = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [change],
            }
        }
        if self._access_token:
            payload["access_token"] = self._access_token
        return payload

    async def _send_join(self, subscription: Subscription) -> None:
        message = self._message(subscription.topic, "phx_join", self.join_payload(subscription))
        message["join_ref"] = message["ref"]
        await self._send(message)
        logger.debug("Joined %s", subscription.topic)

    async def _send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.send(json.dumps(message))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to send realtime %s: %s", message.get("event"), exc)

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from realtime stream: %s", str(raw)[:100])
            return

        topic = message.get("topic", "")
        event = message.get("event", "")
        payload = message.get("payload") or {}

        if event == "phx_reply":
            if payload.get("status") not in (None, "ok"):
                logger.warning("Realtime join/leave rejected on %s: %s", topic, payload.get("response"))
            return
        if event in ("phx_error", "phx_close"):
            logger.info("Realtime channel %s: %s", topic, event)
            return
        if event != "postgres_changes":
            return

        subscription = self._subscriptions.get(topic)
        if subscription is None:
            return

        change = self.parse_change(subscription.table, payload)
        if change is not None:
            subscription.deliver(change)

    @staticmethod
    def parse_change(table: str, payload: dict[str, Any]) -> ChangeEvent | None:
        data = payload.get("data") or {}
        try:
            change_type = ChangeType(data.get("type", ""))
        except ValueError:
            return None

        raw_ts = data.get("commit_timestamp")
        try:
            timestamp = datetime.fromisoformat(raw_ts.replace("Z", "+00:00")) if raw_ts else None
        except ValueError:
            timestamp = None

        return ChangeEvent(
            table=data.get("table") or table,
            type=change_type,
            record=data.get("record") or {},
            old_record=data.get("old_record") or {},
            commit_timestamp=timestamp or datetime.now(timezone.utc),
        )
