"""Tests for change feed subscriptions and the Supabase realtime protocol."""

import asyncio
import json

import pytest

from clubnotify.realtime import (
    ChangeEvent,
    ChangeType,
    InMemoryChangeFeed,
    Subscription,
    SupabaseRealtimeFeed,
)


class TestSubscription:
    def test_filter_matching(self):
        sub = Subscription("notifications", lambda e: None, {"tenant_id": "gym-1"})
        assert sub.matches(ChangeEvent("notifications", ChangeType.INSERT, {"tenant_id": "gym-1"}))
        assert not sub.matches(ChangeEvent("notifications", ChangeType.INSERT, {"tenant_id": "gym-2"}))
        assert not sub.matches(ChangeEvent("push_tokens", ChangeType.INSERT, {"tenant_id": "gym-1"}))

    def test_delete_matches_old_record(self):
        sub = Subscription("notifications", lambda e: None, {"tenant_id": "gym-1"})
        event = ChangeEvent("notifications", ChangeType.DELETE, {}, {"tenant_id": "gym-1"})
        assert sub.matches(event)

    def test_no_delivery_after_unsubscribe(self):
        received = []
        sub = Subscription("notifications", received.append)
        sub.deliver(ChangeEvent("notifications", ChangeType.UPDATE))
        sub.unsubscribe()
        sub.deliver(ChangeEvent("notifications", ChangeType.UPDATE))
        assert len(received) == 1
        assert not sub.active

    def test_callback_errors_are_contained(self):
        def explode(event):
            raise RuntimeError("bad handler")

        sub = Subscription("notifications", explode)
        sub.deliver(ChangeEvent("notifications", ChangeType.INSERT))


class TestInMemoryChangeFeed:
    @pytest.mark.asyncio
    async def test_publish_and_unsubscribe(self):
        feed = InMemoryChangeFeed()
        received = []
        sub = await feed.subscribe("notifications", received.append, {"tenant_id": "gym-1"})

        assert feed.publish(ChangeEvent("notifications", ChangeType.INSERT, {"tenant_id": "gym-1"})) == 1
        sub.unsubscribe()
        assert feed.publish(ChangeEvent("notifications", ChangeType.INSERT, {"tenant_id": "gym-1"})) == 0
        assert feed.subscription_count == 0
        assert len(received) == 1


class TestSupabaseRealtimeFeed:
    def test_url(self, settings):
        feed = SupabaseRealtimeFeed(settings)
        assert feed.url == "wss://demo.supabase.co/realtime/v1/websocket?apikey=anon-key&vsn=1.0.0"

    def test_join_payload(self, settings):
        feed = SupabaseRealtimeFeed(settings, access_token="user-jwt")
        sub = Subscription("notifications", lambda e: None, {"tenant_id": "gym-1"})

        payload = feed.join_payload(sub)

        change = payload["config"]["postgres_changes"][0]
        assert change == {
            "event": "*",
            "schema": "public",
            "table": "notifications",
            "filter": "tenant_id=eq.gym-1",
        }
        assert payload["access_token"] == "user-jwt"

    def test_parse_change(self):
        event = SupabaseRealtimeFeed.parse_change(
            "notifications",
            {
                "data": {
                    "type": "UPDATE",
                    "table": "notifications",
                    "record": {"id": "n1"},
                    "old_record": {"id": "n1"},
                    "commit_timestamp": "2025-05-20T10:00:00Z",
                }
            },
        )
        assert event.type == ChangeType.UPDATE
        assert event.record == {"id": "n1"}
        assert event.commit_timestamp.year == 2025

    def test_parse_unknown_type(self):
        assert SupabaseRealtimeFeed.parse_change("notifications", {"data": {"type": "TRUNCATE"}}) is None

    def test_dispatch_to_subscription(self, settings):
        feed = SupabaseRealtimeFeed(settings)
        received = []
        sub = Subscription("notifications", received.append)
        feed._subscriptions[sub.topic] = sub

        message = {
            "topic": sub.topic,
            "event": "postgres_changes",
            "payload": {"data": {"type": "INSERT", "record": {"id": "n1"}}},
            "ref": None,
        }
        feed._handle_message(json.dumps(message))
        feed._handle_message(json.dumps({**message, "topic": "realtime:other:99"}))
        feed._handle_message("not json")

        assert [e.record for e in received] == [{"id": "n1"}]

    def test_leave_stops_dispatch(self, settings):
        feed = SupabaseRealtimeFeed(settings)
        received = []
        sub = Subscription("notifications", received.append, on_close=feed._leave)
        feed._subscriptions[sub.topic] = sub
        sub.unsubscribe()

        feed._handle_message(json.dumps({
            "topic": sub.topic,
            "event": "postgres_changes",
            "payload": {"data": {"type": "INSERT"}},
        }))
        assert received == []

    @pytest.mark.asyncio
    async def test_reconnect_rejoins_and_resyncs(self, settings, monkeypatch):
        class FakeSocket:
            def __init__(self):
                self.sent = []

            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc):
                return False

            def __aiter__(self):
                return self

            async def __anext__(self):
                # Server closes the socket cleanly right after the joins
                raise StopAsyncIteration

            async def send(self, data):
                self.sent.append(json.loads(data))

        sockets = [FakeSocket(), FakeSocket()]
        opened = []

        def connect(url):
            if len(opened) == len(sockets):
                raise asyncio.CancelledError()
            opened.append(sockets[len(opened)])
            return opened[-1]

        monkeypatch.setattr("clubnotify.realtime.supabase.websockets.connect", connect)

        feed = SupabaseRealtimeFeed(settings)
        feed._reconnect_delay = 0
        received = []
        sub = Subscription("notifications", received.append, {"tenant_id": "gym-1"})
        feed._subscriptions[sub.topic] = sub
        feed._running = True

        await feed._run()

        assert len(opened) == 2
        for socket in opened:
            assert [m["event"] for m in socket.sent] == ["phx_join"]
            assert socket.sent[0]["topic"] == sub.topic
        # Only the second connection is a reconnect
        assert [e.type for e in received] == [ChangeType.RESYNC]
        assert received[0].table == "notifications"
