"""Realtime change feed primitives.

A feed delivers opaque "something changed" events for a backend table.
Payloads are not trusted for fidelity; consumers react by re-fetching.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    # Emitted locally after a reconnect: changes may have been missed
    RESYNC = "RESYNC"


@dataclass
class ChangeEvent:
    """A single create/update/delete event on a table."""
    table: str
    type: ChangeType
    record: dict = field(default_factory=dict)
    old_record: dict = field(default_factory=dict)
    commit_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ChangeCallback = Callable[[ChangeEvent], Any]

_subscription_ids = itertools.count(1)


class Subscription:
    """Handle for one table subscription.

    `unsubscribe()` is synchronous: once it returns, `deliver()` drops
    every event, even ones already in flight on the transport.
    """

    def __init__(
        self,
        table: str,
        callback: ChangeCallback,
        filters: Optional[dict[str, str]] = None,
        on_close: Optional[Callable[["Subscription"], None]] = None,
    ) -> None:
        self.id = next(_subscription_ids)
        self.table = table
        self.filters = dict(filters or {})
        self._callback = callback
        self._on_close = on_close
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    @property
    def topic(self) -> str:
        return f"realtime:{self.table}:{self.id}"

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        row = event.old_record if event.type == ChangeType.DELETE else event.record
        return all(str(row.get(column)) == value for column, value in self.filters.items())

    def deliver(self, event: ChangeEvent) -> None:
        if not self._active:
            return
        try:
            self._callback(event)
        except Exception as exc:  # noqa: BLE001
            logger.error("Change callback error on %s: %s", self.topic, exc)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_close is not None:
            self._on_close(self)


class InMemoryChangeFeed:
    """Process-local feed; the in-memory backend publishes into it."""

    def __init__(self) -> None:
        self._subscriptions: dict[int, Subscription] = {}

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        filters: Optional[dict[str, str]] = None,
    ) -> Subscription:
        subscription = Subscription(table, callback, filters, on_close=self._remove)
        self._subscriptions[subscription.id] = subscription
        logger.debug("Subscribed %s filters=%s", subscription.topic, subscription.filters)
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.matches(event):
                subscription.deliver(event)
                delivered += 1
        return delivered

    async def close(self) -> None:
        for subscription in list(self._subscriptions.values()):
            subscription.unsubscribe()

    def _remove(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)
