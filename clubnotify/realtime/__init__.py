"""
Realtime change feed.

Currently includes:
- InMemoryChangeFeed: process-local feed used with the in-memory backend.
- SupabaseRealtimeFeed: Supabase Realtime (Phoenix channels) over websockets.
"""

from .feed import ChangeEvent, ChangeType, InMemoryChangeFeed, Subscription
from .supabase import SupabaseRealtimeFeed

__all__ = [
    "ChangeEvent",
    "ChangeType",
    "InMemoryChangeFeed",
    "Subscription",
    "SupabaseRealtimeFeed",
]
