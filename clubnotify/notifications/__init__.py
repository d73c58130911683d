"""
Notification delivery and read/delete tracking.

Currently includes:
- NotificationService: tenant/user scoped CRUD and queries.
- NotificationContext: client read-through cache driven by the change feed.
- NotificationScheduler: scheduled tenant broadcasts.
"""

from .context import ContextState, NotificationContext
from .scheduler import NotificationScheduler
from .service import BatchResult, NotificationService

__all__ = [
    "BatchResult",
    "ContextState",
    "NotificationContext",
    "NotificationScheduler",
    "NotificationService",
]
