"""
Push token lifecycle.

Currently includes:
- PushTokenRegistry: persisted (user, token) records, one per device.
- PushRegistrationController: session-start reconciliation and logout teardown.
"""

from .controller import PushRegistrationController, RegistrationOutcome
from .platform import PermissionStatus, PlatformToken, PushPlatformAdapter, StaticPushPlatform
from .registry import PushTokenRegistry

__all__ = [
    "PermissionStatus",
    "PlatformToken",
    "PushPlatformAdapter",
    "PushRegistrationController",
    "PushTokenRegistry",
    "RegistrationOutcome",
    "StaticPushPlatform",
]
