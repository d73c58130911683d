"""Platform push permission, token and badge API.

The registration controller treats the platform as a black box: it asks
for permission, then for an opaque token. Mobile shells implement
`PushPlatformAdapter`; `StaticPushPlatform` serves servers, simulators
and tests.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from clubnotify.core.errors import PushPermissionDenied
from clubnotify.db.models import PushPlatform

_DEVICE_ID_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


class PermissionStatus(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNDETERMINED = "undetermined"


@dataclass(frozen=True)
class PlatformToken:
    """Token issued by the push gateway for one app installation."""
    token: str
    platform: PushPlatform
    device_token: Optional[str] = None
    device_id: Optional[str] = None


def make_device_id(
    os_name: str | None,
    os_version: str | None,
    build_id: str | None,
) -> str:
    """
    Stable per-device identifier from OS name, version and build id.
    """
    raw = f"{os_name or 'unknown'}_{os_version or 'unknown'}_{build_id or 'unknown'}"
    return _DEVICE_ID_UNSAFE.sub("_", raw)


class PushPlatformAdapter(ABC):
    @abstractmethod
    async def get_permission_status(self) -> PermissionStatus:
        ...

    @abstractmethod
    async def request_permission(self) -> PermissionStatus:
        ...

    @abstractmethod
    async def get_token(self) -> PlatformToken | None:
        """Raises PushPermissionDenied if called without permission."""

    @abstractmethod
    async def set_badge_count(self, count: int) -> None:
        ...

    @abstractmethod
    async def get_badge_count(self) -> int:
        ...


class StaticPushPlatform(PushPlatformAdapter):
    """
    Adapter backed by fixed values; `rotate_token` simulates the gateway
    issuing a new token. Tokens without a device id get one derived from
    `os_version` and `build_id` when those are given.
    """

    def __init__(
        self,
        token: PlatformToken | None,
        *,
        permission: PermissionStatus = PermissionStatus.GRANTED,
        grant_on_request: bool = True,
        token_error: Exception | None = None,
        os_version: str | None = None,
        build_id: str | None = None,
    ) -> None:
        self._token = token
        self._os_version = os_version
        self._build_id = build_id
        self._permission = permission
        self._grant_on_request = grant_on_request
        self._token_error = token_error
        self._badge = 0
        self.permission_requests = 0
        self.token_requests = 0

    async def get_permission_status(self) -> PermissionStatus:
        return self._permission

    async def request_permission(self) -> PermissionStatus:
        self.permission_requests += 1
        if self._permission == PermissionStatus.UNDETERMINED:
            self._permission = (
                PermissionStatus.GRANTED if self._grant_on_request else PermissionStatus.DENIED
            )
        return self._permission

    async def get_token(self) -> PlatformToken | None:
        self.token_requests += 1
        if self._permission != PermissionStatus.GRANTED:
            raise PushPermissionDenied("Push permission not granted")
        if self._token_error is not None:
            raise self._token_error
        if self._token is None or self._token.device_id is not None:
            return self._token
        if self._os_version is None and self._build_id is None:
            return self._token
        device_id = make_device_id(self._token.platform.value, self._os_version, self._build_id)
        return replace(self._token, device_id=device_id)

    def rotate_token(self, token: PlatformToken) -> None:
        self._token = token

    async def set_badge_count(self, count: int) -> None:
        self._badge = max(0, count)

    async def get_badge_count(self) -> int:
        return self._badge
