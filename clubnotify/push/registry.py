from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Union

from clubnotify.core.errors import BackendError, RecordConflict, RecordNotFound
from clubnotify.db.models import (
    PushPlatform,
    PushTokenRecord,
    RegistrationAction,
    RegistrationResult,
)

if TYPE_CHECKING:
    from clubnotify.db.memory import InMemoryBackend
    from clubnotify.db.supabase import SupabaseClient

    PushTokenBackend = Union[SupabaseClient, InMemoryBackend]

logger = logging.getLogger(__name__)


class PushTokenRegistry:
    """
    Persisted (user, token) -> push target mapping, one row per device.

    Registration never creates a second row for the same (user, token):
    an existing row is refreshed, and a lost insert race against the
    unique constraint is treated the same way.
    """

    def __init__(self, backend: "PushTokenBackend") -> None:
        self._backend = backend

    async def register_token(
        self,
        user_id: str,
        token: str,
        platform: PushPlatform | str,
        *,
        device_id: str | None = None,
        device_token: str | None = None,
    ) -> RegistrationResult:
        if not token:
            raise ValueError("Push token is required")
        push_platform = PushPlatform(platform)

        try:
            existing = await self._backend.find_push_token(user_id, token)
            if existing is not None:
                record = await self._backend.touch_push_token(user_id, token)
                logger.info("Push token for %s already registered, refreshed", user_id)
                return RegistrationResult(success=True, action=RegistrationAction.EXISTING, record=record)

            try:
                record = await self._backend.insert_push_token(
                    user_id=user_id,
                    token=token,
                    platform=push_platform,
                    device_id=device_id,
                    device_token=device_token,
                )
            except RecordConflict:
                # Another device session inserted the same pair first
                record = await self._backend.touch_push_token(user_id, token)
                return RegistrationResult(success=True, action=RegistrationAction.EXISTING, record=record)

        except BackendError as exc:
            logger.error("Error registering push token for %s: %s", user_id, exc)
            return RegistrationResult(success=False)

        logger.info("Push token registered for %s on %s", user_id, push_platform.value)
        return RegistrationResult(success=True, action=RegistrationAction.CREATED, record=record)

    async def is_token_registered(self, user_id: str, token: str) -> bool:
        if not token:
            return False
        try:
            return await self._backend.find_push_token(user_id, token) is not None
        except BackendError as exc:
            logger.warning("Error checking push token registration: %s", exc)
            return False

    async def remove_token(self, user_id: str, token: str) -> bool:
        try:
            removed = await self._backend.delete_push_token(user_id, token)
        except RecordNotFound:
            return False
        except BackendError as exc:
            logger.error("Error removing push token for %s: %s", user_id, exc)
            return False

        if removed:
            logger.info("Push token removed for %s", user_id)
        return removed

    async def remove_all_tokens(self, user_id: str) -> bool:
        try:
            removed = await self._backend.delete_push_tokens_for_user(user_id)
        except BackendError as exc:
            logger.error("Error removing all push tokens for %s: %s", user_id, exc)
            return False

        logger.info("Removed %d push tokens for %s", removed, user_id)
        return True

    async def list_tokens(self, user_id: str) -> list[PushTokenRecord]:
        try:
            return await self._backend.list_push_tokens(user_id)
        except BackendError as exc:
            logger.error("Error listing push tokens for %s: %s", user_id, exc)
            return []
