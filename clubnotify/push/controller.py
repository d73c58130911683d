from __future__ import annotations

import asyncio
import logging
from enum import Enum

from clubnotify.core.errors import PushPermissionDenied
from clubnotify.db.models import PushTokenRecord
from clubnotify.push.platform import PermissionStatus, PlatformToken, PushPlatformAdapter
from clubnotify.push.registry import PushTokenRegistry

logger = logging.getLogger(__name__)


class RegistrationOutcome(str, Enum):
    SKIPPED = "skipped"
    PERMISSION_DENIED = "permission_denied"
    TOKEN_UNAVAILABLE = "token_unavailable"
    ALREADY_REGISTERED = "already_registered"
    REGISTERED = "registered"
    FAILED = "failed"


class PushRegistrationController:
    """
    Keeps this device's push token registered for the signed-in user.

    Runs once per session start and again whenever the platform reports
    a new token. Nothing here raises: denial, missing tokens and backend
    failures are logged and retried at the next opportunity.
    """

    def __init__(self, platform: PushPlatformAdapter, registry: PushTokenRegistry) -> None:
        self._platform = platform
        self._registry = registry
        self._lock = asyncio.Lock()
        self._user_id: str | None = None
        self._push_token: PlatformToken | None = None
        self._is_push_registered = False
        self._retry_pending = False
        self.last_outcome: RegistrationOutcome | None = None
        # Bumped by detach(); in-flight runs from an older epoch write nothing
        self._epoch = 0

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def push_token(self) -> PlatformToken | None:
        return self._push_token

    @property
    def is_push_registered(self) -> bool:
        return self._is_push_registered

    @property
    def retry_pending(self) -> bool:
        return self._retry_pending

    async def start(self, user_id: str) -> RegistrationOutcome:
        """
        Session start: permission, token, then register if not already stored.
        """
        if user_id != self._user_id:
            self._is_push_registered = False
        self._user_id = user_id
        return await self._run()

    async def force_registration(self) -> RegistrationOutcome:
        return await self._run()

    async def retry(self) -> RegistrationOutcome:
        if not self._retry_pending:
            return self.last_outcome or RegistrationOutcome.SKIPPED
        return await self._run()

    async def on_token_changed(self, token: PlatformToken) -> RegistrationOutcome:
        """
        Platform issued a new token; drop the stale row and register the new one.
        """
        async with self._lock:
            previous = self._push_token
            self._push_token = token
            if self._user_id is None:
                return self._finish(RegistrationOutcome.SKIPPED)

            epoch = self._epoch
            if previous is not None and previous.token != token.token and self._is_push_registered:
                await self._registry.remove_token(self._user_id, previous.token)
            if epoch != self._epoch or self._user_id is None:
                return RegistrationOutcome.SKIPPED
            self._is_push_registered = False
            return await self._reconcile(self._user_id, token, epoch)

    async def _run(self) -> RegistrationOutcome:
        async with self._lock:
            user_id = self._user_id
            epoch = self._epoch
            if user_id is None:
                logger.debug("No user bound, skipping push registration")
                return self._finish(RegistrationOutcome.SKIPPED)

            try:
                status = await self._platform.get_permission_status()
                if status != PermissionStatus.GRANTED:
                    status = await self._platform.request_permission()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Could not check push permission: %s", exc)
                return self._finish(RegistrationOutcome.PERMISSION_DENIED)
            if status != PermissionStatus.GRANTED:
                logger.info("Push permission not granted (%s); will retry next session", status.value)
                return self._finish(RegistrationOutcome.PERMISSION_DENIED)

            try:
                token = await self._platform.get_token()
            except PushPermissionDenied:
                logger.info("Push permission revoked while fetching token")
                return self._finish(RegistrationOutcome.PERMISSION_DENIED)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Could not acquire push token: %s", exc)
                return self._finish(RegistrationOutcome.TOKEN_UNAVAILABLE)

            if epoch != self._epoch:
                logger.debug("Session ended during push registration for %s", user_id)
                return RegistrationOutcome.SKIPPED

            if token is None or not token.token:
                logger.info("No push token received")
                return self._finish(RegistrationOutcome.TOKEN_UNAVAILABLE)

            self._push_token = token
            return await self._reconcile(user_id, token, epoch)

    async def _reconcile(self, user_id: str, token: PlatformToken, epoch: int) -> RegistrationOutcome:
        if await self._registry.is_token_registered(user_id, token.token):
            if epoch != self._epoch:
                return RegistrationOutcome.SKIPPED
            self._is_push_registered = True
            logger.debug("Push token already registered for %s", user_id)
            return self._finish(RegistrationOutcome.ALREADY_REGISTERED)

        # A detach while checking means the session is gone; write nothing
        if epoch != self._epoch:
            return RegistrationOutcome.SKIPPED

        result = await self._registry.register_token(
            user_id,
            token.token,
            token.platform,
            device_id=token.device_id,
            device_token=token.device_token,
        )
        if epoch != self._epoch:
            return RegistrationOutcome.SKIPPED
        if not result.success:
            logger.warning("Push token registration failed for %s; will retry", user_id)
            self._retry_pending = True
            self.last_outcome = RegistrationOutcome.FAILED
            return RegistrationOutcome.FAILED

        self._is_push_registered = True
        logger.info("Push token %s for %s", result.action.value if result.action else "stored", user_id)
        return self._finish(RegistrationOutcome.REGISTERED)

    def _finish(self, outcome: RegistrationOutcome) -> RegistrationOutcome:
        self._retry_pending = False
        self.last_outcome = outcome
        return outcome

    async def is_registered(self) -> bool:
        if self._user_id is None or self._push_token is None:
            return False
        return await self._registry.is_token_registered(self._user_id, self._push_token.token)

    async def list_tokens(self) -> list[PushTokenRecord]:
        if self._user_id is None:
            return []
        return await self._registry.list_tokens(self._user_id)

    async def teardown(self, *, revoke_all: bool = False) -> bool:
        """
        Logout: remove this device's token, or every token of the user.
        """
        async with self._lock:
            user_id = self._user_id
            if user_id is None:
                return False

            if revoke_all:
                removed = await self._registry.remove_all_tokens(user_id)
            elif self._push_token is not None:
                removed = await self._registry.remove_token(user_id, self._push_token.token)
            else:
                removed = False

            self.detach()
            return removed

    def detach(self) -> None:
        """
        Forget the session without touching the registry (session lost).
        """
        self._epoch += 1
        self._user_id = None
        self._is_push_registered = False
        self._retry_pending = False
        self.last_outcome = None
