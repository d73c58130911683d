"""Pytest configuration and shared fixtures."""

import pytest

from clubnotify.core import Settings
from clubnotify.db import InMemoryBackend
from clubnotify.db.models import PushPlatform
from clubnotify.notifications import NotificationService
from clubnotify.push import PlatformToken, PushTokenRegistry, StaticPushPlatform


@pytest.fixture
def settings():
    return Settings(
        supabase_url="https://demo.supabase.co",
        supabase_anon_key="anon-key",
    )


@pytest.fixture
def backend():
    backend = InMemoryBackend()
    backend.add_tenant("gym-1")
    backend.add_tenant("gym-2")
    return backend


@pytest.fixture
def service(backend):
    return NotificationService(backend)


@pytest.fixture
def registry(backend):
    return PushTokenRegistry(backend)


@pytest.fixture
def device_token():
    return PlatformToken(
        token="ExponentPushToken[tok-123]",
        platform=PushPlatform.ANDROID,
        device_id="android_14_UP1A",
    )


@pytest.fixture
def platform(device_token):
    return StaticPushPlatform(device_token)


async def settle(context):
    """Wait until background refreshes triggered by change events finish."""
    while context.pending_refresh is not None:
        await context.pending_refresh
