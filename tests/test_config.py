"""Tests for environment-driven settings."""

import pytest

from clubnotify.core import config as config_module
from clubnotify.core.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)
    for key in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "SUPABASE_SERVICE_KEY", "ENVIRONMENT",
                "NOTIFICATIONS_TABLE", "REQUEST_TIMEOUT"):
        monkeypatch.delenv(key, raising=False)
    config_module.get_settings.cache_clear()
    yield
    config_module.get_settings.cache_clear()


def test_builds_from_environment(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://club.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("NOTIFICATIONS_TABLE", "club_notifications")
    monkeypatch.setenv("REQUEST_TIMEOUT", "3.5")

    settings = config_module.get_settings()

    assert settings.environment == "production"
    assert not settings.is_debug
    assert settings.notifications_table == "club_notifications"
    assert settings.request_timeout == 3.5
    assert settings.push_tokens_table == "push_tokens"
    assert config_module.get_settings() is settings


def test_missing_variables(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://club.supabase.co")
    with pytest.raises(RuntimeError, match="SUPABASE_ANON_KEY"):
        config_module.get_settings()


def test_invalid_environment(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://club.supabase.co")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    monkeypatch.setenv("ENVIRONMENT", "qa")
    with pytest.raises(RuntimeError, match="Invalid settings"):
        config_module.get_settings()


def test_realtime_url():
    settings = Settings(supabase_url="http://localhost:54321", supabase_anon_key="anon")
    assert settings.realtime_url == "ws://localhost:54321/realtime/v1/websocket"
