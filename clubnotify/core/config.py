from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, HttpUrl, ValidationError


class Settings(BaseModel):
    supabase_url: HttpUrl
    supabase_anon_key: str
    supabase_service_key: str | None = None
    environment: Literal["local", "staging", "production"] = "local"

    notifications_table: str = "notifications"
    notification_reads_table: str = "notification_reads"
    notification_deletions_table: str = "notification_deletions"
    push_tokens_table: str = "push_tokens"
    tenants_table: str = "tenants"

    request_timeout: float = 10.0
    realtime_heartbeat_interval: float = 25.0

    @property
    def is_debug(self) -> bool:
        return self.environment == "local"

    @property
    def realtime_url(self) -> str:
        base_url = str(self.supabase_url).rstrip("/")
        if base_url.startswith("https://"):
            base_url = "wss://" + base_url.removeprefix("https://")
        elif base_url.startswith("http://"):
            base_url = "ws://" + base_url.removeprefix("http://")
        return f"{base_url}/realtime/v1/websocket"


def _build_settings() -> Settings:
    # Load .env file once on first settings build (for local development)
    load_dotenv()

    optional: dict[str, str] = {}
    for field, env_key in (
        ("notifications_table", "NOTIFICATIONS_TABLE"),
        ("notification_reads_table", "NOTIFICATION_READS_TABLE"),
        ("notification_deletions_table", "NOTIFICATION_DELETIONS_TABLE"),
        ("push_tokens_table", "PUSH_TOKENS_TABLE"),
        ("tenants_table", "TENANTS_TABLE"),
        ("request_timeout", "REQUEST_TIMEOUT"),
        ("realtime_heartbeat_interval", "REALTIME_HEARTBEAT_INTERVAL"),
    ):
        value = os.getenv(env_key)
        if value:
            optional[field] = value

    try:
        return Settings(
            supabase_url=os.environ["SUPABASE_URL"],
            supabase_anon_key=os.environ["SUPABASE_ANON_KEY"],
            supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
            environment=os.getenv("ENVIRONMENT", "local"),
            **optional,
        )
    except KeyError as exc:
        required_keys = ("SUPABASE_URL", "SUPABASE_ANON_KEY")
        missing = [key for key in required_keys if key not in os.environ]
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}"
        ) from exc
    except ValidationError as exc:
        raise RuntimeError(f"Invalid settings: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Reads environment variables once and validates them with Pydantic.
    """

    return _build_settings()
