from __future__ import annotations

import logging
from logging import Logger

from .config import Settings, get_settings


def configure_logging(settings: Settings | None = None) -> Logger:
    """
    Configure root logger for the notification subsystem.

    Uses a simple format suitable for both local development and production logs.
    """

    settings = settings or get_settings()

    log_level = logging.DEBUG if settings.is_debug else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    logger = logging.getLogger("clubnotify")
    logger.setLevel(log_level)
    return logger
