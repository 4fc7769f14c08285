"""Logging configuration for applications embedding aiscrape.

Library modules only ever call ``logging.getLogger(__name__)``; configuring
handlers is left to the host process, which may call configure_logging()
once at startup.
"""

from __future__ import annotations

import logging

from aiscrape.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: int | str | None = None) -> None:
    """Configure the root logger with the aiscrape format.

    Args:
        level: Logging level name or number. Defaults to the configured
            ``AISCRAPE_LOG_LEVEL``.
    """
    if level is None:
        level = settings.get_log_level_int()
    elif isinstance(level, str):
        level = getattr(logging, level.upper().strip(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
    logging.getLogger("aiscrape").setLevel(level)
