"""Centralized logging configuration."""

import logging

from config import settings

# Log lines carry the thread name so concurrent account syncs can be told apart.
LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s  %(message)s"

# Libraries whose INFO output drowns the sync engine's own progress lines.
NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "urllib3",
    "plaid",
)


def setup_logging(level: str | None = None) -> None:
    """Configure root logging for the API and the sync script.

    Args:
        level: Overrides ``settings.LOG_LEVEL`` (the script's ``--verbose``
            passes ``"DEBUG"``).
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        level=getattr(logging, level_name),
        force=True,
    )

    # Provider and database chatter stays at WARNING even when debugging the engine.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
