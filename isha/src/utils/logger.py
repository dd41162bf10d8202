"""
Isha - Logging
===============
Logger factory shared by every Isha module.

Level resolution, first match wins:
  1. explicit ``level`` argument
  2. ``settings.LOG_LEVEL``
  3. ``settings.ENV`` → ``"dev"`` = DEBUG, ``"prod"`` = WARNING

All Isha loggers write through one stdout handler and do not propagate,
so uvicorn's root configuration never duplicates their lines.

Usage:
    from isha.src.utils.logger import get_logger
    logger = get_logger(__name__)
    logger.info("Retrieved %d document(s)", n)
"""

import logging
import sys

from isha.config.settings import settings

_ENV_LEVEL_MAP = {
    "dev": logging.DEBUG,
    "prod": logging.WARNING,
}
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty per-request loggers of the HTTP and storage stack
_NOISY_LOGGERS = ("httpx", "httpcore", "lancedb", "multipart")

_handler: logging.Handler | None = None


def _default_level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL)
    return _ENV_LEVEL_MAP.get(settings.ENV, logging.INFO)


def _shared_handler() -> logging.Handler:
    global _handler
    if _handler is None:
        _handler = logging.StreamHandler(sys.stdout)
        _handler.setFormatter(logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
    return _handler


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """
    Return the named logger, attaching the shared handler on first use.

    Args:
        name:  Typically ``__name__`` of the calling module.
        level: Explicit level override for this logger.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_shared_handler())
        logger.setLevel(level if level is not None else _default_level())
        logger.propagate = False
    elif level is not None:
        logger.setLevel(level)
    return logger


def quiet_third_party(level: int = logging.WARNING) -> None:
    """Raise the threshold of the third-party loggers listed in ``_NOISY_LOGGERS``."""
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)
