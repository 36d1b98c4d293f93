"""
Logging setup: stdlib loggers under one ``qbank_search`` root, rendered by rich.
"""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

BASE_LOGGER_NAME = "qbank_search"
ENV_LOG_LEVEL = "QBANK_LOG_LEVEL"


def configure_logging(
    level: str | None = None,
    *,
    console: Console | None = None,
) -> logging.Logger:
    """
    Attach a single RichHandler to the package root logger.

    Safe to call repeatedly. The level is taken from *level*, else from
    ``QBANK_LOG_LEVEL`` the first time the handler is attached.
    """
    logger = logging.getLogger(BASE_LOGGER_NAME)

    created = False
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=False,
            log_time_format="[%Y-%m-%d %H:%M:%S]",
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
        created = True

    if created or level is not None:
        level_name = (level or os.getenv(ENV_LOG_LEVEL) or "INFO").upper()
        logger.setLevel(getattr(logging, level_name, logging.INFO))
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Return a logger below the package root, e.g. ``qbank_search.indexing.backfill``.

    Module ``__name__`` values are used as-is; other names are nested under
    the root.
    """
    configure_logging()
    if not name or name == BASE_LOGGER_NAME:
        return logging.getLogger(BASE_LOGGER_NAME)
    if name.startswith(f"{BASE_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{BASE_LOGGER_NAME}.{name}")
