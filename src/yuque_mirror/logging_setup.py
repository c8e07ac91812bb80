"""Logging for yuque-mirror: a single Rich handler on the root logger."""

from __future__ import annotations

import logging
import os
from typing import Final

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["console", "configure_logging", "managed_handler"]

LOG_LEVEL_ENV: Final[str] = "YUQUE_MIRROR_LOG_LEVEL"
_MANAGED_FLAG: Final[str] = "_yuque_mirror_managed"
# Libraries that log every request at INFO.
_CHATTY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore")

console = Console()


def _resolve_level(debug: bool) -> int:
    if debug:
        return logging.DEBUG
    level = logging.getLevelName(os.getenv(LOG_LEVEL_ENV, "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def managed_handler() -> RichHandler | None:
    """Return the handler installed by :func:`configure_logging`, if any."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, RichHandler) and getattr(handler, _MANAGED_FLAG, False):
            return handler
    return None


def _new_handler() -> RichHandler:
    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        log_time_format="[%Y-%m-%d %H:%M:%S]",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    setattr(handler, _MANAGED_FLAG, True)
    return handler


def configure_logging(*, debug: bool = False) -> None:
    """Install the Rich handler (once) and apply the level for this run.

    ``--debug`` wins over ``YUQUE_MIRROR_LOG_LEVEL``; an unknown level name
    falls back to INFO.
    """
    root_logger = logging.getLogger()
    if managed_handler() is None:
        root_logger.handlers.clear()
        root_logger.addHandler(_new_handler())

    level = _resolve_level(debug)
    root_logger.setLevel(level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.captureWarnings(True)
