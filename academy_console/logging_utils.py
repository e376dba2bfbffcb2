"""Centralized logging configuration for the Academy Console toolkit."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_MANAGED_HANDLER_FLAG = "_academy_console_managed"


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger.

    Handlers installed by a previous call are replaced, so invoking several
    CLI commands in one process does not duplicate output.
    """

    logger = logging.getLogger()
    logger.setLevel(level)

    for existing in list(logger.handlers):
        if getattr(existing, _MANAGED_HANDLER_FLAG, False):
            logger.removeHandler(existing)
            existing.close()

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        handlers = [stream_handler]

    for handler in handlers:
        setattr(handler, _MANAGED_HANDLER_FLAG, True)
        logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the toolkit log file."""

    return storage_root / "academy_console.log"


def build_handlers(storage_root: Path, *, console: bool = False) -> List[logging.Handler]:
    """Return the file handler (and optionally a stream handler) for *storage_root*."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(get_log_file_path(storage_root), encoding="utf-8")
    file_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [file_handler]
    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        handlers.append(stream_handler)
    return handlers


__all__ = ["build_handlers", "configure_logging", "get_log_file_path", "DEFAULT_LOG_FORMAT"]
