"""Logging setup driven by the ``logging`` section of config.yaml.

Console output goes through rich, the file log through a rotating handler.
Rule-evaluation chatter lives under ``autopilot.auto`` and is switched to
DEBUG by the ``debugLogging`` automation flag.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.logging import RichHandler

ROOT_LOGGER = "autopilot"
ENGINE_LOGGER = "autopilot.auto"

FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)-8s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _console_handler() -> logging.Handler:
    handler = RichHandler(rich_tracebacks=True, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    return handler


def _file_handler(path: str, max_size_mb: float, backup_count: int) -> logging.Handler:
    log_path = Path(path).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=int(max_size_mb * 1024 * 1024),
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    settings: dict[str, Any] | None = None,
    level: str = "INFO",
    console: bool | None = None,
) -> logging.Logger:
    """Attach handlers to the ``autopilot`` logger.

    Calling it again swaps the handlers, so a CLI command can log to the
    file only while ``run`` also logs to the terminal.

    Args:
        settings: The ``logging`` config mapping: ``file`` (empty disables
            the file log), ``max_size_mb``, ``backup_count`` and
            ``console_output``.
        level: Level name for the ``autopilot`` logger.
        console: Overrides ``console_output`` when not None.

    Returns:
        The ``autopilot`` logger.
    """
    settings = settings or {}
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console is None:
        console = settings.get("console_output", True)
    if console:
        logger.addHandler(_console_handler())

    if settings.get("file"):
        logger.addHandler(
            _file_handler(
                settings["file"],
                settings.get("max_size_mb", 20),
                settings.get("backup_count", 3),
            )
        )
    return logger


def set_debug_logging(enabled: bool) -> None:
    """Log rule evaluation at DEBUG (on) or inherit the root level (off)."""
    logging.getLogger(ENGINE_LOGGER).setLevel(logging.DEBUG if enabled else logging.NOTSET)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)
