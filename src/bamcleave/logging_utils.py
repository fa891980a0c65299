"""Logging utilities for bamcleave."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "bamcleave"
DEFAULT_LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _is_console(handler: logging.Handler) -> bool:
    # FileHandler subclasses StreamHandler
    return type(handler) is logging.StreamHandler


def _writes_to(handler: logging.Handler, path: Path) -> bool:
    return isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path.resolve()


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    reconfigure: bool = False,
    fmt: str = DEFAULT_LOG_FORMAT,
    datefmt: str = DEFAULT_DATE_FORMAT,
) -> logging.Logger:
    """
    Attach a stderr handler, and a file handler for ``log_file``, to the package logger.

    Repeated calls add nothing that is already attached, so the CLI can call this once
    per command. ``reconfigure`` drops the existing handlers first.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    if reconfigure:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)
    if not any(_is_console(h) for h in logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    if log_file is not None:
        log_path = Path(log_file)
        if not any(_writes_to(h, log_path) for h in logger.handlers):
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger.setLevel(level)
    logger.propagate = False
    return logger


def resolve_log_level(name: Union[str, int, None], default: int = logging.INFO) -> int:
    """Translate a level name such as ``"debug"`` into a ``logging`` constant."""
    if isinstance(name, int):
        return name
    if not name:
        return default
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else default


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
