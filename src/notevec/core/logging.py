"""Logging helpers for :mod:`notevec`.

Console output goes through Rich; when a workspace is known, JSON lines are
also written to ``<workspace>/logs/notevec.log`` with daily gzip rotation.
"""

from __future__ import annotations

import gzip
import logging
import shutil
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Iterable

import structlog
from rich.console import Console
from rich.logging import RichHandler

Logger = structlog.stdlib.BoundLogger

_TIMESTAMPER = structlog.processors.TimeStamper(fmt="iso", utc=True)
_PRE_CHAIN = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    _TIMESTAMPER,
]

_ROTATION_BACKUP_COUNT = 7
LOG_FILENAME = "notevec.log"

# Chatty third-party loggers kept at WARNING unless DEBUG is requested.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _normalize_level(level: str | int) -> int:
    """Return the logging module level constant for ``level``.

    Raises:
        ValueError: If the level name is not recognized.
    """

    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if isinstance(value, str):  # ``getLevelName`` echoes unknown names.
        raise ValueError(f"Unsupported log level: {level!r}")
    return value


def _reset_root_logger(
    root: logging.Logger,
    handlers: Iterable[logging.Handler],
) -> None:
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)


def _configure_structlog() -> None:
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            *_PRE_CHAIN,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _gzip_rotator(source: str, dest: str) -> None:
    """Compress rotated log file ``source`` into ``dest``."""

    with open(source, "rb") as src, gzip.open(dest, "wb") as target:
        shutil.copyfileobj(src, target)
    Path(source).unlink(missing_ok=True)


def _build_file_handler(
    log_file: Path,
    level: int,
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        log_file,
        when="midnight",
        backupCount=_ROTATION_BACKUP_COUNT,
        utc=True,
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(level)
    handler.suffix = "%Y-%m-%d"
    handler.namer = lambda name: f"{name}.gz"
    handler.rotator = _gzip_rotator
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(sort_keys=True),
            foreign_pre_chain=_PRE_CHAIN,
        )
    )
    return handler


def _build_console_handler(
    level: int,
    console: Console | None = None,
) -> RichHandler:
    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        enable_link_path=False,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=_PRE_CHAIN,
        )
    )
    return handler


def configure_logging(
    *,
    level: str | int = "INFO",
    log_dir: str | Path | None = None,
    console: Console | None = None,
) -> Path | None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Log level name (case-insensitive) or numeric level.
        log_dir: Directory for the rotating JSON log file; console only
            when omitted.
        console: Optional Rich console override, primarily for testing.

    Returns:
        The log file path when file logging is enabled.

    Raises:
        ValueError: If ``level`` is not a recognized log level name.
    """

    log_level = _normalize_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    _configure_structlog()

    handlers: list[logging.Handler] = [
        _build_console_handler(log_level, console=console)
    ]
    log_file: Path | None = None
    if log_dir is not None:
        directory = Path(log_dir).expanduser().resolve(strict=False)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / LOG_FILENAME
        handlers.append(_build_file_handler(log_file, log_level))

    _reset_root_logger(root_logger, handlers)

    quiet_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    logging.captureWarnings(True)
    return log_file


def get_logger(name: str | None = None, **initial_context: Any) -> Logger:
    """Return a structured logger bound to an optional context.

    Example:
        >>> logger = get_logger(__name__, component="scheduler")
        >>> hasattr(logger, "bind")
        True
    """

    return structlog.get_logger(name).bind(**initial_context)


__all__ = ["LOG_FILENAME", "Logger", "configure_logging", "get_logger"]
