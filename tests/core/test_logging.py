"""Tests for :mod:`notevec.core.logging`."""

from __future__ import annotations

import gzip
import io
import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import pytest
import structlog
from rich.console import Console
from rich.logging import RichHandler

from notevec.core.logging import LOG_FILENAME, configure_logging, get_logger


def _clear_root_handlers() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Ensure each test runs with a clean logging configuration."""

    _clear_root_handlers()
    yield
    _clear_root_handlers()
    structlog.reset_defaults()


def _build_console() -> Console:
    return Console(file=io.StringIO(), width=120, record=True)


def test_configure_logging_writes_json_lines(tmp_path: Path) -> None:
    log_dir = tmp_path / "workspace" / "logs"

    log_file = configure_logging(
        level="debug",
        log_dir=log_dir,
        console=_build_console(),
    )

    root = logging.getLogger()
    assert len([h for h in root.handlers if isinstance(h, RichHandler)]) == 1
    assert log_file == log_dir.resolve() / LOG_FILENAME

    logger = get_logger(__name__, component="scheduler")
    logger.info("embed-run-started", notes=3)
    for handler in root.handlers:
        handler.flush()

    payload = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert payload["event"] == "embed-run-started"
    assert payload["component"] == "scheduler"
    assert payload["notes"] == 3
    assert payload["level"] == "info"


def test_console_only_without_log_dir() -> None:
    console = _build_console()

    assert configure_logging(level="info", console=console) is None

    root = logging.getLogger()
    assert not any(
        isinstance(h, TimedRotatingFileHandler) for h in root.handlers
    )
    get_logger("console").warning("backend-slow", latency=2.5)
    assert "backend-slow" in console.export_text()


def test_unknown_level_is_rejected() -> None:
    with pytest.raises(ValueError):
        configure_logging(level="chatty", console=_build_console())


def test_http_client_loggers_are_quieted() -> None:
    configure_logging(level="info", console=_build_console())

    assert logging.getLogger("httpx").level == logging.WARNING

    configure_logging(level="debug", console=_build_console())

    assert logging.getLogger("httpx").level == logging.DEBUG


def test_rollover_compresses_archives(tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"
    configure_logging(
        level="warning",
        log_dir=log_dir,
        console=_build_console(),
    )
    root = logging.getLogger()
    file_handler = next(
        h for h in root.handlers if isinstance(h, TimedRotatingFileHandler)
    )

    get_logger("rotate", task="rotation").warning("pre-rotation")
    file_handler.flush()
    file_handler.doRollover()

    archives = sorted(log_dir.glob(f"{LOG_FILENAME}.*.gz"))
    assert archives
    with gzip.open(archives[-1], "rt", encoding="utf-8") as fh:
        archived = fh.read()
    assert "pre-rotation" in archived
