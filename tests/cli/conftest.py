"""Fixtures shared by the CLI tests."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import structlog
from typer.testing import CliRunner


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Drop the handlers each invocation installs on the root logger."""

    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def cli_env(tmp_path: Path) -> dict[str, str]:
    return {
        "HOME": str(tmp_path),
        "NOTEVEC_WORKSPACE": str(tmp_path / "workspace"),
    }
