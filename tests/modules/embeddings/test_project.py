"""Tests for :mod:`notevec.modules.embeddings.project`."""

from __future__ import annotations

import pytest

from notevec.modules.embeddings.errors import ConfigError
from notevec.modules.embeddings.project import resolve_project


def test_explicit_project_wins() -> None:
    env = {"NOTEVEC_PROJECT": "from-env"}

    assert resolve_project("cli", default="cfg", environ=env) == "cli"


def test_environment_beats_configured_default() -> None:
    env = {"NOTEVEC_PROJECT": " from-env "}

    assert resolve_project(None, default="cfg", environ=env) == "from-env"


def test_blank_values_fall_through() -> None:
    assert resolve_project("  ", default="cfg", environ={}) == "cfg"


def test_missing_project_raises_config_error() -> None:
    with pytest.raises(ConfigError) as excinfo:
        resolve_project(None, default="", environ={})

    assert "NOTEVEC_PROJECT" in str(excinfo.value)
