"""Tests for the ``config`` command group and root callback."""

from __future__ import annotations

import json
import tomllib
from pathlib import Path

from typer.testing import CliRunner

from notevec.cli import create_app

_QUIET = ["--log-level", "ERROR"]


def _config_path(env: dict[str, str]) -> Path:
    return Path(env["NOTEVEC_WORKSPACE"]) / "notevec.toml"


def test_config_init_writes_commented_file(
    runner: CliRunner,
    cli_env: dict[str, str],
) -> None:
    env = {**cli_env, "NOTEVEC_BACKEND_MODEL": "mxbai-embed-large"}

    result = runner.invoke(create_app(), [*_QUIET, "config", "init"], env=env)

    assert result.exit_code == 0, result.output
    target = _config_path(env)
    assert f"Wrote {target}" in result.output
    text = target.read_text(encoding="utf-8")
    assert text.startswith("# Generated by notevec config init")
    data = tomllib.loads(text)
    assert data["backend"]["model"] == "mxbai-embed-large"
    assert data["scheduler"]["group_size"] == 25
    assert (target.parent / "logs").is_dir()


def test_config_init_refuses_to_overwrite_without_force(
    runner: CliRunner,
    cli_env: dict[str, str],
) -> None:
    target = _config_path(cli_env)
    target.parent.mkdir(parents=True)
    target.write_text('default_project = "kb"\n', encoding="utf-8")

    refused = runner.invoke(
        create_app(),
        [*_QUIET, "config", "init"],
        env=cli_env,
    )

    assert refused.exit_code == 1
    assert "use --force to replace" in refused.output
    assert target.read_text(encoding="utf-8") == 'default_project = "kb"\n'

    forced = runner.invoke(
        create_app(),
        [*_QUIET, "config", "init", "--force"],
        env=cli_env,
    )

    assert forced.exit_code == 0, forced.output
    data = tomllib.loads(target.read_text(encoding="utf-8"))
    assert data["default_project"] == "kb"
    assert data["backend"]["base_url"] == "http://localhost:11434"


def test_config_show_json_reflects_workspace_file(
    runner: CliRunner,
    cli_env: dict[str, str],
) -> None:
    target = _config_path(cli_env)
    target.parent.mkdir(parents=True)
    target.write_text(
        "[scheduler]\ngroup_size = 7\n",
        encoding="utf-8",
    )

    result = runner.invoke(
        create_app(),
        [*_QUIET, "config", "show", "--json"],
        env=cli_env,
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["scheduler"]["group_size"] == 7
    assert payload["log_level"] == "ERROR"


def test_config_show_renders_toml(
    runner: CliRunner,
    cli_env: dict[str, str],
) -> None:
    result = runner.invoke(
        create_app(),
        [*_QUIET, "config", "show"],
        env=cli_env,
    )

    assert result.exit_code == 0, result.output
    data = tomllib.loads(result.stdout)
    assert data["backend"]["model"] == "nomic-embed-text"
    assert data["vector_store"]["path"] == "vectors.sqlite3"


def test_invalid_workspace_config_is_reported(
    runner: CliRunner,
    cli_env: dict[str, str],
) -> None:
    target = _config_path(cli_env)
    target.parent.mkdir(parents=True)
    target.write_text("[chunking]\noverlap_fraction = 2.0\n", encoding="utf-8")

    result = runner.invoke(
        create_app(),
        [*_QUIET, "config", "show"],
        env=cli_env,
    )

    assert result.exit_code == 1
    assert "Failed to load configuration" in result.output


def test_workspace_pointing_at_file_is_rejected(
    runner: CliRunner,
    tmp_path: Path,
) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")

    result = runner.invoke(
        create_app(),
        ["--workspace", str(blocker), "config", "show"],
        env={"HOME": str(tmp_path)},
    )

    assert result.exit_code == 1
    assert "Workspace error" in result.output


def test_unknown_log_level_is_reported(
    runner: CliRunner,
    cli_env: dict[str, str],
) -> None:
    result = runner.invoke(
        create_app(),
        ["--log-level", "chatty", "config", "show"],
        env=cli_env,
    )

    assert result.exit_code == 1
    assert "Logging error" in result.output
