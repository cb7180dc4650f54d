"""Tests for :mod:`notevec.core.paths`."""

from __future__ import annotations

from pathlib import Path

import pytest

from notevec.core.paths import WorkspacePaths, resolve_workspace


def test_resolve_workspace_defaults_to_home_dot_notevec(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fake_home = tmp_path / "home"
    monkeypatch.setenv("HOME", fake_home.as_posix())
    monkeypatch.setenv("USERPROFILE", fake_home.as_posix())

    paths = resolve_workspace()

    expected = (fake_home / ".notevec").resolve(strict=False)
    assert paths.workspace == expected
    assert paths.config_file == expected / "notevec.toml"
    assert paths.logs_dir == expected / "logs"


def test_cli_override_beats_env_override(tmp_path: Path) -> None:
    cli = tmp_path / "cli"
    env = tmp_path / "env"

    paths = resolve_workspace(workspace_override=cli, env_override=env)

    assert paths.workspace == cli.resolve()


def test_env_override_used_without_cli(tmp_path: Path) -> None:
    env = tmp_path / "env"

    assert resolve_workspace(env_override=env).workspace == env.resolve()


def test_relative_override_resolves_against_cwd(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.chdir(tmp_path)

    paths = resolve_workspace(workspace_override=Path("relative-ws"))

    assert paths.workspace == (tmp_path / "relative-ws").resolve()


def test_file_workspace_is_rejected(tmp_path: Path) -> None:
    target = tmp_path / "not-a-dir"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(ValueError):
        resolve_workspace(workspace_override=target)


def test_ensure_creates_directories(tmp_path: Path) -> None:
    paths = WorkspacePaths.for_root(tmp_path / "ws")

    paths.ensure()

    assert paths.workspace.is_dir()
    assert paths.logs_dir.is_dir()
    assert not paths.config_file.exists()
    assert list(paths.iter_all()) == [
        paths.workspace,
        paths.config_file,
        paths.logs_dir,
    ]
