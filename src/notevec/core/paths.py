"""Workspace path helpers for :mod:`notevec`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

__all__ = [
    "CONFIG_FILENAME",
    "WorkspacePaths",
    "resolve_workspace",
]

CONFIG_FILENAME = "notevec.toml"


@dataclass(frozen=True, slots=True)
class WorkspacePaths:
    """Resolved locations for a workspace.

    Example:
        >>> from pathlib import Path
        >>> paths = WorkspacePaths.for_root(Path("/tmp/nv"))
        >>> [p.name for p in paths.iter_all()]
        ['nv', 'notevec.toml', 'logs']
    """

    workspace: Path
    config_file: Path
    logs_dir: Path

    @classmethod
    def for_root(cls, workspace: Path) -> "WorkspacePaths":
        return cls(
            workspace=workspace,
            config_file=workspace / CONFIG_FILENAME,
            logs_dir=workspace / "logs",
        )

    def iter_all(self) -> Iterable[Path]:
        """Yield every path managed within the workspace."""

        yield from (self.workspace, self.config_file, self.logs_dir)

    def ensure(self) -> None:
        """Create the workspace and log directories if missing."""

        self.workspace.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


def resolve_workspace(
    *,
    workspace_override: Path | None = None,
    env_override: Path | None = None,
) -> WorkspacePaths:
    """Resolve canonical workspace locations.

    Args:
        workspace_override: Optional override provided by CLI flags.
        env_override: Optional override from ``NOTEVEC_WORKSPACE``.

    Returns:
        Resolved workspace paths; defaults to ``~/.notevec``.

    Raises:
        ValueError: If the resolved workspace points to a regular file.
    """

    base = workspace_override or env_override or Path.home() / ".notevec"
    raw = Path(base).expanduser()
    if not raw.is_absolute():
        raw = Path.cwd() / raw
    workspace = raw.resolve(strict=False)

    if workspace.exists() and workspace.is_file():
        raise ValueError(f"Workspace file path not allowed: {workspace}")

    return WorkspacePaths.for_root(workspace)
