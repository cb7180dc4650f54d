"""Shared CLI context and failure helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import typer

from notevec.core.config import ENV_WORKSPACE, AppConfig
from notevec.core.logging import Logger
from notevec.core.paths import WorkspacePaths, resolve_workspace

__all__ = [
    "NotevecCLIContext",
    "handle_service_failure",
    "require_context",
    "resolve_workspace_override",
]


@dataclass(slots=True)
class NotevecCLIContext:
    """State resolved once per invocation and shared by every command."""

    paths: WorkspacePaths
    config: AppConfig
    logger: Logger
    environ: Mapping[str, str]


def resolve_workspace_override(
    workspace: Path | None,
    environ: Mapping[str, str] | None = None,
) -> WorkspacePaths:
    env = os.environ if environ is None else environ
    env_workspace = env.get(ENV_WORKSPACE)
    env_override = Path(env_workspace).expanduser() if env_workspace else None
    return resolve_workspace(
        workspace_override=workspace,
        env_override=env_override,
    )


def require_context(ctx: typer.Context) -> NotevecCLIContext:
    context = getattr(ctx, "obj", None)
    if not isinstance(context, NotevecCLIContext):
        typer.secho(
            "Internal error: CLI context not initialized.",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    return context


def handle_service_failure(
    action: str,
    error: Exception,
    *,
    logger: Logger,
) -> None:
    """Report ``error`` and exit with status 1."""

    typer.secho(f"{action.capitalize()} failed: {error}", fg=typer.colors.RED)
    logger.error(
        f"{action}-failed",
        error=str(error),
        error_type=error.__class__.__name__,
    )
    raise typer.Exit(code=1) from error
