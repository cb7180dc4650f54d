"""Command-line interface for :mod:`notevec`.

Example:
    >>> import typer
    >>> from notevec.cli import create_app
    >>> app = create_app()
    >>> isinstance(app, typer.Typer)
    True
"""

from __future__ import annotations

import os
from pathlib import Path

import typer

from notevec.cli.config import create_config_app
from notevec.cli.context import NotevecCLIContext, resolve_workspace_override
from notevec.cli.embed import embed_command, health_command
from notevec.core.config import load_workspace_config
from notevec.core.logging import configure_logging, get_logger
from notevec.modules.embeddings.errors import ConfigError

_app_help = (
    "Generate vector embeddings for a knowledge base of notes."
    "\n\n"
    "Use `notevec config init` to write a commented `notevec.toml`."
)


def create_app() -> "typer.Typer":
    """Return the Typer application powering the ``notevec`` CLI."""

    app = typer.Typer(
        help=_app_help,
        no_args_is_help=True,
        rich_markup_mode="rich",
        invoke_without_command=False,
    )

    @app.callback()
    def main_callback(
        ctx: typer.Context,
        workspace: Path | None = typer.Option(
            None,
            "--workspace",
            "-w",
            help=(
                "Override workspace directory (defaults to "
                "NOTEVEC_WORKSPACE or ~/.notevec)."
            ),
        ),
        log_level: str | None = typer.Option(
            None,
            "--log-level",
            "-l",
            help="Override the logging level (DEBUG/INFO/WARNING/ERROR).",
        ),
    ) -> None:
        """Resolve the workspace, load configuration, set up logging."""

        environ = dict(os.environ)
        try:
            paths = resolve_workspace_override(workspace, environ)
        except ValueError as exc:
            typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc

        overrides = {"log_level": log_level} if log_level else None
        try:
            config = load_workspace_config(
                paths.config_file,
                environ=environ,
                cli_overrides=overrides,
            )
        except ConfigError as exc:
            typer.secho(
                f"Failed to load configuration: {exc}",
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1) from exc

        try:
            configure_logging(level=config.log_level, log_dir=paths.logs_dir)
        except (ValueError, OSError) as exc:
            typer.secho(f"Logging error: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc

        ctx.obj = NotevecCLIContext(
            paths=paths,
            config=config,
            logger=get_logger(__name__, command=ctx.invoked_subcommand),
            environ=environ,
        )

    app.command(
        "embed",
        help=(
            "Embed new or changed notes of a project in groups, recycling "
            "connections between groups."
        ),
    )(embed_command)
    app.command(
        "health",
        help="Check that the embedding backend and its model are available.",
    )(health_command)
    app.add_typer(create_config_app(), name="config")

    return app


__all__ = ["create_app"]
