"""Typer command group for inspecting and seeding ``notevec.toml``."""

from __future__ import annotations

import json

import typer

from notevec.cli.context import handle_service_failure, require_context
from notevec.core.config import render_user_config

__all__ = ["create_config_app"]


def create_config_app() -> typer.Typer:
    """Return the ``notevec config`` sub-application."""

    app = typer.Typer(
        name="config",
        help="Show the effective configuration or write notevec.toml.",
        no_args_is_help=True,
    )

    @app.command("show", help="Print the effective configuration.")
    def show_config(
        ctx: typer.Context,
        json_output: bool = typer.Option(
            False,
            "--json",
            help="Emit the configuration as JSON instead of TOML.",
        ),
    ) -> None:
        context = require_context(ctx)
        if json_output:
            payload = context.config.model_dump(mode="json")
            typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        else:
            typer.echo(
                render_user_config(context.config, include_defaults=False)
            )
        context.logger.debug("config-show", json=json_output)

    @app.command(
        "init",
        help=(
            "Write notevec.toml into the workspace, annotated with field "
            "descriptions."
        ),
    )
    def init_config(
        ctx: typer.Context,
        force: bool = typer.Option(
            False,
            "--force",
            help="Overwrite an existing notevec.toml.",
        ),
    ) -> None:
        context = require_context(ctx)
        target = context.paths.config_file
        if target.exists() and not force:
            typer.secho(
                f"Config already exists at {target}; use --force to replace.",
                fg=typer.colors.YELLOW,
            )
            raise typer.Exit(code=1)

        try:
            context.paths.ensure()
            target.write_text(
                render_user_config(context.config),
                encoding="utf-8",
            )
        except OSError as exc:
            handle_service_failure("config-init", exc, logger=context.logger)
            return

        typer.secho(f"Wrote {target}", fg=typer.colors.GREEN)
        context.logger.info(
            "config-init",
            path=str(target),
            overwritten=force,
        )

    return app
