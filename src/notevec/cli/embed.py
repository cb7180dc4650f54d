"""Typer commands for embedding runs and backend health checks."""

from __future__ import annotations

import json

import typer

from notevec.cli.context import (
    NotevecCLIContext,
    handle_service_failure,
    require_context,
)
from notevec.modules.embeddings.backend import (
    BackendHealth,
    HttpEmbeddingBackend,
)
from notevec.modules.embeddings.errors import NotevecError
from notevec.modules.embeddings.models import (
    ProgressEvent,
    RunState,
    RunSummary,
)
from notevec.modules.embeddings.service import EmbeddingService

__all__ = ["embed_command", "health_command"]

_MAX_LISTED_FAILURES = 10

_STATE_COLORS = {
    RunState.COMPLETED: typer.colors.GREEN,
    RunState.CANCELLED: typer.colors.YELLOW,
    RunState.FATALLY_FAILED: typer.colors.RED,
}


def _build_service(context: NotevecCLIContext) -> EmbeddingService:
    service = EmbeddingService.from_config(
        context.config,
        context.paths,
        logger=context.logger,
    )
    service.environ = context.environ
    return service


def _build_backend(context: NotevecCLIContext) -> HttpEmbeddingBackend:
    return HttpEmbeddingBackend.from_settings(
        context.config.backend,
        logger=context.logger.bind(component="backend"),
    )


def _echo_event(event: ProgressEvent, *, json_output: bool) -> None:
    if json_output:
        typer.echo(json.dumps(event.to_mapping(), sort_keys=True))
    else:
        typer.echo(event.describe())


def _emit_summary(summary: RunSummary) -> None:
    color = _STATE_COLORS.get(summary.state, typer.colors.WHITE)
    typer.secho(
        f"Embedding run {summary.state.value} for project {summary.project}",
        fg=color,
        bold=True,
    )
    typer.echo(f"  notes: {summary.total_notes}")
    typer.echo(f"  succeeded: {summary.succeeded}")
    typer.echo(f"  failed: {summary.failed}")
    typer.echo(f"  skipped: {summary.skipped}")
    typer.echo(
        f"  groups: {summary.groups_completed}/{summary.total_groups}"
    )
    typer.echo(f"  chunks embedded: {summary.chunks_embedded}")
    typer.echo(f"  elapsed: {summary.elapsed_seconds:.2f}s")

    if summary.fatal_error:
        typer.secho(f"  fatal: {summary.fatal_error}", fg=typer.colors.RED)

    failures = list(summary.iter_failures())
    if failures:
        typer.echo("Failures:")
        for note_id, reason in failures[:_MAX_LISTED_FAILURES]:
            typer.echo(f"  - {note_id}: {reason}")
        hidden = len(failures) - _MAX_LISTED_FAILURES
        if hidden > 0:
            typer.echo(f"  ... and {hidden} more")


def embed_command(
    ctx: typer.Context,
    project: str | None = typer.Option(
        None,
        "--project",
        "-p",
        help=(
            "Project to embed (defaults to NOTEVEC_PROJECT, then "
            "default_project)."
        ),
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Re-embed every note, not only new or changed ones.",
    ),
    limit: int | None = typer.Option(
        None,
        "--limit",
        "-n",
        min=0,
        help=(
            "Maximum notes to process; 0 means no cap (defaults to "
            "scheduler.default_limit)."
        ),
    ),
    group_size: int | None = typer.Option(
        None,
        "--group-size",
        "-g",
        min=1,
        help="Notes per group; handles are recycled between groups.",
    ),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-c",
        min=1,
        help="Notes processed in parallel within a group.",
    ),
    stream: bool = typer.Option(
        False,
        "--stream/--no-stream",
        help="Print progress as it happens instead of only the summary.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help=(
            "Emit machine-readable JSON (one object per line when "
            "streaming)."
        ),
    ),
) -> None:
    """Generate embeddings for the notes of a project."""

    context = require_context(ctx)
    try:
        service = _build_service(context)
    except NotevecError as exc:
        handle_service_failure("embed", exc, logger=context.logger)
        return

    try:
        if stream:
            summary = None
            for item in service.stream_embeddings(
                project,
                force=force,
                limit=limit,
                group_size=group_size,
                concurrency=concurrency,
            ):
                if isinstance(item, RunSummary):
                    summary = item
                else:
                    _echo_event(item, json_output=json_output)
            if summary is None:
                raise RuntimeError("Embedding stream ended without a summary.")
        else:
            summary = service.generate_embeddings(
                project,
                force=force,
                limit=limit,
                group_size=group_size,
                concurrency=concurrency,
            )
    except NotevecError as exc:
        handle_service_failure("embed", exc, logger=context.logger)
        return
    finally:
        service.close()

    if json_output:
        payload = summary.to_mapping(include_progress=not stream)
        typer.echo(json.dumps(payload, indent=None if stream else 2))
    else:
        _emit_summary(summary)

    context.logger.info(
        "embed-command",
        project=summary.project,
        state=summary.state.value,
        succeeded=summary.succeeded,
        failed=summary.failed,
        skipped=summary.skipped,
        stream=stream,
    )
    if summary.state is RunState.FATALLY_FAILED:
        raise typer.Exit(code=1)


def _emit_health(health: BackendHealth, base_url: str) -> None:
    if health.ok:
        typer.secho(
            f"Backend ready at {base_url} (model {health.model})",
            fg=typer.colors.GREEN,
        )
        return
    label = "unreachable" if not health.reachable else "missing model"
    typer.secho(
        f"Backend {label} at {base_url}: {health.detail}",
        fg=typer.colors.RED,
    )
    if health.models:
        typer.echo("Available models:")
        for name in health.models:
            typer.echo(f"  - {name}")


def health_command(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the health report as JSON.",
    ),
) -> None:
    """Check backend reachability and that the configured model exists."""

    context = require_context(ctx)
    backend = _build_backend(context)
    try:
        health = backend.check_health()
    finally:
        backend.close()

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "base_url": context.config.backend.base_url,
                    "model": health.model,
                    "reachable": health.reachable,
                    "model_available": health.model_available,
                    "models": list(health.models),
                    "detail": health.detail,
                },
                indent=2,
            )
        )
    else:
        _emit_health(health, context.config.backend.base_url)

    context.logger.info(
        "health-command",
        reachable=health.reachable,
        model_available=health.model_available,
    )
    if not health.ok:
        raise typer.Exit(code=1)
