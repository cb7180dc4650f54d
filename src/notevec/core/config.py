"""Configuration models and loaders for :mod:`notevec`."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from pathlib import Path
from typing import Any, Mapping

import tomllib
import tomlkit
from pydantic import BaseModel, Field, ValidationError, field_validator

from notevec.modules.embeddings.errors import ConfigError
from notevec.resources import get_resource

#: Backends have shown 5xx failures beyond a handful of parallel calls.
BACKEND_CONCURRENCY_CEILING = 4

ENV_WORKSPACE = "NOTEVEC_WORKSPACE"
ENV_LOG_LEVEL = "NOTEVEC_LOG_LEVEL"
ENV_PROJECT = "NOTEVEC_PROJECT"
ENV_BACKEND_URL = "NOTEVEC_BACKEND_URL"
ENV_BACKEND_MODEL = "NOTEVEC_BACKEND_MODEL"


class BackendSettings(BaseModel):
    """Embedding backend connection and backpressure settings."""

    base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the HTTP embedding service.",
    )
    model: str = Field(
        default="nomic-embed-text",
        description="Embedding model name requested from the backend.",
    )
    task_prefix: str = Field(
        default="search_document",
        description="Prefix prepended to each text as '<prefix>: <text>'.",
    )
    timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Per-call timeout in seconds.",
    )
    min_interval: float = Field(
        default=0.2,
        ge=0.0,
        description="Minimum delay in seconds between consecutive calls.",
    )
    max_concurrency: int = Field(
        default=2,
        ge=1,
        description=(
            "Maximum in-flight calls; clamped to the hard ceiling of "
            f"{BACKEND_CONCURRENCY_CEILING}."
        ),
    )
    dimensions: int = Field(
        default=768,
        ge=0,
        description="Expected vector length; 0 accepts the first observed.",
    )
    truncate: bool = Field(
        default=True,
        description="Ask the backend to truncate over-long inputs.",
    )

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value:
            raise ValueError("Backend base_url cannot be blank.")
        return value.rstrip("/")


class ChunkingSettings(BaseModel):
    """Chunker sizing."""

    max_chunk_chars: int = Field(
        default=2000,
        gt=0,
        description="Maximum characters per chunk.",
    )
    overlap_fraction: float = Field(
        default=0.15,
        ge=0.0,
        lt=1.0,
        description="Fraction of max_chunk_chars shared by adjacent chunks.",
    )

    model_config = {"validate_assignment": True}


class SchedulerSettings(BaseModel):
    """Batch scheduler tuning knobs."""

    group_size: int = Field(
        default=25,
        ge=1,
        description="Notes per work group (one recycle unit).",
    )
    concurrency: int = Field(
        default=1,
        ge=1,
        description="Notes processed in parallel within a group.",
    )
    group_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds to pause between groups.",
    )
    note_delay: float = Field(
        default=0.0,
        ge=0.0,
        description="Seconds to pause between notes in sequential groups.",
    )
    large_batch_threshold: int = Field(
        default=500,
        ge=0,
        description="Batch size above which a warning is logged.",
    )
    max_consecutive_backend_failures: int = Field(
        default=10,
        ge=0,
        description=(
            "Consecutive backend failures before the run aborts (0 disables)."
        ),
    )
    io_retry_attempts: int = Field(
        default=1,
        ge=0,
        description="Reconnect-and-retry attempts after a transport error.",
    )
    backend_retry_attempts: int = Field(
        default=2,
        ge=0,
        description=(
            "Extra attempts per chunk after a retryable backend error."
        ),
    )
    backend_retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds before the first backend retry; doubles after.",
    )
    default_limit: int = Field(
        default=100,
        ge=0,
        description="Default note cap per run (0 means no cap).",
    )
    max_reported_errors: int = Field(
        default=50,
        ge=0,
        description="Maximum rendered error strings kept in the summary.",
    )

    model_config = {"validate_assignment": True}


class ContentStoreSettings(BaseModel):
    """Tool-call subprocess exposing the note store."""

    command: list[str] = Field(
        default_factory=list,
        description="Argv used to spawn the content store subprocess.",
    )
    list_tool: str = Field(
        default="list_directory",
        description="Tool name returning the note listing.",
    )
    read_tool: str = Field(
        default="read_note",
        description="Tool name returning a note's content.",
    )
    list_depth: int = Field(
        default=10,
        ge=1,
        description="Directory depth passed to the listing tool.",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds to wait for a single tool response.",
    )

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }


class VectorStoreSettings(BaseModel):
    """Vector database location."""

    path: Path = Field(
        default=Path("vectors.sqlite3"),
        description="SQLite file, relative paths resolve under the workspace.",
    )

    model_config = {"validate_assignment": True}

    def resolve(self, workspace: Path) -> Path:
        """Return the absolute database path for ``workspace``."""

        candidate = self.path.expanduser()
        if candidate.is_absolute():
            return candidate
        return workspace / candidate


class AppConfig(BaseModel):
    """Root configuration for the :mod:`notevec` application."""

    log_level: str = Field(
        default="INFO",
        description="Default logging level for the application runtime.",
    )
    default_project: str = Field(
        default="",
        description="Project used when none is given explicitly or via env.",
    )
    backend: BackendSettings = Field(default_factory=BackendSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    content_store: ContentStoreSettings = Field(
        default_factory=ContentStoreSettings
    )
    vector_store: VectorStoreSettings = Field(
        default_factory=VectorStoreSettings
    )

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


DEFAULTS_RESOURCE_NAME = "notevec.defaults.toml"


def read_packaged_defaults_text() -> str:
    """Return the raw packaged defaults TOML content.

    Example:
        >>> read_packaged_defaults_text().startswith("#")
        True
    """

    resource = get_resource(DEFAULTS_RESOURCE_NAME)
    return resource.read_text(encoding="utf-8")


def load_packaged_defaults() -> dict[str, Any]:
    """Load the packaged defaults as a plain dictionary.

    Example:
        >>> load_packaged_defaults()["backend"]["model"]
        'nomic-embed-text'
    """

    return tomllib.loads(read_packaged_defaults_text())


def _deep_merge(
    base: Mapping[str, Any],
    overlay: Mapping[str, Any],
) -> dict[str, Any]:
    """Recursively merge ``overlay`` into ``base`` returning a new dict."""

    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MappingABC)
            and isinstance(value, MappingABC)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Translate ``NOTEVEC_*`` variables into a config overlay.

    ``NOTEVEC_PROJECT`` is not mapped: the project is resolved per
    request, not stored in configuration.

    Example:
        >>> env_overrides({"NOTEVEC_BACKEND_MODEL": "mxbai"})
        {'backend': {'model': 'mxbai'}}
    """

    overlay: dict[str, Any] = {}
    if environ.get(ENV_LOG_LEVEL):
        overlay["log_level"] = environ[ENV_LOG_LEVEL]
    backend: dict[str, Any] = {}
    if environ.get(ENV_BACKEND_URL):
        backend["base_url"] = environ[ENV_BACKEND_URL]
    if environ.get(ENV_BACKEND_MODEL):
        backend["model"] = environ[ENV_BACKEND_MODEL]
    if backend:
        overlay["backend"] = backend
    return overlay


def load_config(
    *,
    defaults: Mapping[str, Any],
    user_config: Mapping[str, Any] | None = None,
    env_config: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load configuration according to the precedence stack.

    Args:
        defaults: Packaged defaults shipped with the application.
        user_config: Parsed user ``notevec.toml`` content.
        env_config: Settings derived from environment variables.
        cli_overrides: Settings supplied via CLI flags.

    Returns:
        A validated :class:`AppConfig` instance.

    Raises:
        ConfigError: If the merged payload fails validation.
    """

    stack = dict(defaults)
    for layer in (user_config, env_config, cli_overrides):
        if layer:
            stack = _deep_merge(stack, layer)

    try:
        return AppConfig(**stack)
    except ValidationError as exc:
        raise ConfigError(
            f"Invalid configuration: {exc.error_count()} error(s)\n{exc}"
        ) from exc


def read_user_config(config_file: Path) -> dict[str, Any]:
    """Parse ``config_file`` if present, returning an empty mapping otherwise.

    Raises:
        ConfigError: If the file exists but is not valid TOML.
    """

    if not config_file.exists():
        return {}
    try:
        return tomllib.loads(config_file.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(
            f"Failed to read config file {config_file}: {exc}"
        ) from exc


def load_workspace_config(
    config_file: Path,
    *,
    environ: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load the effective configuration for a workspace config file."""

    return load_config(
        defaults=load_packaged_defaults(),
        user_config=read_user_config(config_file),
        env_config=env_overrides(environ or {}),
        cli_overrides=cli_overrides,
    )


def _section_table(model: BaseModel) -> tomlkit.items.Table:
    table = tomlkit.table()
    for name, value in model.model_dump(mode="json").items():
        item = tomlkit.item(value)
        description = type(model).model_fields[name].description
        if description:
            item.comment(description)
        table.add(name, item)
    return table


def render_user_config(
    config: AppConfig,
    *,
    include_defaults: bool = True,
) -> str:
    """Render a ``notevec.toml`` document for users to customize.

    Args:
        config: Configuration instance to serialize.
        include_defaults: Whether to include the header commentary and
            per-field descriptions.

    Returns:
        A TOML-formatted string ready to persist for the user.
    """

    document = tomlkit.document()

    if include_defaults:
        document.add(tomlkit.comment("Generated by notevec config init"))
        document.add(
            tomlkit.comment(
                "Precedence: CLI flags > env vars > notevec.toml > defaults"
            )
        )
        document.add(tomlkit.comment("Environment overrides:"))
        for name in (
            ENV_WORKSPACE,
            ENV_LOG_LEVEL,
            ENV_PROJECT,
            ENV_BACKEND_URL,
            ENV_BACKEND_MODEL,
        ):
            document.add(tomlkit.comment(f"  {name}=..."))
        document.add(tomlkit.nl())

    document["log_level"] = config.log_level
    document["default_project"] = config.default_project

    for section in (
        "backend",
        "chunking",
        "scheduler",
        "content_store",
        "vector_store",
    ):
        model = getattr(config, section)
        if include_defaults:
            document[section] = _section_table(model)
        else:
            table = tomlkit.table()
            for key, value in model.model_dump(mode="json").items():
                table[key] = value
            document[section] = table

    return tomlkit.dumps(document)


__all__ = [
    "AppConfig",
    "BACKEND_CONCURRENCY_CEILING",
    "BackendSettings",
    "ChunkingSettings",
    "ContentStoreSettings",
    "DEFAULTS_RESOURCE_NAME",
    "ENV_BACKEND_MODEL",
    "ENV_BACKEND_URL",
    "ENV_LOG_LEVEL",
    "ENV_PROJECT",
    "ENV_WORKSPACE",
    "SchedulerSettings",
    "VectorStoreSettings",
    "env_overrides",
    "load_config",
    "load_packaged_defaults",
    "load_workspace_config",
    "read_packaged_defaults_text",
    "read_user_config",
    "render_user_config",
]
