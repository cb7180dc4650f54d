"""Core configuration, logging, and workspace helpers for :mod:`notevec`."""

from notevec.core.config import AppConfig, load_workspace_config
from notevec.core.logging import configure_logging, get_logger
from notevec.core.paths import WorkspacePaths, resolve_workspace

__all__ = [
    "AppConfig",
    "WorkspacePaths",
    "configure_logging",
    "get_logger",
    "load_workspace_config",
    "resolve_workspace",
]
