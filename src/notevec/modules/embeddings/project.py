"""Project name resolution for embedding requests."""

from __future__ import annotations

import os
from typing import Mapping

from notevec.core.config import ENV_PROJECT
from notevec.modules.embeddings.errors import ConfigError

__all__ = ["resolve_project"]


def resolve_project(
    explicit: str | None,
    *,
    default: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Return the project to operate on.

    Precedence: ``explicit`` > ``NOTEVEC_PROJECT`` > ``default``.

    Raises:
        ConfigError: If no source yields a non-blank name.

    Example:
        >>> resolve_project(None, default="notes", environ={})
        'notes'
    """

    env = os.environ if environ is None else environ
    for candidate in (explicit, env.get(ENV_PROJECT), default):
        if candidate and candidate.strip():
            return candidate.strip()
    raise ConfigError(
        "No project given. Pass --project, set "
        f"{ENV_PROJECT}, or configure default_project."
    )
