"""Top-level package for :mod:`notevec`.

Exposes version metadata so the CLI and log records can surface the
installed build.

Example:
    >>> from notevec import __version__
    >>> __version__.split(".")[0]
    '0'
"""

from importlib import metadata

try:
    __version__ = metadata.version("notevec")
except metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    __version__ = "0.0.0"

__all__ = ["__version__"]
