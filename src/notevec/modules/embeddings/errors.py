"""Typed error hierarchy for the embedding pipeline."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "NotevecError",
    "ConfigError",
    "InvalidConfig",
    "TransientIOError",
    "ContentStoreError",
    "VectorStoreError",
    "BackendError",
    "BackendTimeout",
    "BackendOverloaded",
    "BackendUnavailable",
    "BackendRequestError",
    "BackendDimensionMismatch",
    "PartialNoteFailure",
    "BackendDownError",
    "RunCancelled",
    "RETRYABLE_BACKEND_ERRORS",
]


@dataclass(slots=True)
class NotevecError(RuntimeError):
    """Base error raised by :mod:`notevec` components."""

    message: str

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


@dataclass(slots=True)
class ConfigError(NotevecError):
    """Raised when chunker, backend, or scheduler parameters are invalid.

    Fatal: surfaces before any note is processed.
    """


InvalidConfig = ConfigError


@dataclass(slots=True)
class TransientIOError(NotevecError):
    """Raised when a store connection drops or becomes unusable."""

    note_id: str | None = None


@dataclass(slots=True)
class ContentStoreError(TransientIOError):
    """Raised for content store transport or tool failures."""

    tool: str | None = None


@dataclass(slots=True)
class VectorStoreError(TransientIOError):
    """Raised when the vector database handle fails."""


@dataclass(slots=True)
class BackendError(NotevecError):
    """Base error for embedding backend calls."""

    model: str = ""
    status_code: int | None = None


@dataclass(slots=True)
class BackendTimeout(BackendError):
    """Raised when a backend call exceeds its per-call timeout."""

    timeout: float | None = None


@dataclass(slots=True)
class BackendOverloaded(BackendError):
    """Raised for 5xx (and 429) responses from the backend."""


@dataclass(slots=True)
class BackendUnavailable(BackendError):
    """Raised when the backend refuses or resets the connection."""


@dataclass(slots=True)
class BackendRequestError(BackendError):
    """Raised for non-retryable 4xx responses or malformed payloads."""


@dataclass(slots=True)
class BackendDimensionMismatch(BackendError):
    """Raised when the backend returns vectors of unexpected length."""

    expected: int | None = None
    actual: int | None = None


@dataclass(slots=True)
class PartialNoteFailure(NotevecError):
    """Raised when a multi-chunk note fails after some chunks were stored."""

    note_id: str = ""
    chunk_index: int = 0
    total_chunks: int = 0
    cause_type: str = ""


@dataclass(slots=True)
class BackendDownError(NotevecError):
    """Raised when consecutive backend failures exceed the run threshold."""

    consecutive_failures: int = 0


@dataclass(slots=True)
class RunCancelled(NotevecError):
    """Marks a run stopped by :meth:`BatchScheduler.cancel`."""

    group_index: int = 0


# Failures counted toward the backend-down escalation threshold.
RETRYABLE_BACKEND_ERRORS: tuple[type[BackendError], ...] = (
    BackendTimeout,
    BackendOverloaded,
    BackendUnavailable,
)
