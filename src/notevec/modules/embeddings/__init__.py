"""Batch embedding pipeline: chunking, backend calls, scheduling, storage.

Only the dependency-free building blocks are re-exported here; import the
service, scheduler, and adapters from their modules.
"""

from notevec.modules.embeddings.errors import (
    BackendDownError,
    BackendError,
    BackendOverloaded,
    BackendTimeout,
    BackendUnavailable,
    ConfigError,
    InvalidConfig,
    NotevecError,
    PartialNoteFailure,
    TransientIOError,
)
from notevec.modules.embeddings.models import (
    EmbeddingRecord,
    Note,
    NoteOutcome,
    NoteSelector,
    NoteStatus,
    ProgressEvent,
    RunState,
    RunSummary,
    WorkBatch,
    WorkGroup,
)

__all__ = [
    "BackendDownError",
    "BackendError",
    "BackendOverloaded",
    "BackendTimeout",
    "BackendUnavailable",
    "ConfigError",
    "EmbeddingRecord",
    "InvalidConfig",
    "Note",
    "NoteOutcome",
    "NoteSelector",
    "NoteStatus",
    "NotevecError",
    "PartialNoteFailure",
    "ProgressEvent",
    "RunState",
    "RunSummary",
    "TransientIOError",
    "WorkBatch",
    "WorkGroup",
]
