"""Typed representations used across the embedding pipeline."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Iterator, Mapping, Sequence

__all__ = [
    "EmbeddingRecord",
    "EmbeddingVector",
    "Note",
    "NoteOutcome",
    "NoteSelector",
    "NoteStatus",
    "ProgressEvent",
    "RunState",
    "RunSummary",
    "WorkBatch",
    "WorkGroup",
    "content_hash",
    "group_sizes",
]

EmbeddingVector = tuple[float, ...]


def content_hash(content: str) -> str:
    """Return the change-detection hash for note ``content``.

    Example:
        >>> content_hash("hello")[:12]
        '2cf24dba5fb0'
    """

    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NoteStatus(StrEnum):
    """Per-note outcome recorded in a run summary."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunState(StrEnum):
    """Lifecycle states of a batch scheduler run."""

    IDLE = "idle"
    RESOLVING = "resolving"
    RUNNING = "running"
    RECYCLING = "recycling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FATALLY_FAILED = "fatally-failed"

    @property
    def is_terminal(self) -> bool:
        return self in {
            RunState.COMPLETED,
            RunState.CANCELLED,
            RunState.FATALLY_FAILED,
        }


@dataclass(frozen=True, slots=True)
class Note:
    """A note as read from the content store."""

    identifier: str
    content: str
    content_hash: str
    modified_at: datetime | None = None

    @classmethod
    def from_content(
        cls,
        identifier: str,
        content: str,
        *,
        modified_at: datetime | None = None,
    ) -> "Note":
        """Build a note deriving its hash from ``content``."""

        return cls(
            identifier=identifier,
            content=content,
            content_hash=content_hash(content),
            modified_at=modified_at,
        )


@dataclass(frozen=True, slots=True)
class EmbeddingRecord:
    """A persisted vector for one chunk of a note."""

    note_id: str
    chunk_index: int
    vector: EmbeddingVector
    content_hash: str
    generated_at: datetime = field(default_factory=_utcnow)
    total_chunks: int = 1
    chunk_start: int = 0
    chunk_end: int = 0

    def __post_init__(self) -> None:
        if self.chunk_index < 0:
            raise ValueError("chunk_index must be >= 0")
        if self.total_chunks <= self.chunk_index:
            raise ValueError("total_chunks must exceed chunk_index")

    @property
    def dim(self) -> int:
        return len(self.vector)


@dataclass(frozen=True, slots=True)
class NoteSelector:
    """Selects the notes a run considers.

    ``note_ids`` restricts the run to explicit identifiers instead of the
    full project listing. ``limit`` of ``0`` means no cap.
    """

    project: str
    note_ids: tuple[str, ...] | None = None
    limit: int = 0

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.note_ids is not None:
            object.__setattr__(self, "note_ids", tuple(self.note_ids))


@dataclass(frozen=True, slots=True)
class WorkGroup:
    """A bounded slice of a batch processed as one recycle unit."""

    index: int
    note_ids: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.note_ids)


@dataclass(frozen=True, slots=True)
class WorkBatch:
    """Ordered note identifiers selected for processing.

    ``skipped`` maps identifiers excluded during resolution (fresh
    embeddings, limit cut) to a reason so the run summary can account for
    every listed note.
    """

    project: str
    note_ids: tuple[str, ...]
    force: bool = False
    total_listed: int | None = None
    skipped: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "note_ids", tuple(self.note_ids))
        object.__setattr__(self, "skipped", dict(self.skipped))
        if self.total_listed is None:
            object.__setattr__(
                self,
                "total_listed",
                len(self.note_ids) + len(self.skipped),
            )

    def __len__(self) -> int:
        return len(self.note_ids)

    def groups(self, size: int) -> tuple[WorkGroup, ...]:
        """Partition the batch into groups of at most ``size`` notes.

        Example:
            >>> batch = WorkBatch(project="p", note_ids=("a", "b", "c"))
            >>> [len(group) for group in batch.groups(2)]
            [2, 1]
        """

        if size < 1:
            raise ValueError("group size must be >= 1")
        return tuple(
            WorkGroup(
                index=index,
                note_ids=self.note_ids[start : start + size],
            )
            for index, start in enumerate(range(0, len(self.note_ids), size))
        )


@dataclass(frozen=True, slots=True)
class NoteOutcome:
    """Result of processing (or skipping) one note."""

    note_id: str
    status: NoteStatus
    reason: str | None = None
    error_type: str | None = None
    chunks: int = 0
    partial: bool = False

    def render_error(self) -> str:
        return f"{self.note_id}: {self.error_type or 'error'}: {self.reason}"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Incremental progress emitted while a run is in flight."""

    kind: str
    group_index: int
    total_groups: int
    notes_processed_in_group: int
    total_notes_in_group: int
    note_id: str | None = None
    status: NoteStatus | None = None
    emitted_at: datetime = field(default_factory=_utcnow)

    def to_mapping(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "kind": self.kind,
            "group_index": self.group_index,
            "total_groups": self.total_groups,
            "notes_processed_in_group": self.notes_processed_in_group,
            "total_notes_in_group": self.total_notes_in_group,
            "emitted_at": self.emitted_at.isoformat(),
        }
        if self.note_id is not None:
            payload["note_id"] = self.note_id
        if self.status is not None:
            payload["status"] = self.status.value
        return payload

    def describe(self) -> str:
        position = (
            f"group {self.group_index + 1}/{self.total_groups} "
            f"[{self.notes_processed_in_group}/{self.total_notes_in_group}]"
        )
        if self.note_id is None:
            return f"{position} {self.kind}"
        status = self.status.value if self.status is not None else "-"
        return f"{position} {self.note_id}: {status}"


@dataclass(slots=True)
class RunSummary:
    """Completion summary returned by a run."""

    project: str
    state: RunState
    total_notes: int
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    elapsed_seconds: float = 0.0
    total_groups: int = 0
    groups_completed: int = 0
    chunks_embedded: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    skipped_reasons: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    progress: tuple[ProgressEvent, ...] = ()
    fatal_error: str | None = None

    @property
    def accounted(self) -> int:
        return self.succeeded + self.failed + self.skipped

    @property
    def ok(self) -> bool:
        return self.state is RunState.COMPLETED and self.failed == 0

    def iter_failures(self) -> Iterator[tuple[str, str]]:
        yield from sorted(self.failures.items())

    def to_mapping(self, *, include_progress: bool = True) -> dict[str, Any]:
        """Return a JSON-serializable view of the summary."""

        payload: dict[str, Any] = {
            "project": self.project,
            "state": self.state.value,
            "total_notes": self.total_notes,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "total_groups": self.total_groups,
            "groups_completed": self.groups_completed,
            "chunks_embedded": self.chunks_embedded,
            "failures": dict(sorted(self.failures.items())),
            "skipped_reasons": dict(sorted(self.skipped_reasons.items())),
            "errors": list(self.errors),
            "fatal_error": self.fatal_error,
        }
        if include_progress:
            payload["progress"] = [
                event.to_mapping() for event in self.progress
            ]
        return payload


def group_sizes(groups: Sequence[WorkGroup]) -> tuple[int, ...]:
    """Return the note count of each group.

    Example:
        >>> batch = WorkBatch(project="p", note_ids=tuple("abcde"))
        >>> group_sizes(batch.groups(2))
        (2, 2, 1)
    """

    return tuple(len(group) for group in groups)
