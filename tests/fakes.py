"""In-memory fakes for the embedding pipeline collaborators."""

from __future__ import annotations

import itertools
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from notevec.modules.embeddings.errors import (
    BackendError,
    ContentStoreError,
    VectorStoreError,
)
from notevec.modules.embeddings.models import EmbeddingRecord, Note


class NoteBook:
    """Mutable note collection shared by every fake connection."""

    def __init__(self, notes: dict[str, str] | None = None) -> None:
        self.notes: dict[str, str] = dict(notes or {})
        self.read_failures: dict[str, int] = {}
        self.list_failures = 0
        self.lock = threading.Lock()

    def take_read_failure(self, note_id: str) -> bool:
        with self.lock:
            remaining = self.read_failures.get(note_id, 0)
            if remaining <= 0:
                return False
            self.read_failures[note_id] = remaining - 1
            return True

    def take_list_failure(self) -> bool:
        with self.lock:
            if self.list_failures <= 0:
                return False
            self.list_failures -= 1
            return True


class FakeContentStore:
    """Content store connection backed by a :class:`NoteBook`."""

    _ids = itertools.count(1)

    def __init__(self, book: NoteBook) -> None:
        self.book = book
        self.identity = next(self._ids)
        self.closed = False
        self.reads: list[str] = []

    def list_notes(self, project: str) -> tuple[str, ...]:
        self._check_open()
        if self.book.take_list_failure():
            raise ContentStoreError("listing connection reset")
        return tuple(self.book.notes)

    def read_note(self, project: str, identifier: str) -> Note:
        self._check_open()
        self.reads.append(identifier)
        if self.book.take_read_failure(identifier):
            raise ContentStoreError(
                f"read of {identifier} reset",
                note_id=identifier,
            )
        try:
            content = self.book.notes[identifier]
        except KeyError as exc:
            raise ContentStoreError(
                f"note {identifier} not found",
                note_id=identifier,
            ) from exc
        return Note.from_content(identifier, content)

    def close(self) -> None:
        self.closed = True

    def _check_open(self) -> None:
        if self.closed:
            raise ContentStoreError("connection used after close")


class RecordingFactory:
    """Factory that records every handle it creates."""

    def __init__(self, build: Callable[[], Any]) -> None:
        self._build = build
        self.instances: list[Any] = []

    def __call__(self) -> Any:
        instance = self._build()
        self.instances.append(instance)
        return instance


class FakeBackend:
    """Deterministic embedding backend with scripted failures.

    ``fail_when`` receives the chunk text and returns an exception to raise,
    or ``None`` to embed normally.
    """

    def __init__(
        self,
        *,
        max_concurrency: int = 4,
        dimensions: int = 3,
        fail_when: Callable[[str], BackendError | None] | None = None,
    ) -> None:
        self._max_concurrency = max_concurrency
        self.dimensions = dimensions
        self.fail_when = fail_when
        self.calls: list[str] = []
        self.closed = False
        self._lock = threading.Lock()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def embed(self, text: str) -> tuple[float, ...]:
        with self._lock:
            self.calls.append(text)
        if self.fail_when is not None:
            error = self.fail_when(text)
            if error is not None:
                raise error
        return tuple(
            float(len(text) + offset) for offset in range(self.dimensions)
        )

    def embed_batch(self, texts):
        return tuple(self.embed(text) for text in texts)

    def close(self) -> None:
        self.closed = True


class FlakyVectorStore:
    """Vector store wrapper whose upserts fail on scripted keys.

    ``upsert_failures`` maps ``(note_id, chunk_index)`` to the number of
    upserts of that key that raise before the write goes through.
    """

    def __init__(
        self,
        inner: Any,
        upsert_failures: dict[tuple[str, int], int],
    ) -> None:
        self.inner = inner
        self.upsert_failures = upsert_failures
        self.reopens = 0

    def upsert(self, record: EmbeddingRecord) -> None:
        key = (record.note_id, record.chunk_index)
        if self.upsert_failures.get(key, 0) > 0:
            self.upsert_failures[key] -= 1
            raise VectorStoreError(
                "database is locked",
                note_id=record.note_id,
            )
        self.inner.upsert(record)

    def exists(self, note_id: str, content_hash: str) -> bool:
        return self.inner.exists(note_id, content_hash)

    def prune(self, note_id: str, keep_chunks: int) -> int:
        return self.inner.prune(note_id, keep_chunks)

    def close(self) -> None:
        self.inner.close()

    def reopen(self) -> None:
        self.reopens += 1
        self.inner.reopen()


def note_body(index: int) -> str:
    return f"Note number {index}\n\nSome body text for note {index}."


def stored_rows(path: Path, note_id: str | None = None) -> list[dict]:
    """Read embedding rows straight from the SQLite file."""

    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    try:
        if note_id is None:
            rows = conn.execute(
                "SELECT * FROM embeddings ORDER BY note_id, chunk_index"
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM embeddings WHERE note_id = ? "
                "ORDER BY chunk_index",
                (note_id,),
            ).fetchall()
    finally:
        conn.close()
    return [dict(row) for row in rows]
