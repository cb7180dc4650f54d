"""SQLite-backed vector store for chunk embeddings."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

import numpy as np

from notevec.core.logging import Logger, get_logger
from notevec.modules.embeddings.errors import VectorStoreError
from notevec.modules.embeddings.models import EmbeddingRecord
from notevec.resources import get_resource

__all__ = [
    "SQLiteVectorStore",
    "VectorStore",
    "VectorStoreFactory",
    "decode_vector",
    "encode_vector",
]

_SCHEMA_RESOURCE = "vector_store.sql"
_BUSY_TIMEOUT_MS = 5000

_UPSERT_SQL = """
INSERT INTO embeddings (
    note_id, chunk_index, total_chunks, chunk_start, chunk_end,
    content_hash, model, dim, vector, generated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (note_id, chunk_index) DO UPDATE SET
    total_chunks = excluded.total_chunks,
    chunk_start = excluded.chunk_start,
    chunk_end = excluded.chunk_end,
    content_hash = excluded.content_hash,
    model = excluded.model,
    dim = excluded.dim,
    vector = excluded.vector,
    generated_at = excluded.generated_at
"""

_EXISTS_SQL = """
SELECT
    COUNT(*) AS total,
    SUM(content_hash = ?) AS matching,
    MIN(total_chunks) AS min_total,
    MAX(total_chunks) AS max_total
FROM embeddings
WHERE note_id = ?
"""


@runtime_checkable
class VectorStore(Protocol):
    """Boundary contract for vector persistence."""

    def upsert(self, record: EmbeddingRecord) -> None:
        """Insert or overwrite the record keyed by (note, chunk index)."""

    def exists(self, note_id: str, content_hash: str) -> bool:
        """Return whether a complete, current embedding set is stored."""

    def prune(self, note_id: str, keep_chunks: int) -> int:
        """Delete records with ``chunk_index >= keep_chunks``."""

    def close(self) -> None: ...

    def reopen(self) -> None: ...


VectorStoreFactory = Callable[[], VectorStore]


def encode_vector(vector: tuple[float, ...]) -> bytes:
    """Serialize ``vector`` as little-endian float32 bytes."""

    return np.asarray(vector, dtype="<f4").tobytes()


def decode_vector(blob: bytes) -> tuple[float, ...]:
    """Inverse of :func:`encode_vector`."""

    return tuple(float(value) for value in np.frombuffer(blob, dtype="<f4"))


def _read_schema() -> str:
    return get_resource(_SCHEMA_RESOURCE).read_text(encoding="utf-8")


class SQLiteVectorStore:
    """A :class:`VectorStore` persisted in a single SQLite file.

    One handle may be shared by the workers of a run; statements are
    serialized with an internal lock. Independent handles on the same file
    (for example a background trigger) rely on WAL mode and last-writer-wins
    per ``(note_id, chunk_index)``.
    """

    def __init__(
        self,
        path: Path,
        *,
        model: str = "",
        logger: Logger | None = None,
    ) -> None:
        self.path = Path(path)
        self.model = model
        self.logger = logger or get_logger(__name__, component="vector-store")
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._generation = 0
        self._open()

    @property
    def generation(self) -> int:
        """Number of times the connection has been (re)opened."""

        return self._generation

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def _open(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.path,
                check_same_thread=False,
                timeout=_BUSY_TIMEOUT_MS / 1000,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_MS}")
            conn.executescript(_read_schema())
            conn.commit()
        except (OSError, sqlite3.Error) as exc:
            raise VectorStoreError(
                f"Failed to open vector store {self.path}: {exc}"
            ) from exc
        self._conn = conn
        self._generation += 1

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise VectorStoreError(f"Vector store {self.path} is closed.")
        return self._conn

    def upsert(self, record: EmbeddingRecord) -> None:
        row = (
            record.note_id,
            record.chunk_index,
            record.total_chunks,
            record.chunk_start,
            record.chunk_end,
            record.content_hash,
            self.model,
            record.dim,
            encode_vector(record.vector),
            record.generated_at.isoformat(),
        )
        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    conn.execute(_UPSERT_SQL, row)
            except sqlite3.Error as exc:
                raise VectorStoreError(
                    f"Failed to upsert {record.note_id}#{record.chunk_index}: "
                    f"{exc}",
                    note_id=record.note_id,
                ) from exc

    def exists(self, note_id: str, content_hash: str) -> bool:
        with self._lock:
            conn = self._connection()
            try:
                row = conn.execute(
                    _EXISTS_SQL,
                    (content_hash, note_id),
                ).fetchone()
            except sqlite3.Error as exc:
                raise VectorStoreError(
                    f"Failed to check embeddings for {note_id}: {exc}",
                    note_id=note_id,
                ) from exc
        total = row["total"]
        if not total:
            return False
        return (
            row["matching"] == total
            and row["min_total"] == row["max_total"] == total
        )

    def prune(self, note_id: str, keep_chunks: int) -> int:
        with self._lock:
            conn = self._connection()
            try:
                with conn:
                    cursor = conn.execute(
                        "DELETE FROM embeddings "
                        "WHERE note_id = ? AND chunk_index >= ?",
                        (note_id, keep_chunks),
                    )
            except sqlite3.Error as exc:
                raise VectorStoreError(
                    f"Failed to prune embeddings for {note_id}: {exc}",
                    note_id=note_id,
                ) from exc
        removed = cursor.rowcount
        if removed:
            self.logger.info(
                "vector-store-pruned",
                note_id=note_id,
                removed=removed,
                kept=keep_chunks,
            )
        return removed

    def close(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    def reopen(self) -> None:
        """Close the current connection and open a fresh one."""

        self.close()
        with self._lock:
            self._open()
        self.logger.debug(
            "vector-store-reopened",
            path=str(self.path),
            generation=self._generation,
        )
