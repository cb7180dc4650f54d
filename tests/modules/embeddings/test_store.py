"""Tests for :mod:`notevec.modules.embeddings.store`."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from notevec.modules.embeddings.errors import VectorStoreError
from notevec.modules.embeddings.models import EmbeddingRecord, content_hash
from notevec.modules.embeddings.store import (
    SQLiteVectorStore,
    VectorStore,
    decode_vector,
    encode_vector,
)

from tests.fakes import stored_rows

_GENERATED = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def _record(
    note_id: str,
    index: int,
    *,
    total: int = 1,
    digest: str = "h1",
    vector: tuple[float, ...] = (0.25, 0.5, 0.75),
) -> EmbeddingRecord:
    return EmbeddingRecord(
        note_id=note_id,
        chunk_index=index,
        vector=vector,
        content_hash=digest,
        generated_at=_GENERATED,
        total_chunks=total,
        chunk_start=index * 10,
        chunk_end=index * 10 + 10,
    )


@pytest.fixture
def store(tmp_path: Path):
    handle = SQLiteVectorStore(tmp_path / "db" / "vectors.sqlite3", model="m")
    yield handle
    handle.close()


def test_store_satisfies_protocol(store: SQLiteVectorStore) -> None:
    assert isinstance(store, VectorStore)


def test_vector_encoding_uses_float32() -> None:
    blob = encode_vector((1.0, -2.5, 0.125))

    assert len(blob) == 12
    assert decode_vector(blob) == (1.0, -2.5, 0.125)


def test_upsert_then_read_back(store: SQLiteVectorStore) -> None:
    store.upsert(_record("a", 0, total=2))
    store.upsert(_record("a", 1, total=2))

    rows = stored_rows(store.path, "a")

    assert [row["chunk_index"] for row in rows] == [0, 1]
    assert decode_vector(rows[0]["vector"]) == (0.25, 0.5, 0.75)
    assert datetime.fromisoformat(rows[0]["generated_at"]) == _GENERATED
    assert rows[0]["model"] == "m"
    assert rows[0]["dim"] == 3
    assert rows[1]["chunk_start"] == 10
    assert len(stored_rows(store.path)) == 2


def test_upsert_overwrites_same_key(store: SQLiteVectorStore) -> None:
    store.upsert(_record("a", 0, digest="old"))
    store.upsert(_record("a", 0, digest="new", vector=(1.0, 1.0, 1.0)))

    (row,) = stored_rows(store.path, "a")

    assert row["content_hash"] == "new"
    assert decode_vector(row["vector"]) == (1.0, 1.0, 1.0)


def test_exists_requires_matching_complete_set(
    store: SQLiteVectorStore,
) -> None:
    assert not store.exists("a", "h1")

    store.upsert(_record("a", 0, total=2))
    assert not store.exists("a", "h1")

    store.upsert(_record("a", 1, total=2))
    assert store.exists("a", "h1")
    assert not store.exists("a", "other")


def test_exists_rejects_mixed_hashes(store: SQLiteVectorStore) -> None:
    store.upsert(_record("a", 0, total=2, digest="h2"))
    store.upsert(_record("a", 1, total=2, digest="h1"))

    assert not store.exists("a", "h1")
    assert not store.exists("a", "h2")


def test_prune_removes_high_index_chunks(store: SQLiteVectorStore) -> None:
    for index in range(3):
        store.upsert(_record("a", index, total=3))
    store.upsert(_record("a", 0, total=1, digest="h2"))

    removed = store.prune("a", 1)

    assert removed == 2
    assert store.exists("a", "h2")
    assert store.prune("a", 1) == 0


def test_closed_store_raises_until_reopened(
    store: SQLiteVectorStore,
) -> None:
    store.upsert(_record("a", 0))
    store.close()

    assert not store.is_open
    with pytest.raises(VectorStoreError):
        store.exists("a", "h1")

    store.reopen()

    assert store.is_open
    assert store.generation == 2
    assert store.exists("a", "h1")


def test_data_persists_across_handles(tmp_path: Path) -> None:
    path = tmp_path / "vectors.sqlite3"
    first = SQLiteVectorStore(path)
    first.upsert(_record("note", 0, digest=content_hash("body")))
    first.close()

    second = SQLiteVectorStore(path)
    try:
        assert second.exists("note", content_hash("body"))
    finally:
        second.close()


def test_concurrent_handles_write_distinct_keys(tmp_path: Path) -> None:
    path = tmp_path / "vectors.sqlite3"
    handles = [SQLiteVectorStore(path) for _ in range(2)]

    def _write(handle: SQLiteVectorStore, prefix: str) -> None:
        for index in range(20):
            handle.upsert(_record(f"{prefix}-{index}", 0))

    threads = [
        threading.Thread(target=_write, args=(handle, f"w{number}"))
        for number, handle in enumerate(handles)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    try:
        assert len(stored_rows(path)) == 40
    finally:
        for handle in handles:
            handle.close()


def test_unwritable_path_raises_vector_store_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    with pytest.raises(VectorStoreError):
        SQLiteVectorStore(blocker / "vectors.sqlite3")
