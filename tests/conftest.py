"""Shared pytest fixtures for the embedding pipeline."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from notevec.core.paths import WorkspacePaths
from notevec.modules.embeddings.scheduler import (
    BatchScheduler,
    SchedulerOptions,
)
from notevec.modules.embeddings.store import SQLiteVectorStore
from tests.fakes import (
    FakeBackend,
    FakeContentStore,
    NoteBook,
    RecordingFactory,
    note_body,
)


@pytest.fixture
def notebook() -> NoteBook:
    return NoteBook({f"note-{i:03d}": note_body(i) for i in range(20)})


@pytest.fixture
def content_factory(notebook: NoteBook) -> RecordingFactory:
    return RecordingFactory(lambda: FakeContentStore(notebook))


@pytest.fixture
def vector_path(tmp_path: Path) -> Path:
    return tmp_path / "vectors.sqlite3"


@pytest.fixture
def vector_factory(vector_path: Path) -> RecordingFactory:
    return RecordingFactory(lambda: SQLiteVectorStore(vector_path))


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_scheduler(
    content_factory: RecordingFactory,
    vector_factory: RecordingFactory,
    backend: FakeBackend,
    sleeps: list[float],
) -> Callable[..., BatchScheduler]:
    """Return a builder for schedulers wired to the shared fakes.

    ``options`` entries override the test defaults (groups of five, no
    group delay, no backend retries); other keyword arguments replace
    collaborators.
    """

    def _build(**overrides: Any) -> BatchScheduler:
        options = SchedulerOptions(
            **{
                "group_size": 5,
                "group_delay": 0.0,
                "io_retry_attempts": 1,
                "backend_retry_attempts": 0,
                **overrides.pop("options", {}),
            }
        )
        return BatchScheduler(
            content_store_factory=overrides.pop(
                "content_store_factory",
                content_factory,
            ),
            vector_store_factory=overrides.pop(
                "vector_store_factory",
                vector_factory,
            ),
            backend=overrides.pop("backend", backend),
            options=options,
            sleep=sleeps.append,
            **overrides,
        )

    return _build


@pytest.fixture
def workspace(tmp_path: Path) -> Iterator[WorkspacePaths]:
    paths = WorkspacePaths.for_root(tmp_path / "workspace")
    paths.ensure()
    yield paths
