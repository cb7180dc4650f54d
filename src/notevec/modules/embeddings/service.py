"""Service layer exposing embedding generation to front-ends."""

from __future__ import annotations

import os
import queue
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Iterator, Mapping, Sequence

from notevec.core.config import AppConfig
from notevec.core.logging import Logger, get_logger
from notevec.core.paths import WorkspacePaths
from notevec.modules.embeddings.backend import (
    EmbeddingBackend,
    HttpEmbeddingBackend,
)
from notevec.modules.embeddings.content import (
    ContentStoreFactory,
    stdio_content_store_factory,
)
from notevec.modules.embeddings.errors import ConfigError
from notevec.modules.embeddings.models import (
    NoteSelector,
    ProgressEvent,
    RunSummary,
)
from notevec.modules.embeddings.progress import (
    ProgressReporter,
    ProgressSink,
    QueueProgressReporter,
    StreamingProgressReporter,
)
from notevec.modules.embeddings.project import resolve_project
from notevec.modules.embeddings.scheduler import (
    BatchScheduler,
    SchedulerOptions,
)
from notevec.modules.embeddings.store import (
    SQLiteVectorStore,
    VectorStoreFactory,
)

__all__ = ["EmbeddingService"]

_STREAM_DONE = object()


def _default_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class EmbeddingService:
    """Run embedding batches and content-change triggers for a workspace.

    Every run (batch or trigger) builds its own :class:`BatchScheduler` and
    therefore its own content store connection and vector store handle.
    """

    config: AppConfig
    backend: EmbeddingBackend
    content_store_factory: ContentStoreFactory
    vector_store_factory: VectorStoreFactory
    logger: Logger | None = None
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    now: Callable[[], datetime] = _default_now
    _active: set[BatchScheduler] = field(default_factory=set, init=False)
    _active_lock: threading.Lock = field(
        default_factory=threading.Lock,
        init=False,
    )

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="embedding-service")

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        paths: WorkspacePaths,
        *,
        logger: Logger | None = None,
    ) -> "EmbeddingService":
        """Wire the HTTP backend, stdio content store, and SQLite store.

        Raises:
            ConfigError: If the content store command is not configured.
        """

        log = logger or get_logger(__name__)
        backend = HttpEmbeddingBackend.from_settings(
            config.backend,
            logger=log.bind(component="backend"),
        )
        content_factory = stdio_content_store_factory(
            config.content_store,
            logger=log.bind(component="content-store"),
        )
        db_path = config.vector_store.resolve(paths.workspace)
        store_logger = log.bind(component="vector-store")

        def _vector_store() -> SQLiteVectorStore:
            return SQLiteVectorStore(
                db_path,
                model=config.backend.model,
                logger=store_logger,
            )

        return cls(
            config=config,
            backend=backend,
            content_store_factory=content_factory,
            vector_store_factory=_vector_store,
            logger=log.bind(component="embedding-service"),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def generate_embeddings(
        self,
        project: str | None = None,
        *,
        force: bool = False,
        limit: int | None = None,
        group_size: int | None = None,
        concurrency: int | None = None,
        note_ids: Sequence[str] | None = None,
        on_progress: ProgressSink | None = None,
    ) -> RunSummary:
        """Embed the project's notes and return the run summary.

        Args:
            project: Project name; falls back to ``NOTEVEC_PROJECT`` and then
                ``default_project``.
            force: Re-embed every note instead of only stale or missing ones.
            limit: Maximum notes to process; ``0`` means no cap and ``None``
                uses ``scheduler.default_limit``.
            group_size: Notes per group; defaults to configuration.
            concurrency: Parallel notes within a group; clamped to the
                backend ceiling.
            note_ids: Restrict the run to these identifiers.
            on_progress: Called with each :class:`ProgressEvent` as it occurs.

        Raises:
            ConfigError: For invalid parameters or an unresolved project.
        """

        if on_progress is None:
            reporter = ProgressReporter(logger=self.logger)
        else:
            reporter = StreamingProgressReporter(
                on_progress,
                logger=self.logger,
            )
        return self._generate(
            project,
            force=force,
            limit=limit,
            group_size=group_size,
            concurrency=concurrency,
            note_ids=note_ids,
            reporter=reporter,
        )

    def stream_embeddings(
        self,
        project: str | None = None,
        *,
        force: bool = False,
        limit: int | None = None,
        group_size: int | None = None,
        concurrency: int | None = None,
    ) -> Iterator[ProgressEvent | RunSummary]:
        """Yield progress events as they occur, then the final summary.

        The run executes on a background thread. Closing the iterator early
        cancels the run at its next boundary.
        """

        events: queue.Queue = queue.Queue()
        reporter = QueueProgressReporter(events, logger=self.logger)
        scheduler, selector = self._prepare(
            project,
            limit=limit,
            note_ids=None,
            reporter=reporter,
        )
        outcome: dict[str, object] = {}

        def _worker() -> None:
            try:
                outcome["summary"] = self._execute(
                    scheduler,
                    selector,
                    force=force,
                    group_size=group_size,
                    concurrency=concurrency,
                )
            except BaseException as exc:
                outcome["error"] = exc
            finally:
                events.put(_STREAM_DONE)

        worker = threading.Thread(
            target=_worker,
            name="notevec-stream",
            daemon=True,
        )
        self._track(scheduler)
        worker.start()
        finished = False
        try:
            while True:
                item = events.get()
                if item is _STREAM_DONE:
                    finished = True
                    break
                yield item
        finally:
            if not finished:
                scheduler.cancel()
            worker.join()
            self._untrack(scheduler)

        error = outcome.get("error")
        if isinstance(error, BaseException):
            raise error
        summary = outcome.get("summary")
        if not isinstance(summary, RunSummary):
            raise RuntimeError("Embedding stream ended without a summary.")
        yield summary

    def on_content_changed(
        self,
        note_id: str,
        project: str | None = None,
    ) -> threading.Thread:
        """Re-embed ``note_id`` in the background if its content changed.

        Best effort: failures are logged and never reach the caller. The
        task uses its own handles and shares no state with a batch run.
        """

        def _task() -> None:
            try:
                summary = self._generate(
                    project,
                    force=False,
                    limit=0,
                    group_size=1,
                    concurrency=1,
                    note_ids=(note_id,),
                    reporter=ProgressReporter(logger=self.logger),
                    track=False,
                    group_delay=0.0,
                )
            except Exception as exc:
                self.logger.exception(
                    "embed-trigger-failed",
                    note_id=note_id,
                    error=str(exc),
                )
                return
            self.logger.info(
                "embed-trigger-complete",
                note_id=note_id,
                state=summary.state,
                succeeded=summary.succeeded,
                failed=summary.failed,
                skipped=summary.skipped,
            )

        thread = threading.Thread(
            target=_task,
            name=f"notevec-trigger-{note_id}",
            daemon=True,
        )
        thread.start()
        return thread

    def cancel(self) -> bool:
        """Cancel every active batch run, returning whether any was running."""

        with self._active_lock:
            schedulers = list(self._active)
        for scheduler in schedulers:
            scheduler.cancel()
        return bool(schedulers)

    def close(self) -> None:
        self.backend.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _generate(
        self,
        project: str | None,
        *,
        force: bool,
        limit: int | None,
        group_size: int | None,
        concurrency: int | None,
        note_ids: Sequence[str] | None,
        reporter: ProgressReporter,
        track: bool = True,
        group_delay: float | None = None,
    ) -> RunSummary:
        scheduler, selector = self._prepare(
            project,
            limit=limit,
            note_ids=note_ids,
            reporter=reporter,
            group_delay=group_delay,
        )
        if not track:
            return scheduler.execute(
                selector,
                force_all=force,
                group_size=group_size,
                concurrency=concurrency,
            )
        self._track(scheduler)
        return self._execute(
            scheduler,
            selector,
            force=force,
            group_size=group_size,
            concurrency=concurrency,
        )

    def _prepare(
        self,
        project: str | None,
        *,
        limit: int | None,
        note_ids: Sequence[str] | None,
        reporter: ProgressReporter,
        group_delay: float | None = None,
    ) -> tuple[BatchScheduler, NoteSelector]:
        project_name = resolve_project(
            project,
            default=self.config.default_project,
            environ=self.environ,
        )
        options = SchedulerOptions.from_config(self.config)
        if group_delay is not None:
            options = replace(options, group_delay=group_delay)
        cap = self.config.scheduler.default_limit if limit is None else limit
        if cap < 0:
            raise ConfigError(f"limit must be >= 0 (got {cap})")

        scheduler = BatchScheduler(
            content_store_factory=self.content_store_factory,
            vector_store_factory=self.vector_store_factory,
            backend=self.backend,
            options=options,
            reporter=reporter,
            logger=self.logger.bind(project=project_name),
            sleep=self.sleep,
            clock=self.clock,
            now=self.now,
        )
        self.logger.debug(
            "embed-request",
            project=project_name,
            limit=cap,
            note_ids=len(note_ids) if note_ids is not None else None,
        )
        selector = NoteSelector(
            project=project_name,
            note_ids=tuple(note_ids) if note_ids is not None else None,
            limit=cap,
        )
        return scheduler, selector

    def _execute(
        self,
        scheduler: BatchScheduler,
        selector: NoteSelector,
        *,
        force: bool,
        group_size: int | None,
        concurrency: int | None,
    ) -> RunSummary:
        """Run a tracked scheduler, dropping it from the active set after."""

        try:
            return scheduler.execute(
                selector,
                force_all=force,
                group_size=group_size,
                concurrency=concurrency,
            )
        finally:
            self._untrack(scheduler)

    def _track(self, scheduler: BatchScheduler) -> None:
        with self._active_lock:
            self._active.add(scheduler)

    def _untrack(self, scheduler: BatchScheduler) -> None:
        with self._active_lock:
            self._active.discard(scheduler)
