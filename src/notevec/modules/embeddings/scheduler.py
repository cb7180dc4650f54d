"""Batch scheduler driving the embedding pipeline.

A scheduler owns one :class:`PipelineRun`: the content store connection and
vector store handle acquired for that run, the per-note outcomes, and the
run state. Work is split into groups; connections are recycled between
groups so per-connection state cannot accumulate across a long run.
"""

from __future__ import annotations

import concurrent.futures
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, TypeVar

from notevec.core.config import AppConfig
from notevec.core.logging import Logger, get_logger
from notevec.modules.embeddings.backend import (
    EmbeddingBackend,
    clamp_concurrency,
)
from notevec.modules.embeddings.chunking import overlap_chars, split
from notevec.modules.embeddings.content import (
    ContentStore,
    ContentStoreFactory,
)
from notevec.modules.embeddings.errors import (
    RETRYABLE_BACKEND_ERRORS,
    BackendDownError,
    BackendError,
    ConfigError,
    PartialNoteFailure,
    RunCancelled,
    TransientIOError,
    VectorStoreError,
)
from notevec.modules.embeddings.models import (
    EmbeddingRecord,
    EmbeddingVector,
    Note,
    NoteOutcome,
    NoteSelector,
    NoteStatus,
    RunState,
    RunSummary,
    WorkBatch,
    WorkGroup,
    group_sizes,
)
from notevec.modules.embeddings.progress import ProgressReporter
from notevec.modules.embeddings.store import VectorStore, VectorStoreFactory

__all__ = [
    "BatchScheduler",
    "PipelineRun",
    "SchedulerOptions",
]

_SKIP_UP_TO_DATE = "up-to-date"
_SKIP_LIMIT = "limit"
_SKIP_EMPTY = "empty-content"
_SKIP_CANCELLED = "cancelled"
_SKIP_ABORTED = "aborted"
_MAX_BACKEND_RETRY_DELAY = 30.0

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class SchedulerOptions:
    """Validated tuning knobs for a run.

    Raises:
        ConfigError: On construction when any value is out of range.
    """

    group_size: int = 25
    concurrency: int = 1
    group_delay: float = 1.0
    note_delay: float = 0.0
    large_batch_threshold: int = 500
    max_consecutive_backend_failures: int = 10
    io_retry_attempts: int = 1
    backend_retry_attempts: int = 2
    backend_retry_base_delay: float = 1.0
    max_chunk_chars: int = 2000
    overlap_fraction: float = 0.15
    max_reported_errors: int = 50

    def __post_init__(self) -> None:
        if self.group_size < 1:
            raise ConfigError(
                f"group_size must be >= 1 (got {self.group_size})"
            )
        if self.concurrency < 1:
            raise ConfigError(
                f"concurrency must be >= 1 (got {self.concurrency})"
            )
        for name in (
            "group_delay",
            "note_delay",
            "backend_retry_base_delay",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        for name in (
            "large_batch_threshold",
            "max_consecutive_backend_failures",
            "io_retry_attempts",
            "backend_retry_attempts",
            "max_reported_errors",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        overlap_chars(self.max_chunk_chars, self.overlap_fraction)

    @classmethod
    def from_config(cls, config: AppConfig) -> "SchedulerOptions":
        scheduler = config.scheduler
        return cls(
            group_size=scheduler.group_size,
            concurrency=scheduler.concurrency,
            group_delay=scheduler.group_delay,
            note_delay=scheduler.note_delay,
            large_batch_threshold=scheduler.large_batch_threshold,
            max_consecutive_backend_failures=(
                scheduler.max_consecutive_backend_failures
            ),
            io_retry_attempts=scheduler.io_retry_attempts,
            backend_retry_attempts=scheduler.backend_retry_attempts,
            backend_retry_base_delay=scheduler.backend_retry_base_delay,
            max_chunk_chars=config.chunking.max_chunk_chars,
            overlap_fraction=config.chunking.overlap_fraction,
            max_reported_errors=scheduler.max_reported_errors,
        )


@dataclass(slots=True)
class PipelineRun:
    """Mutable state of one run, owned exclusively by its scheduler."""

    run_id: str
    project: str
    content_store: ContentStore
    vector_store: VectorStore
    group_index: int = 0
    groups_completed: int = 0
    chunks_embedded: int = 0
    content_generation: int = 0
    vector_generation: int = 0
    outcomes: dict[str, NoteOutcome] = field(default_factory=dict)
    handle_lock: threading.RLock = field(default_factory=threading.RLock)
    outcome_lock: threading.Lock = field(default_factory=threading.Lock)


class BatchScheduler:
    """Resolve and run one batch of notes through the pipeline.

    Instances are single-use: :meth:`run` may be called once.
    """

    def __init__(
        self,
        *,
        content_store_factory: ContentStoreFactory,
        vector_store_factory: VectorStoreFactory,
        backend: EmbeddingBackend,
        options: SchedulerOptions | None = None,
        reporter: ProgressReporter | None = None,
        logger: Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._content_store_factory = content_store_factory
        self._vector_store_factory = vector_store_factory
        self.backend = backend
        self.options = options or SchedulerOptions()
        self.reporter = reporter or ProgressReporter()
        self.run_id = uuid.uuid4().hex[:12]
        self.logger = (logger or get_logger(__name__)).bind(
            component="scheduler",
            run_id=self.run_id,
        )
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self._state = RunState.IDLE
        self._run: PipelineRun | None = None
        self._started = False
        self._cancel_event = threading.Event()
        self._abort_event = threading.Event()
        self._failure_lock = threading.Lock()
        self._consecutive_backend_failures = 0

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def pipeline(self) -> PipelineRun | None:
        return self._run

    def cancel(self) -> None:
        """Request a stop at the next group boundary or note dispatch."""

        if self._state.is_terminal:
            self.logger.debug("embed-run-cancel-ignored", state=self._state)
            return
        if not self._cancel_event.is_set():
            self._cancel_event.set()
            self.logger.info("embed-run-cancel-requested", state=self._state)

    # ------------------------------------------------------------------#
    # Resolution
    # ------------------------------------------------------------------#
    def resolve_work_batch(
        self,
        selector: NoteSelector,
        force_all: bool = False,
    ) -> WorkBatch:
        """Select the notes to process.

        Lists the project's notes (or takes ``selector.note_ids``), drops
        notes whose stored embeddings match their current content hash
        unless ``force_all``, then applies ``selector.limit``.

        Raises:
            TransientIOError: If listing fails after the retry budget.
        """

        self._transition(RunState.RESOLVING)
        run = self._ensure_run(selector.project)

        if selector.note_ids is not None:
            listed = tuple(dict.fromkeys(selector.note_ids))
        else:
            listed = tuple(
                self._with_content_retry(
                    run,
                    lambda store: store.list_notes(run.project),
                )
            )

        skipped: dict[str, str] = {}
        candidates: list[str] = []
        for note_id in listed:
            if force_all or not self._is_fresh(run, note_id):
                candidates.append(note_id)
            else:
                skipped[note_id] = _SKIP_UP_TO_DATE

        cap = selector.limit if selector.limit > 0 else len(candidates)
        selected = candidates[:cap]
        for note_id in candidates[cap:]:
            skipped[note_id] = _SKIP_LIMIT

        threshold = self.options.large_batch_threshold
        if threshold and len(selected) > threshold:
            self.logger.warning(
                "embed-large-batch",
                notes=len(selected),
                threshold=threshold,
                hint="Lower --limit or run in several passes.",
            )

        self.logger.info(
            "embed-batch-resolved",
            project=run.project,
            listed=len(listed),
            selected=len(selected),
            up_to_date=sum(
                1 for reason in skipped.values() if reason == _SKIP_UP_TO_DATE
            ),
            cut_by_limit=len(candidates) - len(selected),
            force=force_all,
        )
        return WorkBatch(
            project=run.project,
            note_ids=tuple(selected),
            force=force_all,
            total_listed=len(listed),
            skipped=skipped,
        )

    def _is_fresh(self, run: PipelineRun, note_id: str) -> bool:
        try:
            note = self._read_note(run, note_id)
            return self._with_vector_retry(
                run,
                lambda store: store.exists(note_id, note.content_hash),
            )
        except TransientIOError as exc:
            self.logger.warning(
                "embed-freshness-check-failed",
                note_id=note_id,
                error=str(exc),
            )
            return False

    # ------------------------------------------------------------------#
    # Execution
    # ------------------------------------------------------------------#
    def execute(
        self,
        selector: NoteSelector,
        *,
        force_all: bool = False,
        group_size: int | None = None,
        concurrency: int | None = None,
    ) -> RunSummary:
        """Resolve then run, turning a failed listing into a fatal summary."""

        start = self._clock()
        try:
            batch = self.resolve_work_batch(selector, force_all)
        except TransientIOError as exc:
            self._transition(RunState.FATALLY_FAILED)
            self._release()
            self.logger.error("embed-resolve-failed", error=str(exc))
            return RunSummary(
                project=selector.project,
                state=RunState.FATALLY_FAILED,
                total_notes=0,
                elapsed_seconds=self._clock() - start,
                errors=[str(exc)],
                progress=self.reporter.events(),
                fatal_error=str(exc),
            )
        return self.run(batch, group_size=group_size, concurrency=concurrency)

    def run(
        self,
        work_batch: WorkBatch,
        group_size: int | None = None,
        concurrency: int | None = None,
    ) -> RunSummary:
        """Process ``work_batch`` group by group and summarize the outcome.

        Per-note failures are recorded and never abort the run. The run
        ends ``CANCELLED`` after :meth:`cancel`, ``FATALLY_FAILED`` when
        consecutive backend failures reach the configured threshold, and
        ``COMPLETED`` otherwise. Handles are released in every case.

        Raises:
            ConfigError: If ``group_size`` or ``concurrency`` is invalid.
            RuntimeError: If the scheduler already ran.
        """

        if self._started:
            raise RuntimeError("BatchScheduler instances are single-use.")
        self._started = True

        try:
            size, workers = self._run_parameters(group_size, concurrency)
        except ConfigError:
            self._release()
            raise

        groups = work_batch.groups(size)
        start = self._clock()
        fatal_error: str | None = None
        final_state = RunState.COMPLETED

        try:
            run = self._ensure_run(work_batch.project)
            self.logger.info(
                "embed-run-started",
                project=run.project,
                notes=len(work_batch),
                groups=len(groups),
                group_sizes=group_sizes(groups),
                concurrency=workers,
                force=work_batch.force,
            )
            for group in groups:
                if self._cancel_event.is_set():
                    raise RunCancelled(
                        "Run cancelled before group start.",
                        group_index=group.index,
                    )
                if group.index > 0:
                    self._recycle(run)
                    if self.options.group_delay > 0:
                        self._sleep(self.options.group_delay)
                self._transition(RunState.RUNNING)
                run.group_index = group.index
                processed = self._run_group(run, group, len(groups), workers)
                run.groups_completed += 1
                self.reporter.emit(
                    group.index,
                    len(groups),
                    processed,
                    len(group),
                    kind="group-completed",
                )
                if self._abort_event.is_set():
                    raise BackendDownError(
                        "Embedding backend appears down: "
                        f"{self._consecutive_backend_failures} consecutive "
                        "backend failures.",
                        consecutive_failures=(
                            self._consecutive_backend_failures
                        ),
                    )
            if self._cancel_event.is_set() and any(
                note_id not in run.outcomes for note_id in work_batch.note_ids
            ):
                raise RunCancelled(
                    "Run cancelled before every note was dispatched.",
                    group_index=run.group_index,
                )
        except RunCancelled as exc:
            final_state = RunState.CANCELLED
            self.logger.warning(
                "embed-run-cancelled",
                group_index=exc.group_index,
            )
        except BackendDownError as exc:
            final_state = RunState.FATALLY_FAILED
            fatal_error = exc.message
            self.logger.error(
                "embed-backend-down",
                consecutive_failures=exc.consecutive_failures,
                threshold=self.options.max_consecutive_backend_failures,
            )
        finally:
            self._release()

        self._transition(final_state)
        summary = self._summarize(
            work_batch,
            state=final_state,
            total_groups=len(groups),
            elapsed=self._clock() - start,
            fatal_error=fatal_error,
        )
        self.logger.info(
            "embed-run-summary",
            state=summary.state,
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=summary.skipped,
            elapsed=round(summary.elapsed_seconds, 3),
            groups_completed=summary.groups_completed,
        )
        if summary.accounted != summary.total_notes:
            self.logger.warning(
                "embed-run-summary-unbalanced",
                accounted=summary.accounted,
                total_notes=summary.total_notes,
            )
        return summary

    def _run_parameters(
        self,
        group_size: int | None,
        concurrency: int | None,
    ) -> tuple[int, int]:
        size = self.options.group_size if group_size is None else group_size
        if size < 1:
            raise ConfigError(f"group_size must be >= 1 (got {size})")
        requested = (
            self.options.concurrency if concurrency is None else concurrency
        )
        if requested < 1:
            raise ConfigError(f"concurrency must be >= 1 (got {requested})")
        workers = clamp_concurrency(
            requested,
            ceiling=self.backend.max_concurrency,
            logger=self.logger,
            source="scheduler",
        )
        return size, workers

    def _run_group(
        self,
        run: PipelineRun,
        group: WorkGroup,
        total_groups: int,
        workers: int,
    ) -> int:
        self.logger.debug(
            "embed-group-started",
            group_index=group.index,
            notes=len(group),
        )
        if workers <= 1 or len(group) <= 1:
            return self._run_group_sequential(run, group, total_groups)
        return self._run_group_concurrent(run, group, total_groups, workers)

    def _run_group_sequential(
        self,
        run: PipelineRun,
        group: WorkGroup,
        total_groups: int,
    ) -> int:
        processed = 0
        for position, note_id in enumerate(group.note_ids):
            if self._cancel_event.is_set() or self._abort_event.is_set():
                break
            if position > 0 and self.options.note_delay > 0:
                self._sleep(self.options.note_delay)
            outcome = self._safe_process(run, note_id)
            processed += 1
            self._record(run, outcome)
            self.reporter.emit(
                group.index,
                total_groups,
                processed,
                len(group),
                note_id=note_id,
                status=outcome.status,
            )
        return processed

    def _run_group_concurrent(
        self,
        run: PipelineRun,
        group: WorkGroup,
        total_groups: int,
        workers: int,
    ) -> int:
        processed = 0
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="notevec-embed",
        ) as executor:
            future_map: dict[
                concurrent.futures.Future[NoteOutcome | None], str
            ] = {
                executor.submit(self._dispatch, run, note_id): note_id
                for note_id in group.note_ids
            }
            for future in concurrent.futures.as_completed(future_map):
                note_id = future_map[future]
                try:
                    outcome = future.result()
                except Exception as exc:  # pragma: no cover - executor path
                    self.logger.exception(
                        "embed-note-thread-error",
                        note_id=note_id,
                        error=str(exc),
                    )
                    outcome = NoteOutcome(
                        note_id=note_id,
                        status=NoteStatus.FAILED,
                        reason=str(exc),
                        error_type=exc.__class__.__name__,
                    )
                if outcome is None:
                    continue
                processed += 1
                self._record(run, outcome)
                self.reporter.emit(
                    group.index,
                    total_groups,
                    processed,
                    len(group),
                    note_id=note_id,
                    status=outcome.status,
                )
        return processed

    def _dispatch(self, run: PipelineRun, note_id: str) -> NoteOutcome | None:
        if self._cancel_event.is_set() or self._abort_event.is_set():
            self.logger.debug("embed-note-not-dispatched", note_id=note_id)
            return None
        return self._safe_process(run, note_id)

    def _safe_process(self, run: PipelineRun, note_id: str) -> NoteOutcome:
        try:
            return self._process_note(run, note_id)
        except Exception as exc:
            self.logger.exception(
                "embed-note-crashed",
                note_id=note_id,
                error=str(exc),
            )
            return NoteOutcome(
                note_id=note_id,
                status=NoteStatus.FAILED,
                reason=str(exc) or exc.__class__.__name__,
                error_type=exc.__class__.__name__,
            )

    def _process_note(self, run: PipelineRun, note_id: str) -> NoteOutcome:
        try:
            note = self._read_note(run, note_id)
        except TransientIOError as exc:
            return self._failed(note_id, exc)

        if not note.content.strip():
            return NoteOutcome(
                note_id=note_id,
                status=NoteStatus.SKIPPED,
                reason=_SKIP_EMPTY,
            )

        chunks = split(
            note.content,
            self.options.max_chunk_chars,
            self.options.overlap_fraction,
            note_id=note_id,
        )
        written = 0
        for chunk in chunks:
            try:
                vector = self._embed_with_retry(chunk.text, note_id)
            except BackendError as exc:
                self._record_backend_failure(exc)
                if len(chunks) > 1:
                    return self._failed(
                        note_id,
                        PartialNoteFailure(
                            f"chunk {chunk.index + 1}/{chunk.total} failed "
                            f"after {written} stored: {exc}",
                            note_id=note_id,
                            chunk_index=chunk.index,
                            total_chunks=chunk.total,
                            cause_type=exc.__class__.__name__,
                        ),
                        written=written,
                    )
                return self._failed(note_id, exc)
            self._record_backend_success()

            record = EmbeddingRecord(
                note_id=note_id,
                chunk_index=chunk.index,
                vector=vector,
                content_hash=note.content_hash,
                generated_at=self._now(),
                total_chunks=chunk.total,
                chunk_start=chunk.start,
                chunk_end=chunk.end,
            )
            try:
                self._with_vector_retry(
                    run,
                    lambda store: store.upsert(record),
                )
            except TransientIOError as exc:
                return self._failed(note_id, exc, written=written)
            written += 1

        try:
            self._with_vector_retry(
                run,
                lambda store: store.prune(note_id, len(chunks)),
            )
        except TransientIOError as exc:
            return self._failed(note_id, exc, written=written)

        with run.outcome_lock:
            run.chunks_embedded += written
        return NoteOutcome(
            note_id=note_id,
            status=NoteStatus.SUCCEEDED,
            chunks=written,
        )

    def _failed(
        self,
        note_id: str,
        exc: Exception,
        *,
        written: int = 0,
    ) -> NoteOutcome:
        if isinstance(exc, PartialNoteFailure):
            error_type = exc.cause_type
            partial = True
        else:
            error_type = exc.__class__.__name__
            partial = written > 0
        return NoteOutcome(
            note_id=note_id,
            status=NoteStatus.FAILED,
            reason=str(exc) or error_type,
            error_type=error_type,
            chunks=written,
            partial=partial,
        )

    def _record(self, run: PipelineRun, outcome: NoteOutcome) -> None:
        with run.outcome_lock:
            run.outcomes[outcome.note_id] = outcome
        if outcome.status is NoteStatus.FAILED:
            self.logger.warning(
                "embed-note-failed",
                note_id=outcome.note_id,
                error_type=outcome.error_type,
                reason=outcome.reason,
                partial=outcome.partial,
            )
        else:
            self.logger.debug(
                "embed-note-finished",
                note_id=outcome.note_id,
                status=outcome.status,
                chunks=outcome.chunks,
            )

    # ------------------------------------------------------------------#
    # Backend retry and failure escalation
    # ------------------------------------------------------------------#
    def _embed_with_retry(self, text: str, note_id: str) -> EmbeddingVector:
        max_attempts = self.options.backend_retry_attempts + 1
        attempt = 1
        while True:
            try:
                return self.backend.embed(text)
            except RETRYABLE_BACKEND_ERRORS as exc:
                if attempt >= max_attempts or self._abort_event.is_set():
                    raise
                delay = self._backoff(attempt)
                self.logger.warning(
                    "embed-backend-retry",
                    note_id=note_id,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    retry_delay=delay,
                    error_type=exc.__class__.__name__,
                )
                if delay > 0:
                    self._sleep(delay)
                attempt += 1

    def _backoff(self, attempt: int) -> float:
        base = self.options.backend_retry_base_delay
        return min(base * (2 ** (attempt - 1)), _MAX_BACKEND_RETRY_DELAY)

    def _record_backend_failure(self, exc: BackendError) -> None:
        if not isinstance(exc, RETRYABLE_BACKEND_ERRORS):
            return
        threshold = self.options.max_consecutive_backend_failures
        with self._failure_lock:
            self._consecutive_backend_failures += 1
            count = self._consecutive_backend_failures
        if threshold and count >= threshold and not self._abort_event.is_set():
            self._abort_event.set()
            self.logger.error(
                "embed-backend-threshold-reached",
                consecutive_failures=count,
                threshold=threshold,
                last_error=exc.__class__.__name__,
            )

    def _record_backend_success(self) -> None:
        with self._failure_lock:
            self._consecutive_backend_failures = 0

    # ------------------------------------------------------------------#
    # Handle lifecycle
    # ------------------------------------------------------------------#
    def _ensure_run(self, project: str) -> PipelineRun:
        if self._run is not None:
            return self._run
        content_store = self._content_store_factory()
        try:
            vector_store = self._vector_store_factory()
        except Exception:
            content_store.close()
            raise
        self._run = PipelineRun(
            run_id=self.run_id,
            project=project,
            content_store=content_store,
            vector_store=vector_store,
        )
        return self._run

    def _read_note(self, run: PipelineRun, note_id: str) -> Note:
        return self._with_content_retry(
            run,
            lambda store: store.read_note(run.project, note_id),
            note_id=note_id,
        )

    def _with_content_retry(
        self,
        run: PipelineRun,
        call: Callable[[ContentStore], T],
        *,
        note_id: str | None = None,
    ) -> T:
        attempts = 0
        while True:
            with run.handle_lock:
                store = run.content_store
                generation = run.content_generation
            try:
                return call(store)
            except TransientIOError as exc:
                if attempts >= self.options.io_retry_attempts:
                    raise
                attempts += 1
                self.logger.warning(
                    "embed-content-store-retry",
                    note_id=note_id,
                    attempt=attempts,
                    error=str(exc),
                )
                self._reconnect_content_store(run, seen_generation=generation)

    def _with_vector_retry(
        self,
        run: PipelineRun,
        call: Callable[[VectorStore], T],
    ) -> T:
        attempts = 0
        while True:
            with run.handle_lock:
                store = run.vector_store
                generation = run.vector_generation
            try:
                return call(store)
            except VectorStoreError as exc:
                if attempts >= self.options.io_retry_attempts:
                    raise
                attempts += 1
                self.logger.warning(
                    "embed-vector-store-retry",
                    note_id=exc.note_id,
                    attempt=attempts,
                    error=str(exc),
                )
                self._reopen_vector_store(run, seen_generation=generation)

    def _reconnect_content_store(
        self,
        run: PipelineRun,
        *,
        seen_generation: int,
    ) -> None:
        with run.handle_lock:
            if run.content_generation != seen_generation:
                return
            self._close_quietly(run.content_store, handle="content-store")
            run.content_store = self._content_store_factory()
            run.content_generation += 1

    def _reopen_vector_store(
        self,
        run: PipelineRun,
        *,
        seen_generation: int,
    ) -> None:
        with run.handle_lock:
            if run.vector_generation != seen_generation:
                return
            run.vector_store.reopen()
            run.vector_generation += 1

    def _recycle(self, run: PipelineRun) -> None:
        self._transition(RunState.RECYCLING)
        with run.handle_lock:
            try:
                self._reconnect_content_store(
                    run,
                    seen_generation=run.content_generation,
                )
                self._reopen_vector_store(
                    run,
                    seen_generation=run.vector_generation,
                )
            except TransientIOError as exc:
                self.logger.warning(
                    "embed-recycle-failed",
                    group_index=run.group_index + 1,
                    error=str(exc),
                )
                return
        self.logger.debug(
            "embed-group-recycled",
            next_group=run.group_index + 1,
            content_generation=run.content_generation,
            vector_generation=run.vector_generation,
        )

    def _release(self) -> None:
        run = self._run
        if run is None:
            return
        with run.handle_lock:
            self._close_quietly(run.content_store, handle="content-store")
            self._close_quietly(run.vector_store, handle="vector-store")

    def _close_quietly(
        self,
        target: ContentStore | VectorStore,
        *,
        handle: str,
    ) -> None:
        try:
            target.close()
        except Exception as exc:
            self.logger.warning(
                "embed-handle-close-failed",
                handle=handle,
                error=str(exc),
            )

    # ------------------------------------------------------------------#
    # Summary
    # ------------------------------------------------------------------#
    def _summarize(
        self,
        work_batch: WorkBatch,
        *,
        state: RunState,
        total_groups: int,
        elapsed: float,
        fatal_error: str | None,
    ) -> RunSummary:
        run = self._run
        outcomes = dict(run.outcomes) if run is not None else {}
        skipped_reasons = dict(work_batch.skipped)
        if state is RunState.FATALLY_FAILED:
            leftover = _SKIP_ABORTED
        else:
            leftover = _SKIP_CANCELLED
        for note_id in work_batch.note_ids:
            if note_id not in outcomes:
                skipped_reasons[note_id] = leftover

        summary = RunSummary(
            project=work_batch.project,
            state=state,
            total_notes=work_batch.total_listed or 0,
            elapsed_seconds=elapsed,
            total_groups=total_groups,
            groups_completed=run.groups_completed if run is not None else 0,
            chunks_embedded=run.chunks_embedded if run is not None else 0,
            progress=self.reporter.events(),
            fatal_error=fatal_error,
        )
        for note_id, outcome in outcomes.items():
            if outcome.status is NoteStatus.SUCCEEDED:
                summary.succeeded += 1
            elif outcome.status is NoteStatus.FAILED:
                summary.failed += 1
                summary.failures[note_id] = (
                    f"{outcome.error_type}: {outcome.reason}"
                )
            else:
                skipped_reasons[note_id] = outcome.reason or "skipped"
        summary.skipped_reasons = skipped_reasons
        summary.skipped = len(skipped_reasons)

        limit = self.options.max_reported_errors
        rendered = [
            outcome.render_error()
            for outcome in outcomes.values()
            if outcome.status is NoteStatus.FAILED
        ]
        if fatal_error:
            rendered.insert(0, fatal_error)
        summary.errors = rendered[:limit]
        return summary

    def _transition(self, state: RunState) -> None:
        if state is self._state:
            return
        self.logger.debug(
            "embed-run-state",
            previous=self._state,
            state=state,
        )
        self._state = state

