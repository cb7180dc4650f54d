"""Progress reporting for embedding runs.

Reporters never fail a run: delivery errors are logged and dropped. Every
reporter also keeps the full event log so callers that cannot stream still
receive it atomically with the run summary.
"""

from __future__ import annotations

import queue
import threading
from typing import Callable

from notevec.core.logging import Logger, get_logger
from notevec.modules.embeddings.models import NoteStatus, ProgressEvent

__all__ = [
    "ProgressReporter",
    "ProgressSink",
    "QueueProgressReporter",
    "StreamingProgressReporter",
]

ProgressSink = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Accumulates progress events; subclasses add live delivery."""

    def __init__(self, *, logger: Logger | None = None) -> None:
        self.logger = logger or get_logger(__name__, component="progress")
        self._lock = threading.Lock()
        self._events: list[ProgressEvent] = []

    def emit(
        self,
        group_index: int,
        total_groups: int,
        notes_processed_in_group: int,
        total_notes_in_group: int,
        *,
        note_id: str | None = None,
        status: NoteStatus | None = None,
        kind: str = "note",
    ) -> ProgressEvent:
        """Record one event and hand it to :meth:`_deliver`."""

        event = ProgressEvent(
            kind=kind,
            group_index=group_index,
            total_groups=total_groups,
            notes_processed_in_group=notes_processed_in_group,
            total_notes_in_group=total_notes_in_group,
            note_id=note_id,
            status=status,
        )
        with self._lock:
            self._events.append(event)
        try:
            self._deliver(event)
        except Exception as exc:
            self.logger.warning(
                "embed-progress-failed",
                kind=kind,
                note_id=note_id,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
        return event

    def events(self) -> tuple[ProgressEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def _deliver(self, event: ProgressEvent) -> None:
        return None


class StreamingProgressReporter(ProgressReporter):
    """Forwards each event to ``sink`` as it occurs."""

    def __init__(
        self,
        sink: ProgressSink,
        *,
        logger: Logger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self._sink = sink

    def _deliver(self, event: ProgressEvent) -> None:
        self._sink(event)


class QueueProgressReporter(ProgressReporter):
    """Pushes events onto a queue drained by another thread."""

    def __init__(
        self,
        target: queue.Queue,
        *,
        logger: Logger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self._queue = target

    def _deliver(self, event: ProgressEvent) -> None:
        self._queue.put_nowait(event)
