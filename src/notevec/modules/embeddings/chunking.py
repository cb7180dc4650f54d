"""Overlapping fixed-width text chunking.

Chunks are character windows of at most ``max_chunk_chars``. Consecutive
windows start ``max_chunk_chars - floor(overlap_fraction * max_chunk_chars)``
characters apart, so each pair shares exactly the overlap except where the
final window is cut short by the end of the text.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from notevec.modules.embeddings.errors import ConfigError

__all__ = ["Chunk", "overlap_chars", "reconstruct", "split"]


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous segment ``text[start:end]`` of a note."""

    note_id: str
    index: int
    text: str
    start: int
    end: int
    total: int


def _validate(max_chunk_chars: int, overlap_fraction: float) -> None:
    if max_chunk_chars <= 0:
        raise ConfigError(
            f"max_chunk_chars must be > 0 (got {max_chunk_chars})"
        )
    if not 0 <= overlap_fraction < 1:
        raise ConfigError(
            f"overlap_fraction must be in [0, 1) (got {overlap_fraction})"
        )


def overlap_chars(max_chunk_chars: int, overlap_fraction: float) -> int:
    """Return the overlap width in characters, rounded down.

    Example:
        >>> overlap_chars(2000, 0.15)
        300
    """

    _validate(max_chunk_chars, overlap_fraction)
    return math.floor(overlap_fraction * max_chunk_chars)


def split(
    text: str,
    max_chunk_chars: int,
    overlap_fraction: float,
    *,
    note_id: str = "",
) -> tuple[Chunk, ...]:
    """Split ``text`` into overlapping chunks.

    Args:
        text: Note content to split.
        max_chunk_chars: Upper bound on each chunk's length.
        overlap_fraction: Fraction of ``max_chunk_chars`` shared by
            consecutive chunks, in ``[0, 1)``.
        note_id: Identifier stamped on every produced chunk.

    Returns:
        Chunks with contiguous indices starting at ``0``. Empty text yields
        no chunks; text no longer than ``max_chunk_chars`` yields one.

    Raises:
        ConfigError: If ``max_chunk_chars <= 0`` or ``overlap_fraction`` is
            outside ``[0, 1)``.

    Example:
        >>> [c.text for c in split("abcdefghij", 4, 0.5)]
        ['abcd', 'cdef', 'efgh', 'ghij']
    """

    overlap = overlap_chars(max_chunk_chars, overlap_fraction)
    length = len(text)
    if length == 0:
        return ()
    if length <= max_chunk_chars:
        return (Chunk(note_id, 0, text, 0, length, 1),)

    step = max_chunk_chars - overlap
    spans: list[tuple[int, int]] = []
    start = 0
    while True:
        end = min(start + max_chunk_chars, length)
        spans.append((start, end))
        if end >= length:
            break
        start += step

    total = len(spans)
    return tuple(
        Chunk(note_id, index, text[begin:end], begin, end, total)
        for index, (begin, end) in enumerate(spans)
    )


def reconstruct(chunks: Sequence[Chunk]) -> str:
    """Rebuild the source text from the non-overlapping part of each chunk.

    Example:
        >>> reconstruct(split("abcdefghij", 4, 0.5))
        'abcdefghij'
    """

    pieces: list[str] = []
    covered = 0
    for chunk in chunks:
        pieces.append(chunk.text[covered - chunk.start :])
        covered = chunk.end
    return "".join(pieces)
