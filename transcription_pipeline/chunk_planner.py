"""
Window planning for long recordings.

The speech-to-text backend only accepts short uploads, so a recording is
split into windows of ``chunk_seconds``.  Every window after the first starts
``overlap_seconds`` early and re-reads the tail of its predecessor so that a
word cut by a hard boundary is heard whole at least once.  The stride between
window starts is always ``chunk_seconds``; overlap never shifts later windows.

The overlapping audio is transcribed twice and the duplicated words are kept
in the stitched transcript.  See :mod:`transcription_pipeline.transcript_formatter`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class ChunkWindow:
    """One planned time window, in whole seconds."""

    index: int
    start_seconds: int
    length_seconds: int

    @property
    def end_seconds(self) -> int:
        return self.start_seconds + self.length_seconds


def plan_chunks(
    duration_seconds: int,
    chunk_seconds: int = 120,
    overlap_seconds: int = 2,
) -> List[ChunkWindow]:
    """Compute the ordered windows covering ``[0, duration_seconds)``.

    Args:
        duration_seconds: Length of the recording.  ``0`` yields no windows.
        chunk_seconds: Nominal window length and stride.
        overlap_seconds: Seconds each window after the first reaches back
            into its predecessor.

    Returns:
        Windows ordered by index.  The first starts at 0 without overlap and
        the last ends exactly at ``duration_seconds``.

    Raises:
        ValueError: If the arguments cannot produce a valid plan.
    """
    if duration_seconds < 0:
        raise ValueError(f"duration_seconds must be >= 0, got {duration_seconds}")
    if chunk_seconds <= 0:
        raise ValueError(f"chunk_seconds must be > 0, got {chunk_seconds}")
    if overlap_seconds < 0 or overlap_seconds >= chunk_seconds:
        raise ValueError(
            f"overlap_seconds must be in [0, {chunk_seconds}), got {overlap_seconds}"
        )

    windows: List[ChunkWindow] = []
    start = 0
    while start < duration_seconds:
        first = not windows
        if first:
            effective_start = start
            budget = chunk_seconds
        else:
            effective_start = max(0, start - overlap_seconds)
            budget = chunk_seconds + overlap_seconds
        remaining = duration_seconds - effective_start
        windows.append(ChunkWindow(len(windows), effective_start, min(budget, remaining)))
        start += chunk_seconds
    return windows
