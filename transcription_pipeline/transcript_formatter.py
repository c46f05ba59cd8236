"""
Transcript stitching.

Each planned window is transcribed on its own.  :func:`stitch_segments`
joins the per-window texts back into one transcript, one line per window,
in window order.  A window that produced no text still contributes an empty
line so the line count always matches the job's ``chunkCount``.

Windows overlap by a couple of seconds, so words spoken across a boundary
may appear at the end of one line and the start of the next.  They are kept
as is.
"""

from typing import Iterable

from .models import SegmentResult


def stitch_segments(results: Iterable[SegmentResult]) -> str:
    """Join segment texts in index order, one line per segment.

    Results are ordered by ``index`` rather than by arrival, so callers may
    collect them out of order.
    """
    ordered = sorted(results, key=lambda result: result.index)
    return "\n".join(
        result.text.strip() if result.succeeded else "" for result in ordered
    )
