"""
Data models shared by the pipeline stages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional


class JobStatus(str, Enum):
    """Possible states of a transcription job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.ERROR}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.ERROR: frozenset(),
}


@dataclass
class RecordingJob:
    """One transcription request and the outcome of its latest attempt.

    Attributes:
        owner_id: Identity of the user who uploaded the recording.
        job_id: Identifier of the job document.
        source_path: Object path of the uploaded audio.
        language_hint: Language code passed to the backend, or ``None`` to
            use the configured default.
        status: Current :class:`JobStatus`.
        duration_seconds: Recording length once probed.
        transcript_text: Stitched transcript once completed.
        chunk_count: Number of windows transcribed.
        error_message: Failure description when ``status`` is ``error``.
    """

    owner_id: str
    job_id: str
    source_path: str
    language_hint: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    duration_seconds: Optional[int] = None
    transcript_text: Optional[str] = None
    chunk_count: int = 0
    error_message: Optional[str] = None

    def transition(self, target: JobStatus) -> None:
        """Move to ``target``, rejecting transitions the state machine forbids."""
        if target not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"Job {self.job_id}: invalid status transition "
                f"{self.status.value} -> {target.value}"
            )
        self.status = target

    def begin_attempt(self) -> None:
        """Reset the in-memory outcome and enter ``processing`` for a new attempt."""
        self.status = JobStatus.QUEUED
        self.duration_seconds = None
        self.transcript_text = None
        self.chunk_count = 0
        self.error_message = None
        self.transition(JobStatus.PROCESSING)


@dataclass(frozen=True)
class SegmentResult:
    """Recognised text for one planned window."""

    index: int
    start_seconds: int
    text: str
    succeeded: bool = True
