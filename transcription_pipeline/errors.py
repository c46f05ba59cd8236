"""
Exceptions raised by the transcription pipeline.

Every stage raises its own subclass of :class:`PipelineError`.  The job
orchestrator in :mod:`transcription_pipeline.tasks` catches them once,
records the message on the job document and re-raises so the hosting
platform still sees the failure.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class ConfigurationError(PipelineError):
    """Raised when a required setting is missing or malformed."""


class ProbeError(PipelineError):
    """Raised when a media file cannot be inspected."""


class TranscodeError(PipelineError):
    """Raised when a recording cannot be converted to the canonical WAV."""


class ExtractError(PipelineError):
    """Raised when a time window cannot be cut from the canonical WAV."""


class PersistenceError(PipelineError):
    """Raised when the document store or object store fails."""


class TranscriptionError(PipelineError):
    """Raised when the speech-to-text backend does not return a transcript.

    Args:
        message: Human readable description.
        index: Index of the segment being transcribed, if known.
        status_code: HTTP status returned by the backend, if any.
        body: Raw response body kept for diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        index: Optional[int] = None,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.index = index
        self.status_code = status_code
        self.body = body
