"""
Runtime configuration read from environment variables.

Cloud Functions pass configuration through the environment, so every
invocation builds a :class:`Settings` instance with :meth:`Settings.from_env`.
Recognised variables:

* ``OPENAI_API_KEY`` – credential for the speech-to-text backend.
* ``TRANSCRIBE_MODEL`` – model identifier sent with every request.
* ``TRANSCRIBE_API_URL`` – transcription endpoint.
* ``TRANSCRIBE_REQUEST_TIMEOUT`` – per-request timeout in seconds.
* ``TRANSCRIBE_MAX_ATTEMPTS`` – attempts per segment (``1`` disables retry).
* ``CHUNK_SECONDS`` / ``CHUNK_OVERLAP_SECONDS`` – window size and overlap.
* ``DEFAULT_LANGUAGE`` – language hint when a job has none (``auto`` lets
  the backend detect it).
* ``FUNCTION_REGION`` / ``FUNCTION_TIMEOUT_SECONDS`` – deployment region and
  the execution time budget the platform enforces.
* ``UPLOAD_PREFIX`` – object prefix handled by the storage trigger.
* ``STORAGE_BUCKET`` – bucket used when a job is re-run over HTTP.
* ``WORK_DIR`` – scratch directory for temporary audio files.
* ``LOG_LEVEL`` – root logging level, applied by :mod:`transcription_pipeline.main`.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .errors import ConfigurationError

DEFAULT_API_URL = "https://api.openai.com/v1/audio/transcriptions"


def _int_env(environ: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Immutable view of the pipeline configuration."""

    api_key: str = field(default="", repr=False)
    model: str = "whisper-1"
    api_url: str = DEFAULT_API_URL
    request_timeout: int = 300
    max_attempts: int = 1
    chunk_seconds: int = 120
    overlap_seconds: int = 2
    default_language: str = "auto"
    region: str = "us-central1"
    time_budget_seconds: int = 540
    upload_prefix: str = "transcriptions/"
    bucket_name: str = ""
    work_dir: str = field(default_factory=tempfile.gettempdir)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``environ`` (defaults to :data:`os.environ`).

        Raises:
            ConfigurationError: If a numeric variable is malformed or the
                chunk/overlap combination cannot produce a valid plan.
        """
        env = os.environ if environ is None else environ
        chunk_seconds = _int_env(env, "CHUNK_SECONDS", 120, minimum=1)
        overlap_seconds = _int_env(env, "CHUNK_OVERLAP_SECONDS", 2)
        if overlap_seconds >= chunk_seconds:
            raise ConfigurationError(
                f"CHUNK_OVERLAP_SECONDS ({overlap_seconds}) must be smaller than "
                f"CHUNK_SECONDS ({chunk_seconds})"
            )
        return cls(
            api_key=env.get("OPENAI_API_KEY", ""),
            model=env.get("TRANSCRIBE_MODEL") or "whisper-1",
            api_url=env.get("TRANSCRIBE_API_URL") or DEFAULT_API_URL,
            request_timeout=_int_env(env, "TRANSCRIBE_REQUEST_TIMEOUT", 300, minimum=1),
            max_attempts=_int_env(env, "TRANSCRIBE_MAX_ATTEMPTS", 1, minimum=1),
            chunk_seconds=chunk_seconds,
            overlap_seconds=overlap_seconds,
            default_language=env.get("DEFAULT_LANGUAGE") or "auto",
            region=env.get("FUNCTION_REGION") or "us-central1",
            time_budget_seconds=_int_env(env, "FUNCTION_TIMEOUT_SECONDS", 540, minimum=1),
            upload_prefix=env.get("UPLOAD_PREFIX", "transcriptions/"),
            bucket_name=env.get("STORAGE_BUCKET", ""),
            work_dir=env.get("WORK_DIR") or tempfile.gettempdir(),
        )
