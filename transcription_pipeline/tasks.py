"""
Orchestration layer for the transcription pipeline.

This module drives one recording through the pipeline and keeps its job
document current.  It is called from the Cloud Function entrypoints in
:mod:`transcription_pipeline.main`:

* When a recording is uploaded under ``UPLOAD_PREFIX``,
  :func:`job_from_upload_event` turns the storage event into a
  :class:`~transcription_pipeline.models.RecordingJob` and
  :meth:`TranscriptionJobRunner.process_upload` runs it.
* When a job is re-run over HTTP, :meth:`TranscriptionJobRunner.run` starts a
  fresh attempt from the stored object.

A run marks the job ``processing`` before any expensive work, then
downloads, transcodes, probes, plans windows and transcribes them one by one
in index order.  The first failing stage marks the job ``error`` and the
exception is re-raised to the platform.  Temporary files are removed in
every case.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from . import audio_processor
from .chunk_planner import plan_chunks
from .config import Settings
from .models import JobStatus, RecordingJob, SegmentResult
from .stores import DocumentStore, FirestoreDocumentStore, GcsObjectStore, ObjectStore
from .stt_service import SpeechToTextClient
from .transcript_formatter import stitch_segments

logger = logging.getLogger(__name__)

# Share of the execution budget after which a finished job is logged as slow.
BUDGET_WARNING_RATIO = 0.8


def _now() -> datetime:
    return datetime.now(timezone.utc)


def job_from_upload_event(event: Mapping[str, Any], settings: Settings) -> Optional[RecordingJob]:
    """Build a job from a storage finalize event, or ``None`` to ignore it.

    The owner and job id come from the object metadata (``ownerId``/``uid``
    and ``jobId``/``transcriptionDocId``).  Missing values fall back to the
    object path, which the recorder writes as
    ``{UPLOAD_PREFIX}{ownerId}/{jobId}.{ext}``.
    """
    name = event.get("name")
    if not name:
        logger.warning("Received event without an object name: %s", event)
        return None
    prefix = settings.upload_prefix
    if prefix and not name.startswith(prefix):
        logger.info("Ignoring file outside of %s: %s", prefix, name)
        return None

    metadata = event.get("metadata") or {}
    parts = name[len(prefix):].split("/") if prefix else name.split("/")
    owner_id = metadata.get("ownerId") or metadata.get("uid")
    job_id = metadata.get("jobId") or metadata.get("transcriptionDocId")
    if not owner_id and len(parts) >= 2:
        owner_id = parts[0]
    if not job_id and len(parts) >= 2:
        job_id = Path(parts[1]).stem
    if not owner_id or not job_id:
        logger.info("Ignoring upload %s without owner or job id", name)
        return None

    return RecordingJob(
        owner_id=owner_id,
        job_id=job_id,
        source_path=name,
        language_hint=metadata.get("language") or None,
    )


class TranscriptionJobRunner:
    """Runs transcription jobs against injected stores and a transcription client."""

    def __init__(
        self,
        documents: DocumentStore,
        objects: ObjectStore,
        client: SpeechToTextClient,
        settings: Settings,
    ) -> None:
        self._documents = documents
        self._objects = objects
        self._client = client
        self._settings = settings

    # ── Entry points ─────────────────────────────────────────────────────

    def read_job(self, owner_id: str, job_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored job document, or ``None`` if there is no such job."""
        return self._documents.read(owner_id, job_id)

    def process_upload(self, job: RecordingJob) -> RecordingJob:
        """Record where the upload lives, then run the job."""
        fields: Dict[str, Any] = {"sourcePath": job.source_path, "updatedAt": _now()}
        if job.language_hint:
            fields["languageHint"] = job.language_hint
        self._documents.merge_update(job.owner_id, job.job_id, fields)
        return self.run(job)

    def run(self, job: RecordingJob) -> RecordingJob:
        """Run one attempt of ``job`` end to end.

        Returns:
            The job, ``completed`` with its transcript.

        Raises:
            PipelineError: Or any other exception from a stage, after the
                job document has been marked ``error``.
        """
        started = time.monotonic()
        logger.info("Starting transcription for job %s (owner %s)", job.job_id, job.owner_id)
        job.begin_attempt()
        temp_files: List[str] = []
        try:
            self._documents.merge_update(job.owner_id, job.job_id, {
                "status": JobStatus.PROCESSING.value,
                "errorMessage": None,
                "transcriptText": None,
                "durationSeconds": None,
                "chunkCount": 0,
                "updatedAt": _now(),
            })
            self._client.ensure_configured()
            text = self._transcribe_recording(job, temp_files)

            self._documents.merge_update(job.owner_id, job.job_id, {
                "status": JobStatus.COMPLETED.value,
                "transcriptText": text,
                "durationSeconds": job.duration_seconds,
                "chunkCount": job.chunk_count,
                "model": self._client.model,
                "updatedAt": _now(),
            })
            job.transcript_text = text
            job.transition(JobStatus.COMPLETED)
            self._log_elapsed(job, started)
            return job
        except Exception as exc:
            logger.exception("Job %s failed: %s", job.job_id, exc)
            self._record_failure(job, exc)
            raise
        finally:
            for path in temp_files:
                audio_processor.cleanup_temp_file(path)

    # ── Pipeline stages ──────────────────────────────────────────────────

    def _transcribe_recording(self, job: RecordingJob, temp_files: List[str]) -> str:
        work_dir = self._settings.work_dir
        suffix = Path(job.source_path).suffix.lower() or ".webm"

        local_input = os.path.join(work_dir, f"{job.job_id}-source{suffix}")
        temp_files.append(local_input)
        self._objects.download(job.source_path, local_input)

        document = self._documents.read_or_create(job.owner_id, job.job_id)
        language = (
            document.get("languageHint")
            or job.language_hint
            or self._settings.default_language
        )

        local_wav = os.path.join(work_dir, f"{job.job_id}.wav")
        temp_files.append(local_wav)
        audio_processor.transcode_to_wav(local_input, local_wav)

        job.duration_seconds = audio_processor.probe_duration(local_wav)
        windows = plan_chunks(
            job.duration_seconds,
            self._settings.chunk_seconds,
            self._settings.overlap_seconds,
        )
        logger.info(
            "Job %s: %ds of audio, %d chunks, language=%s",
            job.job_id, job.duration_seconds, len(windows), language,
        )

        results: List[SegmentResult] = []
        for window in windows:
            segment_path = os.path.join(work_dir, f"{job.job_id}-{window.index}.wav")
            temp_files.append(segment_path)
            extracted = audio_processor.extract_segment(
                local_wav, window.start_seconds, window.length_seconds, segment_path
            )
            if extracted is None:
                results.append(SegmentResult(window.index, window.start_seconds, ""))
                continue
            outcome = self._client.transcribe(segment_path, language)
            outcome.raise_for_error(window.index)
            results.append(SegmentResult(window.index, window.start_seconds, outcome.text))
            logger.info("Job %s: chunk %d/%d transcribed", job.job_id, window.index + 1, len(windows))

        job.chunk_count = len(results)
        return stitch_segments(results)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _record_failure(self, job: RecordingJob, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        job.error_message = message
        if job.status is JobStatus.PROCESSING:
            job.transition(JobStatus.ERROR)
        try:
            self._documents.merge_update(job.owner_id, job.job_id, {
                "status": JobStatus.ERROR.value,
                "errorMessage": message,
                "updatedAt": _now(),
            })
        except Exception as store_exc:
            logger.error(
                "Could not record failure of job %s: %s", job.job_id, store_exc, exc_info=True
            )

    def _log_elapsed(self, job: RecordingJob, started: float) -> None:
        elapsed = time.monotonic() - started
        budget = self._settings.time_budget_seconds
        if elapsed > budget * BUDGET_WARNING_RATIO:
            logger.warning(
                "Job %s took %.1fs of a %ds execution budget; lower CHUNK_SECONDS "
                "or split long recordings", job.job_id, elapsed, budget,
            )
        logger.info(
            "Job %s completed: %ss, %d chunks in %.1fs",
            job.job_id, job.duration_seconds, job.chunk_count, elapsed,
        )


def build_runner(settings: Settings, bucket_name: str) -> TranscriptionJobRunner:
    """Create a runner wired to Firestore, Cloud Storage and the STT backend."""
    return TranscriptionJobRunner(
        FirestoreDocumentStore(),
        GcsObjectStore(bucket_name),
        SpeechToTextClient.from_settings(settings),
        settings,
    )
