"""
Cloud Function entrypoints for the transcription pipeline.

This module exposes two functions:

* ``gcs_event`` – a background function triggered by Cloud Storage
  finalize events.  Recordings uploaded under ``UPLOAD_PREFIX`` are
  transcribed and the result is written to the job document.
* ``http_trigger`` – an HTTP function that re-runs an existing job from its
  stored recording, for jobs that ended in ``error`` or were left in
  ``processing`` by a platform timeout.

See :mod:`transcription_pipeline.config` for the environment variables that
control the pipeline.  Deployment typically uses ``gcs_event`` as the
entrypoint with ``FUNCTION_TIMEOUT_SECONDS`` matching the function timeout.
"""

import logging
import os
from typing import Any, Dict

import flask

from . import tasks
from .config import Settings
from .errors import PipelineError
from .models import RecordingJob

logger = logging.getLogger(__name__)
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())


def gcs_event(event: Dict[str, Any], context: Any) -> None:
    """Background function triggered by Cloud Storage.

    The event carries the ``bucket``, ``name`` and ``metadata`` of the
    uploaded object.  Events that do not identify an owner and a job are
    ignored.  Pipeline failures are recorded on the job and re-raised so
    the platform reports them.
    """
    settings = Settings.from_env()
    bucket = event.get("bucket")
    if not bucket:
        logger.warning("Received event with missing bucket: %s", event)
        return
    job = tasks.job_from_upload_event(event, settings)
    if job is None:
        return
    logger.info(
        "Processing upload gs://%s/%s for job %s in %s",
        bucket, job.source_path, job.job_id, settings.region,
    )
    runner = tasks.build_runner(settings, bucket)
    runner.process_upload(job)


def http_trigger(request: flask.Request):
    """HTTP entrypoint for re-running a transcription job.

    Expects a JSON body with ``ownerId`` and ``jobId``.  The recording is
    read from the job document's ``sourcePath`` in ``STORAGE_BUCKET``.
    Callers are authenticated by the hosting platform.
    """
    data = request.get_json(silent=True) or {}
    owner_id = data.get("ownerId")
    job_id = data.get("jobId")
    if not owner_id or not job_id:
        return "Missing 'ownerId' or 'jobId' in request", 400

    try:
        settings = Settings.from_env()
        if not settings.bucket_name:
            return "STORAGE_BUCKET is not configured", 500
        runner = tasks.build_runner(settings, settings.bucket_name)
        document = runner.read_job(owner_id, job_id)
        if document is None:
            return "Transcription not found", 404
        source_path = document.get("sourcePath")
        if not source_path:
            return "No audio file available for this transcription", 400
        job = RecordingJob(
            owner_id=owner_id,
            job_id=job_id,
            source_path=source_path,
            language_hint=document.get("languageHint"),
        )
        logger.info("Retrying transcription %s for owner %s", job_id, owner_id)
        job = runner.run(job)
        return f"Transcription {job_id} completed with {job.chunk_count} chunks", 200
    except PipelineError as exc:
        logger.error("Retry of job %s failed: %s", job_id, exc)
        return f"Transcription failed: {exc}", 500
    except Exception as exc:
        logger.exception("Error in HTTP trigger: %s", exc)
        return f"Error: {exc}", 500
