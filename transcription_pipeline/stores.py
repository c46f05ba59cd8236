"""
Document and object store access.

The orchestrator talks to storage only through the two small interfaces
below, so tests can substitute in-memory fakes.  The production
implementations are backed by Cloud Firestore (job documents) and Cloud
Storage (uploaded recordings).  Errors raised by the Google clients are
wrapped in :class:`~transcription_pipeline.errors.PersistenceError`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore, storage

from .errors import PersistenceError

logger = logging.getLogger(__name__)

JOB_DOCUMENT_PATH = "users/{owner_id}/transcriptions/{job_id}"


class DocumentStore(Protocol):
    def read(self, owner_id: str, job_id: str) -> Optional[Dict[str, Any]]:
        """Return the job document, or ``None`` if it does not exist."""

    def read_or_create(self, owner_id: str, job_id: str) -> Dict[str, Any]:
        """Return the job document, creating an empty one if it is missing."""

    def merge_update(self, owner_id: str, job_id: str, fields: Dict[str, Any]) -> None:
        """Write ``fields`` into the job document without touching other fields."""


class ObjectStore(Protocol):
    def download(self, path: str, destination: str) -> None:
        """Copy the object at ``path`` to the local file ``destination``."""

    def delete(self, path: str) -> None:
        """Remove the object at ``path``."""


class FirestoreDocumentStore:
    """Job documents stored under ``users/{owner}/transcriptions/{job}``."""

    def __init__(self, client: Optional[firestore.Client] = None) -> None:
        self._client = client or firestore.Client()

    def _ref(self, owner_id: str, job_id: str):
        return self._client.document(JOB_DOCUMENT_PATH.format(owner_id=owner_id, job_id=job_id))

    def read(self, owner_id: str, job_id: str) -> Optional[Dict[str, Any]]:
        try:
            snapshot = self._ref(owner_id, job_id).get()
        except google_exceptions.GoogleAPIError as exc:
            raise PersistenceError(f"Could not read job {owner_id}/{job_id}: {exc}") from exc
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    def read_or_create(self, owner_id: str, job_id: str) -> Dict[str, Any]:
        ref = self._ref(owner_id, job_id)
        try:
            snapshot = ref.get()
            if snapshot.exists:
                return snapshot.to_dict() or {}
            ref.set({}, merge=True)
            logger.info("Created job document %s", ref.path)
            return {}
        except google_exceptions.GoogleAPIError as exc:
            raise PersistenceError(f"Could not read job {owner_id}/{job_id}: {exc}") from exc

    def merge_update(self, owner_id: str, job_id: str, fields: Dict[str, Any]) -> None:
        try:
            self._ref(owner_id, job_id).set(fields, merge=True)
        except google_exceptions.GoogleAPIError as exc:
            raise PersistenceError(f"Could not update job {owner_id}/{job_id}: {exc}") from exc


class GcsObjectStore:
    """Objects in a single Cloud Storage bucket."""

    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None) -> None:
        self.bucket_name = bucket_name
        self._bucket = (client or storage.Client()).bucket(bucket_name)

    def download(self, path: str, destination: str) -> None:
        try:
            self._bucket.blob(path).download_to_filename(destination)
        except (google_exceptions.GoogleAPIError, OSError) as exc:
            raise PersistenceError(
                f"Could not download gs://{self.bucket_name}/{path}: {exc}"
            ) from exc
        logger.info("Downloaded gs://%s/%s to %s", self.bucket_name, path, destination)

    def delete(self, path: str) -> None:
        try:
            self._bucket.blob(path).delete()
        except google_exceptions.GoogleAPIError as exc:
            raise PersistenceError(f"Could not delete gs://{self.bucket_name}/{path}: {exc}") from exc
