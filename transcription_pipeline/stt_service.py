"""
Speech-to-text service wrapper.

This module encapsulates interaction with an OpenAI compatible
``/v1/audio/transcriptions`` endpoint.  :meth:`SpeechToTextClient.transcribe`
uploads one WAV segment and returns a :class:`TranscriptionResult` instead of
raising, so the orchestrator decides how a failed segment is classified.

Usage::

    from transcription_pipeline.config import Settings
    from transcription_pipeline.stt_service import SpeechToTextClient

    client = SpeechToTextClient.from_settings(Settings.from_env())
    result = client.transcribe("/tmp/job-0.wav", language="nl")
    result.raise_for_error()
    print(result.text)

A single call is made per segment by default.  Setting ``max_attempts``
above one wraps the call in an exponential backoff policy that retries
failed results.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_exponential

from .config import DEFAULT_API_URL, Settings
from .errors import ConfigurationError, TranscriptionError

logger = logging.getLogger(__name__)

# Longest response body kept on a failed result.
MAX_BODY_CHARS = 2000


@dataclass(frozen=True)
class TranscriptionResult:
    """Outcome of one transcription call.

    Attributes:
        succeeded: ``True`` when the backend returned a usable transcript.
        text: Recognised text, empty on failure.
        status_code: HTTP status, ``None`` when no response was received.
        body: Raw response body (or the network error) kept for diagnostics.
        language: Language reported by the backend, if any.
    """

    succeeded: bool
    text: str = ""
    status_code: Optional[int] = None
    body: str = ""
    language: Optional[str] = None

    def raise_for_error(self, index: Optional[int] = None) -> None:
        """Raise :class:`TranscriptionError` if this result is a failure."""
        if self.succeeded:
            return
        where = f"segment {index}" if index is not None else "segment"
        status = f"HTTP {self.status_code}" if self.status_code is not None else "no response"
        raise TranscriptionError(
            f"Transcription failed for {where} ({status}): {self.body}",
            index=index,
            status_code=self.status_code,
            body=self.body,
        )


def _failure(status_code: Optional[int], body: str) -> TranscriptionResult:
    return TranscriptionResult(succeeded=False, status_code=status_code, body=body[:MAX_BODY_CHARS])


class SpeechToTextClient:
    """Client for the remote transcription endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "whisper-1",
        api_url: str = DEFAULT_API_URL,
        timeout: int = 300,
        max_attempts: int = 1,
        wait=None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self._wait = wait if wait is not None else wait_exponential(multiplier=1, max=30)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SpeechToTextClient":
        return cls(
            settings.api_key,
            model=settings.model,
            api_url=settings.api_url,
            timeout=settings.request_timeout,
            max_attempts=settings.max_attempts,
        )

    def ensure_configured(self) -> None:
        """Raise :class:`ConfigurationError` if no API key is available."""
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY not set. Configure the function secret.")

    def transcribe(self, audio_path: str, language: Optional[str] = None) -> TranscriptionResult:
        """Transcribe one audio file.

        Args:
            audio_path: Local WAV segment.
            language: Language hint.  ``None`` or ``"auto"`` lets the backend
                detect the language.

        Returns:
            A :class:`TranscriptionResult`.  Failures are returned, not raised.
        """
        if self.max_attempts == 1:
            return self._request(audio_path, language)
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_result(lambda result: not result.succeeded),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=lambda state: logger.warning(
                "Transcription attempt %d for %s failed; retrying",
                state.attempt_number, audio_path,
            ),
        )
        return retrying(self._request, audio_path, language)

    def _request(self, audio_path: str, language: Optional[str]) -> TranscriptionResult:
        data: Dict[str, Any] = {"model": self.model, "response_format": "verbose_json"}
        if language and language != "auto":
            data["language"] = language

        logger.info("Sending %s to %s", os.path.basename(audio_path), self.api_url)
        try:
            with open(audio_path, "rb") as fh:
                response = requests.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    data=data,
                    files={"file": (os.path.basename(audio_path), fh, "audio/wav")},
                    timeout=self.timeout,
                )
        except requests.RequestException as exc:
            logger.error("Transcription request for %s failed: %s", audio_path, exc)
            return _failure(None, str(exc))

        if not 200 <= response.status_code < 300:
            logger.error("Transcription backend returned %s for %s", response.status_code, audio_path)
            return _failure(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError:
            return _failure(response.status_code, f"Invalid JSON response: {response.text}")
        if not isinstance(payload, dict) or not isinstance(payload.get("text"), str):
            return _failure(response.status_code, f"Response has no text field: {response.text}")

        return TranscriptionResult(
            succeeded=True,
            text=payload["text"],
            status_code=response.status_code,
            language=payload.get("language"),
        )
