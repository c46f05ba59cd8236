"""
Audio conversion utilities.

This module provides the local audio steps of the pipeline: probing a file
for its duration, converting an uploaded recording to the canonical WAV
format, and cutting time windows out of that WAV.  Conversions use the
`pydub` library which in turn relies on `ffmpeg`/`ffprobe`.  The canonical
format is mono, 16 kHz, 16-bit PCM so that window offsets are sample
accurate regardless of how the source was encoded.
"""

import logging
import math
import os
from pathlib import Path
from typing import Optional

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError
from pydub.utils import mediainfo_json

from .errors import ExtractError, ProbeError, TranscodeError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {
    ".mp3", ".m4a", ".flac", ".wav", ".mp4", ".webm", ".ogg", ".opus",
}
TARGET_SAMPLE_RATE = 16_000
# Segments shorter than this are rejected by the transcription backend.
MIN_SEGMENT_SECONDS = 0.5


def is_supported_audio(path: str) -> bool:
    """Check whether the file at ``path`` has a supported audio extension."""
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def probe_duration(path: str) -> int:
    """Return the duration of a media file in whole seconds, rounded up.

    Args:
        path: Local media file.

    Raises:
        ProbeError: If ffprobe cannot read the file or it has no audio stream.
    """
    try:
        info = mediainfo_json(path)
    except (OSError, ValueError) as exc:
        raise ProbeError(f"Could not probe {path}: {exc}") from exc

    streams = info.get("streams") or []
    audio_streams = [s for s in streams if s.get("codec_type") == "audio"]
    if not audio_streams:
        raise ProbeError(f"No audio stream found in {path}")

    raw = (info.get("format") or {}).get("duration") or audio_streams[0].get("duration")
    try:
        duration = float(raw)
    except (TypeError, ValueError):
        raise ProbeError(f"Could not read duration of {path}: {raw!r}") from None
    return int(math.ceil(duration))


def transcode_to_wav(
    input_path: str,
    output_path: str,
    *,
    target_sample_rate: int = TARGET_SAMPLE_RATE,
) -> str:
    """Convert an audio or video file to a 16 kHz mono WAV file.

    Args:
        input_path: Path to the source file.  Supported extensions are
            defined in :data:`SUPPORTED_EXTENSIONS`.
        output_path: Where the WAV is written.
        target_sample_rate: Desired sample rate for the output WAV.

    Returns:
        ``output_path``.

    Raises:
        TranscodeError: If the extension is unsupported or the decoder fails.
            The decoder's diagnostic output is part of the message.
    """
    if not is_supported_audio(input_path):
        raise TranscodeError(f"Unsupported audio type: {Path(input_path).suffix.lower() or '(none)'}")
    try:
        audio = AudioSegment.from_file(input_path)
        audio = audio.set_channels(1).set_frame_rate(target_sample_rate).set_sample_width(2)
        audio.export(output_path, format="wav").close()
    except CouldntDecodeError as exc:
        raise TranscodeError(f"Could not decode {input_path}: {exc}") from exc
    except OSError as exc:
        raise TranscodeError(f"Transcoding {input_path} failed: {exc}") from exc
    logger.debug("Transcoded %s to %s", input_path, output_path)
    return output_path


def extract_segment(
    source_path: str,
    start_seconds: float,
    length_seconds: float,
    output_path: str,
) -> Optional[str]:
    """Write ``[start_seconds, start_seconds + length_seconds)`` of a WAV to a new file.

    The source is read fresh on every call so windows can be cut in any
    order, or concurrently, without shared state.  Windows running past the
    end of the source are clipped.

    Returns:
        ``output_path``, or ``None`` when the clipped segment is shorter than
        :data:`MIN_SEGMENT_SECONDS` and nothing was written.  This happens
        for the sliver left over when the probed duration was rounded up.

    Raises:
        ExtractError: If the source cannot be read or ``start_seconds`` lies
            beyond its end.
    """
    try:
        audio = AudioSegment.from_wav(source_path)
    except (CouldntDecodeError, OSError) as exc:
        raise ExtractError(f"Could not read {source_path}: {exc}") from exc

    start_ms = int(round(start_seconds * 1000))
    end_ms = min(int(round((start_seconds + length_seconds) * 1000)), len(audio))
    if start_ms < 0 or start_ms > len(audio):
        raise ExtractError(
            f"Segment start {start_seconds}s is outside {source_path} "
            f"({len(audio) / 1000:.3f}s long)"
        )
    if end_ms - start_ms < MIN_SEGMENT_SECONDS * 1000:
        logger.info(
            "Skipping %.3fs segment at %ss of %s",
            (end_ms - start_ms) / 1000, start_seconds, source_path,
        )
        return None
    segment = audio[start_ms:end_ms]
    segment = segment.set_channels(1).set_frame_rate(TARGET_SAMPLE_RATE)
    try:
        segment.export(output_path, format="wav").close()
    except OSError as exc:
        raise ExtractError(f"Could not write {output_path}: {exc}") from exc
    return output_path


def cleanup_temp_file(path: Optional[str]) -> None:
    """Remove a temporary file if it exists.

    Args:
        path: Path to the temporary file.  Nothing happens if ``path`` is
            ``None`` or the file does not exist.
    """
    if path and os.path.exists(path):
        try:
            os.remove(path)
        except OSError as exc:
            logger.debug("Could not remove %s: %s", path, exc)
