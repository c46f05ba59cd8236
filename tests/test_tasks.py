import os

import pytest

from fakes import FakeClient
from transcription_pipeline import audio_processor, tasks
from transcription_pipeline.config import Settings
from transcription_pipeline.errors import ConfigurationError, PersistenceError, TranscodeError, TranscriptionError
from transcription_pipeline.models import JobStatus, RecordingJob
from transcription_pipeline.stt_service import TranscriptionResult

OWNER = "user-1"
JOB = "rec-42"


@pytest.fixture
def fake_audio(monkeypatch):
    """Replace ffmpeg-backed steps with file writes and record what was cut."""
    state = {"duration": 250, "segments": []}

    def transcode(src, dest):
        assert os.path.exists(src)
        with open(dest, "wb") as fh:
            fh.write(b"wav")
        return dest

    def extract(src, start, length, dest):
        assert os.path.exists(src)
        state["segments"].append((start, length))
        with open(dest, "wb") as fh:
            fh.write(b"seg")
        return dest

    monkeypatch.setattr(audio_processor, "transcode_to_wav", transcode)
    monkeypatch.setattr(audio_processor, "probe_duration", lambda path: state["duration"])
    monkeypatch.setattr(audio_processor, "extract_segment", extract)
    return state


def _job(**kwargs):
    return RecordingJob(owner_id=OWNER, job_id=JOB, source_path=f"transcriptions/{OWNER}/{JOB}.webm", **kwargs)


def _runner(documents, objects, client, settings):
    return tasks.TranscriptionJobRunner(documents, objects, client, settings)


def test_completed_job_persists_transcript(documents, objects, settings, fake_audio):
    client = FakeClient()
    job = _runner(documents, objects, client, settings).run(_job())

    assert job.status is JobStatus.COMPLETED
    assert fake_audio["segments"] == [(0, 120), (118, 122), (238, 12)]
    doc = documents.get(OWNER, JOB)
    assert doc["status"] == "completed"
    assert doc["transcriptText"] == "chunk 0\nchunk 1\nchunk 2"
    assert doc["durationSeconds"] == 250
    assert doc["chunkCount"] == 3
    assert doc["model"] == "whisper-1"
    assert doc["errorMessage"] is None
    assert len(doc["transcriptText"].split("\n")) == doc["chunkCount"]


def test_processing_is_persisted_before_any_work(documents, objects, settings, fake_audio):
    _runner(documents, objects, FakeClient(), settings).run(_job())

    assert documents.updates[0]["status"] == "processing"
    assert [u["status"] for u in documents.updates] == ["processing", "completed"]


def test_segments_are_transcribed_in_window_order(documents, objects, settings, fake_audio):
    client = FakeClient()
    _runner(documents, objects, client, settings).run(_job())

    paths = [os.path.basename(path) for path, _ in client.calls]
    assert paths == [f"{JOB}-0.wav", f"{JOB}-1.wav", f"{JOB}-2.wav"]


def test_empty_segment_text_keeps_line_count(documents, objects, settings, fake_audio):
    client = FakeClient([
        TranscriptionResult(succeeded=True, text="hello"),
        TranscriptionResult(succeeded=True, text="  "),
        TranscriptionResult(succeeded=True, text="bye"),
    ])
    _runner(documents, objects, client, settings).run(_job())

    doc = documents.get(OWNER, JOB)
    assert doc["transcriptText"] == "hello\n\nbye"
    assert len(doc["transcriptText"].split("\n")) == doc["chunkCount"] == 3


def test_zero_duration_completes_with_empty_transcript(documents, objects, settings, fake_audio):
    fake_audio["duration"] = 0
    client = FakeClient()
    job = _runner(documents, objects, client, settings).run(_job())

    assert job.status is JobStatus.COMPLETED
    assert client.calls == []
    doc = documents.get(OWNER, JOB)
    assert doc["transcriptText"] == ""
    assert doc["chunkCount"] == 0
    assert doc["durationSeconds"] == 0


def test_failed_second_segment_marks_job_error(documents, objects, settings, fake_audio):
    client = FakeClient([
        TranscriptionResult(succeeded=True, text="first"),
        TranscriptionResult(succeeded=False, status_code=500, body="upstream exploded"),
    ])
    job = _job()

    with pytest.raises(TranscriptionError) as excinfo:
        _runner(documents, objects, client, settings).run(job)

    assert excinfo.value.index == 1
    assert len(client.calls) == 2
    assert job.status is JobStatus.ERROR
    doc = documents.get(OWNER, JOB)
    assert doc["status"] == "error"
    assert doc["transcriptText"] is None
    assert "segment 1" in doc["errorMessage"]
    assert "HTTP 500" in doc["errorMessage"]
    assert "upstream exploded" in doc["errorMessage"]


def test_transcode_failure_still_removes_download(documents, objects, settings, monkeypatch):
    def broken(src, dest):
        raise TranscodeError("Could not decode: moov atom not found")

    monkeypatch.setattr(audio_processor, "transcode_to_wav", broken)

    with pytest.raises(TranscodeError):
        _runner(documents, objects, FakeClient(), settings).run(_job())

    [(_, downloaded)] = objects.downloads
    assert not os.path.exists(downloaded)
    assert documents.get(OWNER, JOB)["errorMessage"] == "Could not decode: moov atom not found"


def test_all_temp_files_removed_after_success(documents, objects, settings, fake_audio, tmp_path):
    _runner(documents, objects, FakeClient(), settings).run(_job())

    assert list(tmp_path.iterdir()) == []


def test_cleanup_failure_does_not_mask_outcome(documents, objects, settings, fake_audio, monkeypatch):
    removed = []

    def failing_remove(path):
        removed.append(path)
        raise PermissionError("busy")

    monkeypatch.setattr(audio_processor.os, "remove", failing_remove)
    job = _runner(documents, objects, FakeClient(), settings).run(_job())

    assert job.status is JobStatus.COMPLETED
    assert documents.get(OWNER, JOB)["status"] == "completed"
    assert len(removed) >= 5


def test_download_failure_is_recorded(documents, objects, settings, fake_audio):
    objects.error = PersistenceError("Could not download gs://bucket/x: 404 Not Found")

    with pytest.raises(PersistenceError):
        _runner(documents, objects, FakeClient(), settings).run(_job())

    doc = documents.get(OWNER, JOB)
    assert doc["status"] == "error"
    assert "404" in doc["errorMessage"]


def test_missing_api_key_is_recorded_as_configuration_error(documents, objects, settings, fake_audio):
    with pytest.raises(ConfigurationError):
        _runner(documents, objects, FakeClient(api_key=""), settings).run(_job())

    assert objects.downloads == []
    assert "OPENAI_API_KEY" in documents.get(OWNER, JOB)["errorMessage"]


def test_error_persistence_failure_keeps_original_exception(documents, objects, settings, fake_audio):
    documents.fail_on_status = "error"
    client = FakeClient([TranscriptionResult(succeeded=False, status_code=401, body="bad key")])

    with pytest.raises(TranscriptionError):
        _runner(documents, objects, client, settings).run(_job())


def test_language_hint_from_document_wins(documents, objects, settings, fake_audio):
    documents.documents[(OWNER, JOB)] = {"languageHint": "nl", "title": "Standup"}
    client = FakeClient()
    _runner(documents, objects, client, settings).run(_job(language_hint="en"))

    assert {language for _, language in client.calls} == {"nl"}
    assert documents.get(OWNER, JOB)["title"] == "Standup"


def test_default_language_when_no_hint(documents, objects, fake_audio, tmp_path):
    settings = Settings(api_key="sk-test", work_dir=str(tmp_path), default_language="de")
    client = FakeClient()
    _runner(documents, objects, client, settings).run(_job())

    assert {language for _, language in client.calls} == {"de"}


def test_process_upload_records_source_path(documents, objects, settings, fake_audio):
    job = _job(language_hint="fr")
    _runner(documents, objects, FakeClient(), settings).process_upload(job)

    doc = documents.get(OWNER, JOB)
    assert doc["sourcePath"] == job.source_path
    assert doc["languageHint"] == "fr"
    assert doc["status"] == "completed"


def test_rerun_after_error_starts_a_new_attempt(documents, objects, settings, fake_audio):
    job = _job()
    runner = _runner(documents, objects, FakeClient([TranscriptionResult(succeeded=False, status_code=500)]), settings)
    with pytest.raises(TranscriptionError):
        runner.run(job)

    _runner(documents, objects, FakeClient(), settings).run(job)

    assert job.status is JobStatus.COMPLETED
    assert job.error_message is None
    assert documents.get(OWNER, JOB)["errorMessage"] is None


def test_failed_rerun_clears_previous_transcript(documents, objects, settings, fake_audio):
    _runner(documents, objects, FakeClient(), settings).run(_job())
    assert documents.get(OWNER, JOB)["chunkCount"] == 3

    failing = FakeClient([TranscriptionResult(succeeded=False, status_code=429, body="rate limited")])
    with pytest.raises(TranscriptionError):
        _runner(documents, objects, failing, settings).run(_job())

    doc = documents.get(OWNER, JOB)
    assert doc["status"] == "error"
    assert doc["transcriptText"] is None
    assert doc["durationSeconds"] is None
    assert doc["chunkCount"] == 0


def test_sliver_window_keeps_its_line(documents, objects, fake_audio, monkeypatch, tmp_path):
    settings = Settings(api_key="sk-test", work_dir=str(tmp_path), overlap_seconds=0)
    fake_audio["duration"] = 121

    def extract(src, start, length, dest):
        fake_audio["segments"].append((start, length))
        if start >= 120:
            return None
        with open(dest, "wb") as fh:
            fh.write(b"seg")
        return dest

    monkeypatch.setattr(audio_processor, "extract_segment", extract)
    client = FakeClient()
    job = _runner(documents, objects, client, settings).run(_job())

    assert fake_audio["segments"] == [(0, 120), (120, 1)]
    assert len(client.calls) == 1
    assert job.status is JobStatus.COMPLETED
    doc = documents.get(OWNER, JOB)
    assert doc["transcriptText"] == "chunk 0\n"
    assert len(doc["transcriptText"].split("\n")) == doc["chunkCount"] == 2


class TestJobFromUploadEvent:
    def test_metadata_identifies_job(self, settings):
        event = {
            "bucket": "b",
            "name": "transcriptions/u1/ignored.webm",
            "metadata": {"ownerId": "owner", "jobId": "job", "language": "nl"},
        }
        job = tasks.job_from_upload_event(event, settings)

        assert (job.owner_id, job.job_id, job.language_hint) == ("owner", "job", "nl")
        assert job.source_path == "transcriptions/u1/ignored.webm"
        assert job.status is JobStatus.QUEUED

    def test_recorder_metadata_keys(self, settings):
        event = {"name": "transcriptions/x/y.webm", "metadata": {"uid": "u9", "transcriptionDocId": "d3"}}
        job = tasks.job_from_upload_event(event, settings)

        assert (job.owner_id, job.job_id) == ("u9", "d3")

    def test_falls_back_to_object_path(self, settings):
        job = tasks.job_from_upload_event({"name": "transcriptions/u1/abc123.webm"}, settings)

        assert (job.owner_id, job.job_id) == ("u1", "abc123")
        assert job.language_hint is None

    @pytest.mark.parametrize("name", ["transcriptions/lonely.webm", "transcriptions/", ""])
    def test_missing_identity_is_ignored(self, settings, name):
        assert tasks.job_from_upload_event({"name": name, "metadata": {}}, settings) is None

    def test_outside_prefix_is_ignored(self, settings):
        event = {"name": "avatars/u1/me.png", "metadata": {"ownerId": "u1", "jobId": "j"}}
        assert tasks.job_from_upload_event(event, settings) is None
