import pytest

from fakes import FakeDocumentStore, FakeObjectStore
from transcription_pipeline.config import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(api_key="sk-test", work_dir=str(tmp_path))


@pytest.fixture
def documents():
    return FakeDocumentStore()


@pytest.fixture
def objects():
    return FakeObjectStore()
