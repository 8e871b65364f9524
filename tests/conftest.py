"""Shared fixtures: fake gateways and a wired pipeline that never touches the network or ffmpeg."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest

# Must happen before config is imported anywhere
_DATA_DIR = tempfile.mkdtemp(prefix="voice2docx-tests-")
os.environ["VOICE2DOCX_DATA_DIR"] = _DATA_DIR
os.environ["HISTORY_DB_PATH"] = os.path.join(_DATA_DIR, "history.db")
os.environ["SETTINGS_FILE"] = os.path.join(_DATA_DIR, "settings.json")
os.environ["UPLOADS_DIR"] = os.path.join(_DATA_DIR, "uploads")
os.environ["ASSEMBLYAI_API_KEY"] = ""

from models import Job, PollResult  # noqa: E402
from pipeline.errors import ConversionError, PersistenceError, UploadError  # noqa: E402
from pipeline.executor import PipelineExecutor  # noqa: E402
from pipeline.poller import Poller  # noqa: E402
from pipeline.repository import JobRepository  # noqa: E402
from pipeline.runner import QueueRunner  # noqa: E402
from services.audio_converter import ConversionResult, cleanup_temp_dir  # noqa: E402

COMPLETED_PAYLOAD = {
    "id": "tr-1",
    "status": "completed",
    "text": "Hello there. Hi!",
    "utterances": [
        {"speaker": "A", "text": "Hello there.", "start": 0, "end": 1200},
        {"speaker": "B", "text": "Hi!", "start": 1300, "end": 1800},
    ],
}


class FakeConverter:
    """Creates a real scratch dir per call so cleanup can be checked on disk."""

    def __init__(self, work_dir: Path, fail_for=()):
        self.work_dir = work_dir
        self.fail_for = set(fail_for)
        self.calls = []
        self.created = []

    async def __call__(self, source_path: str) -> ConversionResult:
        self.calls.append(source_path)
        name = Path(source_path).name
        temp_dir = self.work_dir / f"conv-{len(self.calls)}-{name}"
        temp_dir.mkdir(parents=True)
        self.created.append(str(temp_dir))
        if name in self.fail_for:
            raise ConversionError("Conversion failed: ffmpeg exited with code 1", temp_dir=str(temp_dir))
        output = temp_dir / f"{Path(name).stem}.m4a"
        output.write_bytes(b"audio")
        return ConversionResult(output_path=str(output), temp_dir=str(temp_dir))


class RecordingCleanup:
    def __init__(self):
        self.calls = []

    def __call__(self, temp_dir: str) -> None:
        self.calls.append(temp_dir)
        cleanup_temp_dir(temp_dir)


class FakeGateway:
    """Upload/submit/poll_once double. Every transcript replays ``poll_statuses``, then completes."""

    def __init__(self, fail_upload_for=(), poll_statuses=None, payload=None):
        self.fail_upload_for = set(fail_upload_for)
        self.poll_statuses = list(poll_statuses or [])
        self.payload = payload or COMPLETED_PAYLOAD
        self.calls = []
        self.submitted_options = []
        self._polls = {}

    async def upload(self, audio_path: str, api_key: str) -> str:
        self.calls.append(("upload", Path(audio_path).stem))
        if Path(audio_path).stem in self.fail_upload_for:
            raise UploadError("Upload failed with status 500: boom")
        return f"https://cdn.example/{Path(audio_path).name}"

    async def submit(self, upload_url: str, api_key: str, options) -> str:
        self.calls.append(("submit", upload_url))
        self.submitted_options.append(options)
        return f"tr-{len(self.submitted_options)}"

    async def poll_once(self, transcript_id: str, api_key: str) -> PollResult:
        index = self._polls.get(transcript_id, 0)
        self._polls[transcript_id] = index + 1
        self.calls.append(("poll", transcript_id))
        if index < len(self.poll_statuses):
            status = self.poll_statuses[index]
            if status == "error":
                return PollResult(status="failed", vendor_status="error", message="Audio file is empty")
            if status != "completed":
                return PollResult(status="pending", vendor_status=status)
        return PollResult(status="completed", vendor_status="completed", payload=self.payload)


class FakeHistory:
    def __init__(self, fail=False):
        self.fail = fail
        self.entries = []

    def save_entry(self, entry) -> str:
        if self.fail:
            raise PersistenceError("disk full")
        self.entries.append(entry)
        return entry.id


class Pipeline:
    """Bundle of a repository, executor and runner wired with fakes."""

    def __init__(self, tmp_path: Path, *, gateway=None, converter=None, history=None, poller=None, api_key="test-key"):
        self.repository = JobRepository()
        self.gateway = gateway or FakeGateway()
        self.converter = converter or FakeConverter(tmp_path / "work")
        self.cleanup = RecordingCleanup()
        self.history = history if history is not None else FakeHistory()
        self.output_dir = tmp_path / "out"
        self.poller = poller or Poller(self.gateway, initial_delay=0, interval=0, timeout=5)
        self.executor = PipelineExecutor(
            self.repository,
            self.gateway,
            self.poller,
            convert=self.converter,
            cleanup=self.cleanup,
            history=self.history,
            output_dir=str(self.output_dir),
        )
        self.api_key = api_key
        self.runner = QueueRunner(self.repository, self.executor, credential=lambda: self.api_key)
        self.source_dir = tmp_path / "media"
        self.source_dir.mkdir(parents=True, exist_ok=True)

    def make_jobs(self, *names, options=None):
        jobs = []
        for name in names:
            path = self.source_dir / name
            path.write_bytes(b"media")
            jobs.append(Job.create(str(path), options))
        return jobs


@pytest.fixture
def pipeline_factory(tmp_path):
    def factory(**kwargs):
        return Pipeline(tmp_path, **kwargs)
    return factory


@pytest.fixture
def pipeline(pipeline_factory):
    return pipeline_factory()


@pytest.fixture
def fakes():
    """Access to the fake classes without importing conftest."""
    class Namespace:
        Converter = FakeConverter
        Gateway = FakeGateway
        History = FakeHistory
        completed_payload = COMPLETED_PAYLOAD
    return Namespace
