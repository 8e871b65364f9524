import asyncio
import json
import time

import pytest
from fastapi.testclient import TestClient

import main
from config import SettingsStore
from database import HistoryDB
from models import JobStatus


@pytest.fixture
def app_pipeline(pipeline_factory, tmp_path, monkeypatch):
    pipeline = pipeline_factory()
    db = HistoryDB(str(tmp_path / "history.db"))
    pipeline.executor.history = db
    monkeypatch.delenv("VOICE2DOCX_TEST_KEY", raising=False)
    monkeypatch.setattr(main, "repository", pipeline.repository)
    monkeypatch.setattr(main, "executor", pipeline.executor)
    monkeypatch.setattr(main, "runner", pipeline.runner)
    monkeypatch.setattr(main, "db", db)
    monkeypatch.setattr(main, "settings", SettingsStore(tmp_path / "settings.json", env_var="VOICE2DOCX_TEST_KEY"))
    monkeypatch.setattr(main.config, "UPLOADS_DIR", tmp_path / "uploads")
    pipeline.db = db
    return pipeline


@pytest.fixture
def client(app_pipeline):
    with TestClient(main.app) as test_client:
        yield test_client


def _wait_until_settled(client, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        jobs = client.get("/api/jobs").json()
        if jobs and all(j["status"] in ("complete", "error") for j in jobs):
            return jobs
        time.sleep(0.02)
    raise AssertionError(f"queue did not settle: {jobs}")


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    health = client.get("/health").json()
    assert health["queue"]["total_jobs"] == 0
    assert health["services"]["assemblyai_key"] is False


def test_add_jobs_runs_queue_to_completion(client, app_pipeline):
    paths = [str(app_pipeline.source_dir / name) for name in ("a.mp4", "b.wav")]
    for path in paths:
        open(path, "wb").close()

    response = client.post("/api/jobs", json={
        "paths": paths,
        "options": {"speaker_count": 2, "include_summary": True},
    })

    assert response.status_code == 200
    body = response.json()
    assert body["queue_started"] is True
    assert [j["filename"] for j in body["jobs"]] == ["a.mp4", "b.wav"]
    assert all(j["options"]["speaker_count"] == 2 for j in body["jobs"])

    jobs = _wait_until_settled(client)
    assert [j["status"] for j in jobs] == ["complete", "complete"]
    assert all(j["history_id"] for j in jobs)

    history = client.get("/api/history").json()
    assert len(history) == 2
    entry = client.get(f"/api/history/{jobs[0]['history_id']}").json()
    assert entry["filename"] == "a.mp4"
    assert client.get("/api/stats").json()["statistics"]["total_transcripts"] == 2


def test_add_jobs_validation(client, app_pipeline):
    assert client.post("/api/jobs", json={"paths": []}).status_code == 400

    notes = app_pipeline.source_dir / "notes.txt"
    notes.write_text("x")
    assert client.post("/api/jobs", json={"paths": [str(notes)]}).status_code == 400

    missing = client.post("/api/jobs", json={"paths": [str(app_pipeline.source_dir / "ghost.mp3")]})
    assert missing.status_code == 400
    assert "does not exist" in missing.json()["detail"]

    bad_options = client.post("/api/jobs", json={"paths": [], "options": {"speaker_count": 50}})
    assert bad_options.status_code == 422
    assert app_pipeline.repository.list() == []


def test_upload_saves_file_and_enqueues(client, app_pipeline, tmp_path):
    response = client.post(
        "/api/upload",
        files={"audio": ("my talk.mp3", b"bytes", "audio/mpeg")},
        data={"options": json.dumps({"conversation_type": "interview"})},
    )

    assert response.status_code == 200
    [job] = response.json()["jobs"]
    assert job["filename"] == "my talk.mp3"
    assert job["options"]["conversation_type"] == "interview"
    assert job["source_path"].startswith(str(tmp_path / "uploads"))
    assert job["source_path"].endswith("_my_talk.mp3")

    [done] = _wait_until_settled(client)
    assert done["status"] == "complete"
    assert done["output_path"] == str(app_pipeline.output_dir / "my talk.docx")
    [entry] = client.get("/api/history").json()
    assert entry["filename"] == "my talk.mp3"


def test_upload_rejects_bad_type_and_options(client):
    bad_type = client.post("/api/upload", files={"audio": ("doc.pdf", b"x", "application/pdf")})
    assert bad_type.status_code == 400
    bad_options = client.post(
        "/api/upload",
        files={"audio": ("a.mp3", b"x", "audio/mpeg")},
        data={"options": json.dumps({"speaker_count": 0})},
    )
    assert bad_options.status_code == 400


def test_missing_key_keeps_jobs_queued(client, app_pipeline):
    app_pipeline.api_key = None
    [job] = app_pipeline.make_jobs("a.mp4")

    body = client.post("/api/jobs", json={"paths": [job.source_path]}).json()

    assert body["queue_started"] is False
    assert "API key" in body["warning"]
    assert client.get("/api/jobs").json()[0]["status"] == "queued"
    assert client.post("/api/queue/start").status_code == 412

    app_pipeline.api_key = "restored"
    started = client.post("/api/queue/start").json()
    assert started["started"] is True
    assert _wait_until_settled(client)[0]["status"] == "complete"


def test_get_delete_and_clear(client, app_pipeline):
    a, b = app_pipeline.repository.append(app_pipeline.make_jobs("a.mp4", "b.mp3"))
    app_pipeline.repository.patch(a.id, status=JobStatus.COMPLETE, progress=100)
    app_pipeline.repository.patch(b.id, status=JobStatus.ERROR, error="Upload failed")

    assert client.get(f"/api/jobs/{a.id}").json()["status"] == "complete"
    assert client.get("/api/jobs/unknown").status_code == 404

    assert client.post("/api/jobs/clear-completed").json() == {"removed": [a.id]}
    assert [j["id"] for j in client.get("/api/jobs").json()] == [b.id]

    assert client.delete(f"/api/jobs/{b.id}").status_code == 200
    assert client.delete(f"/api/jobs/{b.id}").status_code == 404


def test_retry_endpoint(client, app_pipeline):
    a, b = app_pipeline.repository.append(app_pipeline.make_jobs("a.mp4", "b.mp3"))
    app_pipeline.repository.patch(a.id, status=JobStatus.ERROR, error="Upload failed")

    assert client.post("/api/jobs/missing/retry").status_code == 404
    assert client.post(f"/api/jobs/{b.id}/retry").status_code == 409

    response = client.post(f"/api/jobs/{a.id}/retry", json={"options": {"analyze_sentiment": True}})

    assert response.status_code == 200
    body = response.json()
    assert body["job"]["status"] == "queued"
    assert body["job"]["error"] is None
    assert body["job"]["options"]["analyze_sentiment"] is True
    assert body["queue_started"] is True

    jobs = _wait_until_settled(client)
    assert [j["filename"] for j in jobs] == ["b.mp3", "a.mp4"]
    assert all(j["status"] == "complete" for j in jobs)


def test_api_key_settings(client):
    assert client.get("/api/settings/api-key").json() == {"configured": False, "length": 0}
    assert client.put("/api/settings/api-key", json={"api_key": "   "}).status_code == 400

    assert client.put("/api/settings/api-key", json={"api_key": "abcdef"}).json() == {"configured": True}
    assert client.get("/api/settings/api-key").json() == {"configured": True, "length": 6}

    assert client.delete("/api/settings/api-key").json() == {"configured": False}


def test_history_not_found(client):
    assert client.get("/api/history/missing").status_code == 404
    assert client.delete("/api/history/missing").status_code == 404


class ConnectedRequest:
    """Клиент SSE, который не отключается сам"""

    async def is_disconnected(self):
        return False


def _observer_count(repository):
    return len(repository._observers)


def test_events_stream_snapshot_then_changes_and_unsubscribes(app_pipeline, monkeypatch):
    monkeypatch.setattr(main, "SSE_KEEPALIVE_SECONDS", 1)
    repository = app_pipeline.repository
    [existing] = repository.append(app_pipeline.make_jobs("a.mp4"))

    async def go():
        response = await main.job_events(ConnectedRequest())
        frames = response.body_iterator
        snapshot = await frames.__anext__()
        subscribed = _observer_count(repository)
        [added] = repository.append(app_pipeline.make_jobs("b.mp3"))
        change = await frames.__anext__()
        await frames.aclose()
        return snapshot, change, added, subscribed

    snapshot, change, added, subscribed = asyncio.run(go())

    assert snapshot.startswith("data: ")
    body = json.loads(snapshot[len("data: "):])
    assert body["event"] == "snapshot"
    assert [j["id"] for j in body["jobs"]] == [existing.id]
    update = json.loads(change[len("data: "):])
    assert update["event"] == "added"
    assert update["job"]["id"] == added.id
    assert subscribed == 1
    assert _observer_count(repository) == 0


def test_events_stream_never_started_leaves_no_observer(app_pipeline):
    repository = app_pipeline.repository

    async def go():
        for _ in range(3):
            await main.job_events(ConnectedRequest())

    asyncio.run(go())

    assert _observer_count(repository) == 0
