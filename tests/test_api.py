import asyncio
import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from vidgen.main import app
from vidgen.models import ClipStatus, Job, JobStatus, JobType
from vidgen.schemas.progress import EventType, ProgressEvent
from vidgen.workers.queue import QueueManager


class RecordingQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, func, *args, **kwargs):
        self.enqueued.append((func.__name__, args, kwargs))


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def client(database, store, channel, inference, storage, settings, queue, monkeypatch):
    manager = QueueManager(redis_manager=None, store=store, settings=settings)
    monkeypatch.setattr(manager, "get_queue", lambda name: queue)
    monkeypatch.setattr(manager, "_cancel_rq_job", lambda job_id: None)
    monkeypatch.setattr(settings, "PROGRESS_CLOSE_DELAY", 0)

    app.state.database = database
    app.state.store = store
    app.state.queue_manager = manager
    app.state.channel = channel
    app.state.inference = inference
    app.state.storage = storage
    # no lifespan: state is wired above
    return TestClient(app)


def sse_events(response):
    return [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]


def test_project_crud(client):
    response = client.post("/api/projects", json={"display_name": "My Cool Project!", "resolution": "640x360"})
    assert response.status_code == 201
    project = response.json()
    assert project["project_name"] == "myCoolProject"

    assert client.get(f"/api/projects/{project['id']}").json()["resolution"] == "640x360"
    assert [p["id"] for p in client.get("/api/projects").json()] == [project["id"]]

    assert client.delete(f"/api/projects/{project['id']}").json() == {"deleted": project["id"]}
    assert client.get(f"/api/projects/{project['id']}").status_code == 404


def test_project_resolution_is_validated(client):
    response = client.post("/api/projects", json={"display_name": "x", "resolution": "wide"})
    assert response.status_code == 422


def test_generate_enqueues_pending_clip(client, project, queue, store):
    response = client.post(
        "/api/processing/generate",
        json={"project_id": project.id, "prompt": "a fox in the snow", "seed": 42},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "pending"
    clip = store.get_clip(body["clip_id"])
    assert (clip.status, clip.seed_value) == (ClipStatus.PENDING, 42)
    assert queue.enqueued[0][0] == "run_generate_task"
    assert queue.enqueued[0][1] == (body["job_id"],)


@pytest.mark.parametrize(
    "payload",
    [
        {"prompt": "a fox", "video_model": "svd"},
        {"prompt": "a fox", "video_model": "sora"},
        {"prompt": "a fox", "generation_type": "imageToVideo"},
        {"prompt": "  "},
    ],
)
def test_generate_rejects_invalid_requests(client, project, queue, payload):
    response = client.post("/api/processing/generate", json={"project_id": project.id, **payload})

    assert response.status_code == 400
    assert "message" in response.json()["detail"]
    assert queue.enqueued == []


def test_long_video_with_bad_dimensions_is_rejected_up_front(client, project, queue, database):
    response = client.post(
        "/api/processing/long-video",
        json={"project_id": project.id, "prompt": "a ship at sea", "width": 100, "height": 360, "total_segments": 2},
    )

    assert response.status_code == 400
    assert "multiple of 8" in response.json()["detail"]["message"]
    assert queue.enqueued == []
    db = database.session()
    try:
        assert db.query(Job).count() == 0
    finally:
        db.close()


def test_generate_for_unknown_project(client, queue):
    response = client.post("/api/processing/generate", json={"project_id": "missing", "prompt": "a fox"})
    assert response.status_code == 404


def test_post_processing_endpoints(client, project, make_clip, queue):
    clip = make_clip(order_index=1)
    requests = [
        ("/api/processing/merge", {"clip_ids": [clip.id], "transition": "fade"}),
        ("/api/processing/upscale", {"clip_id": clip.id, "scale": 4}),
        ("/api/processing/enhance", {"clip_id": clip.id}),
        ("/api/processing/interpolate", {"clip_id": clip.id, "target_fps": 24, "method": "rife"}),
        ("/api/processing/export", {"clip_ids": [clip.id], "encode": {"codec": "vp9", "quality": "high"}}),
        ("/api/processing/long-video", {"prompt": "a long road", "total_segments": 2}),
    ]
    for path, payload in requests:
        response = client.post(path, json={"project_id": project.id, **payload})
        assert response.status_code == 202, (path, response.text)

    assert [name for name, _, _ in queue.enqueued] == [
        "run_merge_task",
        "run_upscale_task",
        "run_enhance_task",
        "run_interpolate_task",
        "run_export_task",
        "run_long_video_task",
    ]


def test_upscale_needs_an_input(client, project):
    response = client.post("/api/processing/upscale", json={"project_id": project.id, "scale": 2})
    assert response.status_code == 422


def test_job_status_logs_and_cancel(client, project, store):
    job_id = store.create_job(project.id, JobType.MERGE)
    store.add_log(job_id, "queued")

    job = client.get(f"/api/jobs/{job_id}").json()
    assert (job["status"], job["progress_percent"]) == (JobStatus.PENDING, 0)
    assert [log["message"] for log in client.get(f"/api/jobs/{job_id}/logs").json()] == ["queued"]
    assert client.get("/api/jobs", params={"project_id": project.id, "job_type": "merge"}).json()[0]["id"] == job_id

    response = client.post(f"/api/jobs/{job_id}/cancel")
    assert response.json() == {"job_id": job_id, "status": "cancelled", "previous_status": "pending"}

    assert client.post(f"/api/jobs/{job_id}/cancel").status_code == 400
    assert client.post("/api/jobs/missing/cancel").status_code == 404
    assert client.get("/api/jobs/missing").status_code == 404


def test_clip_listing_and_delete(client, project, make_clip, store):
    first = make_clip(order_index=2)
    make_clip(order_index=1)
    busy = make_clip(order_index=3, status=ClipStatus.PROCESSING)

    listing = client.get(f"/api/projects/{project.id}/clips").json()
    assert listing["total"] == 3
    assert [clip["order_index"] for clip in listing["clips"]] == [1, 2, 3]

    assert client.delete(f"/api/clips/{busy.id}").status_code == 409
    response = client.delete(f"/api/clips/{first.id}")
    assert response.json()["files_removed"] == [first.file_path]
    assert client.get(f"/api/clips/{first.id}").status_code == 404
    assert client.delete(f"/api/clips/{first.id}").status_code == 404
    assert not Path(first.file_path).exists()


def test_progress_stream_relays_until_terminal(client, project, store, channel):
    job_id = store.create_job(project.id, JobType.MERGE)
    store.mark_processing(job_id)
    queue = channel.queues.setdefault(job_id, asyncio.Queue())
    queue.put_nowait(ProgressEvent(type=EventType.PROGRESS, percent=40, message="Merging").to_json())
    queue.put_nowait(ProgressEvent(type=EventType.COMPLETED, percent=100, data={"output_path": "/x.mp4"}).to_json())

    response = client.get(f"/api/events/jobs/{job_id}/progress")

    assert response.headers["content-type"].startswith("text/event-stream")
    events = sse_events(response)
    assert events[0] == {"type": "connected", "jobId": job_id}
    assert [event["type"] for event in events[1:]] == ["progress", "completed"]
    assert events[-1]["data"] == {"output_path": "/x.mp4"}


def test_progress_stream_catches_event_published_during_status_check(client, project, store, channel, monkeypatch):
    job_id = store.create_job(project.id, JobType.MERGE)
    store.mark_processing(job_id)
    lookups = []
    get_job = store.get_job

    def get_job_then_finish(jid):
        job = get_job(jid)
        lookups.append(jid)
        # the worker publishes its terminal event right after the stream reads the status
        if len(lookups) == 2:
            channel.deliver(jid, ProgressEvent(type=EventType.COMPLETED, percent=100, message="Done").to_json())
        return job

    monkeypatch.setattr(store, "get_job", get_job_then_finish)

    events = sse_events(client.get(f"/api/events/jobs/{job_id}/progress"))

    assert [event["type"] for event in events] == ["connected", "completed"]
    assert events[-1]["message"] == "Done"


def test_progress_stream_for_finished_job(client, project, store):
    job_id = store.create_job(project.id, JobType.MERGE)
    store.mark_processing(job_id)
    store.mark_failed(job_id, "ffmpeg exited with code 1")

    events = sse_events(client.get(f"/api/events/jobs/{job_id}/progress"))

    assert [event["type"] for event in events] == ["connected", "error"]
    assert events[1]["message"] == "ffmpeg exited with code 1"


def test_progress_stream_unknown_job(client):
    assert client.get("/api/events/jobs/missing/progress").status_code == 404


def test_models_and_preview(client):
    models = client.get("/api/system/models").json()["models"]
    assert {model["model_id"] for model in models} >= {"animateDiff", "svd", "wan21"}

    preview = client.post(
        "/api/system/models/preview-resolution",
        json={"video_model": "animateDiff", "width": 1920, "height": 1080, "frame_count": 16},
    ).json()
    assert preview["was_scaled"] is True
    assert preview["width"] * preview["height"] * 16 <= 512 * 512 * 24


def test_free_memory(client, inference):
    assert client.post("/api/system/free-memory").status_code == 200
    assert inference.released == 1


def test_files_are_served_from_storage(client, storage):
    video = storage.write_bytes(storage.base_path / "clips" / "demo" / "a.mp4", b"video")

    response = client.get("/files/clips/demo/a.mp4")
    assert response.status_code == 200
    assert response.content == b"video"
    assert response.headers["content-type"] == "video/mp4"
    assert client.get("/files/../secrets.txt").status_code == 404
    assert video.exists()
