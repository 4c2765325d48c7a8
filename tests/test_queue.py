import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from vidgen.core.exceptions import ServiceUnavailableError, ValidationError
from vidgen.core.redis import Queues
from vidgen.models import ClipStatus, Job, JobStatus, JobType
from vidgen.workers.queue import QueueManager


class FakeQueue:
    def __init__(self, name, fail=False):
        self.name = name
        self.fail = fail
        self.enqueued = []

    def enqueue(self, func, *args, **kwargs):
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.enqueued.append((func, args, kwargs))


@pytest.fixture
def queues():
    return {}


@pytest.fixture
def manager(store, settings, queues, monkeypatch):
    qm = QueueManager(redis_manager=None, store=store, settings=settings)
    monkeypatch.setattr(qm, "get_queue", lambda name: queues.setdefault(name, FakeQueue(name)))
    qm.cancelled_rq_jobs = []
    monkeypatch.setattr(qm, "_cancel_rq_job", qm.cancelled_rq_jobs.append)
    return qm


def test_enqueue_generate_creates_clip_and_job(manager, store, queues, project, settings):
    result = manager.enqueue_generate(
        project.id,
        {"prompt": "a fox in the snow", "steps_count": 20, "cfg_scale": 7.5},
        {"generation_type": "textToVideo", "video_model": "animateDiff"},
    )

    job = store.get_job(result["job_id"])
    clip = store.get_clip(result["clip_id"])
    assert job.status == JobStatus.PENDING
    assert job.input_clip_ids == [clip.id]
    assert (clip.status, clip.order_index, clip.clip_name) == (ClipStatus.PENDING, 1, "Clip 1")

    func, args, kwargs = queues[Queues.GENERATE].enqueued[0]
    assert func.__name__ == "run_generate_task"
    assert args == (job.id,)
    assert kwargs["job_id"] == job.id
    assert kwargs["job_timeout"] == settings.JOB_TIMEOUT_GENERATE
    assert "retry" not in kwargs
    assert kwargs["meta"]["type"] == JobType.GENERATE


@pytest.mark.parametrize(
    "clip,options",
    [
        ({"prompt": ""}, {}),
        ({"prompt": "a fox"}, {"generation_type": "textToVideo", "video_model": "svd"}),
        ({"prompt": "a fox"}, {"generation_type": "imageToVideo"}),
        ({"prompt": "a fox", "steps_count": 0}, {}),
    ],
)
def test_invalid_generate_creates_nothing(manager, store, queues, project, clip, options):
    with pytest.raises(ValidationError):
        manager.enqueue_generate(project.id, clip, options)
    assert queues == {}
    assert store.next_order_index(project.id) == 1


def test_each_type_uses_its_queue(manager, queues, project, make_clip, settings):
    clip = make_clip(order_index=1)
    manager.enqueue_merge(project.id, [clip.id], "fade", 0.5)
    manager.enqueue_upscale(project.id, {"clip_id": clip.id, "scale": 4})
    manager.enqueue_enhance(project.id, clip.id)
    manager.enqueue_interpolate(project.id, {"clip_id": clip.id, "target_fps": 24})
    manager.enqueue_export(project.id, [clip.id], {"encode": {"codec": "vp9"}})
    manager.enqueue_long_video(project.id, {"prompt": "a long road"})

    assert {name: len(q.enqueued) for name, q in queues.items()} == {
        Queues.MERGE: 1,
        Queues.UPSCALE: 2,
        Queues.INTERPOLATE: 1,
        Queues.EXPORT: 1,
        Queues.LONG_VIDEO: 1,
    }
    upscale_tasks = [func.__name__ for func, _, _ in queues[Queues.UPSCALE].enqueued]
    assert upscale_tasks == ["run_upscale_task", "run_enhance_task"]
    assert queues[Queues.LONG_VIDEO].enqueued[0][2]["job_timeout"] == settings.JOB_TIMEOUT_LONG_VIDEO


@pytest.mark.parametrize(
    "call",
    [
        lambda qm, pid, cid: qm.enqueue_merge(pid, [], "fade"),
        lambda qm, pid, cid: qm.enqueue_merge(pid, [cid], "spin"),
        lambda qm, pid, cid: qm.enqueue_upscale(pid, {"clip_id": cid, "scale": 3}),
        lambda qm, pid, cid: qm.enqueue_upscale(pid, {"scale": 2}),
        lambda qm, pid, cid: qm.enqueue_interpolate(pid, {"clip_id": cid, "target_fps": 0}),
        lambda qm, pid, cid: qm.enqueue_export(pid, [cid], {"encode": {"quality": "ultra"}}),
        lambda qm, pid, cid: qm.enqueue_long_video(pid, {"prompt": " "}),
        lambda qm, pid, cid: qm.enqueue_long_video(pid, {"prompt": "a long road", "width": 100}),
        lambda qm, pid, cid: qm.enqueue_long_video(pid, {"prompt": "a long road", "target_duration": -5}),
    ],
)
def test_invalid_requests(manager, queues, project, make_clip, call):
    clip = make_clip(order_index=1)
    with pytest.raises(ValidationError):
        call(manager, project.id, clip.id)
    assert queues == {}


def test_enhance_requires_completed_clip(manager, project, make_clip):
    clip = make_clip(order_index=1, status=ClipStatus.PROCESSING)
    with pytest.raises(ValidationError):
        manager.enqueue_enhance(project.id, clip.id)


def test_broker_failure_fails_the_job(manager, store, queues, project, make_clip, database):
    clip = make_clip(order_index=1)
    queues[Queues.MERGE] = FakeQueue(Queues.MERGE, fail=True)

    with pytest.raises(ServiceUnavailableError):
        manager.enqueue_merge(project.id, [clip.id])

    jobs = store_jobs(database, project.id)
    assert [job.status for job in jobs] == [JobStatus.FAILED]
    assert jobs[0].error_message.startswith("Queue unavailable")


def test_cancel_pending_generate(manager, store, project):
    result = manager.enqueue_generate(project.id, {"prompt": "a fox"}, {})

    response = manager.cancel(result["job_id"])

    assert response == {"job_id": result["job_id"], "status": JobStatus.CANCELLED, "previous_status": JobStatus.PENDING}
    assert manager.cancelled_rq_jobs == [result["job_id"]]
    assert store.get_clips([result["clip_id"]], completed_only=False) == []


def test_cancel_processing_keeps_rq_job(manager, store, project):
    job_id = manager.enqueue_long_video(project.id, {"prompt": "a long road"})
    store.mark_processing(job_id)

    response = manager.cancel(job_id)

    assert response["previous_status"] == JobStatus.PROCESSING
    assert manager.cancelled_rq_jobs == []
    assert store.is_cancelled(job_id)


def test_cancel_finished_job_is_rejected(manager, store, project, make_clip):
    clip = make_clip(order_index=1)
    job_id = manager.enqueue_merge(project.id, [clip.id])
    store.mark_processing(job_id)
    store.mark_failed(job_id, "boom")

    with pytest.raises(ValidationError):
        manager.cancel(job_id)
    assert store.get_status(job_id) == JobStatus.FAILED


def store_jobs(database, project_id):
    db = database.session()
    try:
        return db.query(Job).filter(Job.project_id == project_id).all()
    finally:
        db.close()
