"""Shared fixtures: in-memory database plus fake broker, inference service and media tool."""

import asyncio
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from vidgen.core.config import get_settings
from vidgen.core.database import Database
from vidgen.core.exceptions import ExecutionError, FileSystemError, ServiceUnavailableError
from vidgen.models import Clip, ClipStatus, Project
from vidgen.schemas.progress import ProgressEvent
from vidgen.services.inference_client import NodeTransition, StepProgress
from vidgen.services.job_store import JobStore
from vidgen.services.media_tool import VideoInfo
from vidgen.services.storage import StorageService
from vidgen.workers.context import WorkerContext


class FakeChannel:
    """Records published events and feeds subscribers from an asyncio queue."""

    def __init__(self):
        self.events = []
        self.queues = {}

    async def publish(self, job_id, event: ProgressEvent):
        self.events.append((job_id, event))
        if job_id in self.queues:
            await self.queues[job_id].put(event.to_json())

    @asynccontextmanager
    async def subscribe(self, job_id):
        queue = self.queues.setdefault(job_id, asyncio.Queue())

        async def messages():
            while True:
                yield await queue.get()

        try:
            yield messages()
        finally:
            self.queues.pop(job_id, None)

    def deliver(self, job_id, payload):
        """Hand a raw payload to a live subscriber. Dropped when nobody listens."""
        if job_id in self.queues:
            self.queues[job_id].put_nowait(payload)

    def for_job(self, job_id):
        return [event for jid, event in self.events if jid == job_id]


class FakeInference:
    """
    Stands in for the inference service.

    Graphs ending in ``SaveImage`` return ``images_per_call`` images, everything
    else returns one video.
    """

    def __init__(self):
        self.available = True
        self.executed = []
        self.uploads = []
        self.fetched = []
        self.released = 0
        self.fail_on_call = None
        self.on_execute = None
        self.images_per_call = 1

    async def is_available(self):
        return self.available

    async def ensure_available(self):
        if not self.available:
            raise ServiceUnavailableError("Inference service is not available", retryable=True)

    async def release_memory(self):
        self.released += 1

    async def upload_image(self, data, filename, subfolder="", overwrite=True):
        self.uploads.append((filename, data))
        return f"{subfolder}/{filename}" if subfolder else filename

    async def execute(self, graph, on_progress=None, timeout=None):
        self.executed.append(graph)
        call = len(self.executed)
        if self.on_execute is not None:
            self.on_execute(call)
        if self.fail_on_call == call:
            raise ExecutionError(f"Node failed on call {call}")
        if on_progress is not None:
            await on_progress(NodeTransition("3"))
            await on_progress(StepProgress(5, 10, "3"))
            await on_progress(StepProgress(10, 10, "3"))
        if any(node["class_type"] == "SaveImage" for node in graph.values()):
            images = [
                {"filename": f"img_{call:04d}_{i:02d}.png", "subfolder": "", "type": "output"}
                for i in range(self.images_per_call)
            ]
            return {"9": {"images": images}}
        return {"9": {"gifs": [{"filename": f"video_{call:04d}.mp4", "subfolder": "", "type": "output"}]}}

    async def fetch_artifact(self, filename, subfolder="", kind="output"):
        self.fetched.append(filename)
        return f"bytes:{filename}".encode()


class FakeMedia:
    """Records every call and writes a small placeholder for each output."""

    def __init__(self):
        self.calls = []
        self.fail_on = set()
        self.info = VideoInfo(duration=2.0, fps=8.0, width=512, height=512, codec="h264", bitrate=0, frame_count=16)
        self.frame_count = 3

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if name in self.fail_on:
            raise ExecutionError(f"ffmpeg failed during {name}")

    @staticmethod
    def _write(path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"media")
        return path

    @staticmethod
    async def _progress(on_progress):
        if on_progress is not None:
            await on_progress(50, "half")
            await on_progress(100, "done")

    def names(self):
        return [name for name, _, _ in self.calls]

    async def probe(self, path):
        self._record("probe", path)
        if not Path(path).exists():
            raise FileSystemError(f"Cannot probe missing file: {path}")
        return self.info

    async def extract_thumbnail(self, video, output, timestamp="00:00:00.500", size=None):
        self._record("extract_thumbnail", video, output, timestamp=timestamp)
        self._write(output)

    async def extract_last_frame(self, video, output, offset=0.1):
        self._record("extract_last_frame", video, output, offset=offset)
        self._write(output)

    async def extract_frames(self, video, output_dir, fmt="png"):
        self._record("extract_frames", video, output_dir)
        return [self._write(Path(output_dir) / f"frame_{i:04d}.{fmt}") for i in range(1, self.frame_count + 1)]

    async def combine_frames(self, frames_dir, output, fps=8, fmt="png"):
        self._record("combine_frames", frames_dir, output, fps=fps)
        self._write(output)

    async def concat(self, inputs, output, on_progress=None):
        self._record("concat", list(inputs), output)
        await self._progress(on_progress)
        self._write(output)

    async def merge(self, inputs, output, transition="none", transition_duration=0.5, on_progress=None):
        self._record("merge", list(inputs), output, transition=transition, transition_duration=transition_duration)
        await self._progress(on_progress)
        self._write(output)

    async def scale(self, video, output, width, height, on_progress=None):
        self._record("scale", video, output, width=width, height=height)
        await self._progress(on_progress)
        self._write(output)

    async def interpolate(self, video, output, target_fps, on_progress=None):
        self._record("interpolate", video, output, target_fps=target_fps)
        await self._progress(on_progress)
        self._write(output)

    async def enhance(self, video, output, width, height, target_fps, crf=20, preset="medium", on_progress=None):
        self._record("enhance", video, output, width=width, height=height, target_fps=target_fps, crf=crf, preset=preset)
        await self._progress(on_progress)
        self._write(output)

    async def encode(self, video, output, codec="h264", quality="standard", fps=None, width=None, height=None,
                     audio_bitrate="128k", on_progress=None):
        self._record("encode", video, output, codec=codec, quality=quality)
        await self._progress(on_progress)
        self._write(output)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.dispose()


@pytest.fixture
def store(database):
    return JobStore(database)


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def inference():
    return FakeInference()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def storage(tmp_path):
    return StorageService(tmp_path / "storage")


@pytest.fixture
def context(store, channel, inference, media, storage, settings, database):
    return WorkerContext(
        store=store,
        channel=channel,
        inference=inference,
        media=media,
        storage=storage,
        settings=settings,
        database=database,
    )


@pytest.fixture
def project(database):
    db = database.session()
    try:
        row = Project(
            id=str(uuid.uuid4()),
            project_name="testProject",
            display_name="Test Project",
            resolution="512x512",
            frame_rate=8,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        db.expunge(row)
        return row
    finally:
        db.close()


@pytest.fixture
def make_clip(store, project, tmp_path):
    """Create a completed clip backed by a real file."""

    def factory(order_index=1, status=ClipStatus.COMPLETED, with_file=True) -> Clip:
        file_path = None
        if with_file:
            file_path = tmp_path / "clips" / f"clip_{order_index:03d}.mp4"
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(b"clip")
        return store.create_clip(
            project.id,
            clip_name=f"Clip {order_index}",
            order_index=order_index,
            prompt="a lighthouse at dusk",
            file_path=str(file_path) if file_path else None,
            file_name=file_path.name if file_path else None,
            status=status,
        )

    return factory
