import asyncio
import shutil

import pytest

from vidgen.core.exceptions import FileSystemError, ServiceUnavailableError, ValidationError
from vidgen.services.media_tool import (
    MediaTool,
    audio_codec,
    concat_list,
    encode_args,
    parse_frame_rate,
    xfade_filter,
)

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def test_xfade_two_clips():
    assert xfade_filter([2.0, 2.0], "fade", 0.5) == (
        "[0:v][1:v]xfade=transition=fade:duration=0.5:offset=1.5[outv]"
    )


def test_xfade_offsets_accumulate():
    chain = xfade_filter([2.0, 3.0, 2.0], "dissolve", 0.5)
    assert chain.split(";") == [
        "[0:v][1:v]xfade=transition=dissolve:duration=0.5:offset=1.5[v1]",
        "[v1][2:v]xfade=transition=dissolve:duration=0.5:offset=4.0[outv]",
    ]


def test_xfade_rejects_single_input_and_short_clips():
    with pytest.raises(ValidationError):
        xfade_filter([2.0])
    with pytest.raises(ValidationError):
        xfade_filter([0.2, 2.0], duration=0.5)


@pytest.mark.parametrize(
    "codec,quality,expected",
    [
        ("h264", "draft", ["-c:v", "libx264", "-preset", "fast", "-crf", "28"]),
        ("h265", "standard", ["-c:v", "libx265", "-preset", "medium", "-crf", "23"]),
        ("vp9", "high", ["-c:v", "libvpx-vp9", "-crf", "18", "-b:v", "0"]),
    ],
)
def test_encode_args(codec, quality, expected):
    assert encode_args(codec, quality) == expected


def test_encode_args_rejects_unknown():
    with pytest.raises(ValidationError):
        encode_args("av1")
    with pytest.raises(ValidationError):
        encode_args("h264", "ultra")


@pytest.mark.parametrize("value,expected", [("24/1", 24.0), ("30000/1001", 29.97), ("8", 8.0), ("0/0", 0.0), ("n/a", 0.0)])
def test_parse_frame_rate(value, expected):
    assert parse_frame_rate(value) == pytest.approx(expected, abs=0.01)


def test_concat_list_escapes_quotes(tmp_path):
    path = tmp_path / "it's.mp4"
    listing = concat_list([path])
    assert listing == f"file '{str(path.resolve())}'\n".replace("it's", "it'\\''s")


async def test_missing_binary_is_service_unavailable(tmp_path):
    tool = MediaTool(ffmpeg="vidgen-no-such-ffmpeg", ffprobe="vidgen-no-such-ffprobe")
    source = tmp_path / "in.mp4"
    source.write_bytes(b"x")
    with pytest.raises(ServiceUnavailableError):
        await tool.concat([source], tmp_path / "out.mp4")
    assert not (tmp_path / "out_list.txt").exists()


async def test_probe_missing_file(tmp_path):
    with pytest.raises(FileSystemError):
        await MediaTool().probe(tmp_path / "missing.mp4")


async def test_merge_rejects_unknown_transition(tmp_path):
    with pytest.raises(ValidationError):
        await MediaTool().merge([tmp_path / "a.mp4", tmp_path / "b.mp4"], tmp_path / "out.mp4", transition="spin")


def test_audio_codec_follows_container():
    assert audio_codec("vp9") == "libopus"
    assert audio_codec("h264") == "aac"
    assert audio_codec("h265") == "aac"


class HangingProcess:
    """Subprocess stand-in that reports progress and never exits on its own."""

    def __init__(self):
        self.returncode = None
        self.killed = False
        self._exited = asyncio.Event()
        self.stdout = self._lines()
        self.stderr = self

    async def _lines(self):
        yield b"out_time_us=1000000\n"
        await self._exited.wait()

    async def read(self):
        await self._exited.wait()
        return b""

    def kill(self):
        self.killed = True
        self.returncode = -9
        self._exited.set()

    async def wait(self):
        await self._exited.wait()
        return self.returncode


async def test_failing_progress_callback_kills_subprocess(monkeypatch):
    proc = HangingProcess()

    async def fake_exec(*cmd, **kwargs):
        return proc

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

    def on_progress(percent, message):
        raise RuntimeError("listener went away")

    with pytest.raises(RuntimeError):
        await MediaTool(default_timeout=5)._exec(
            ["ffmpeg"], on_progress=on_progress, expected_duration=2.0
        )
    assert proc.killed
    assert proc.returncode == -9


# ---------------------------------------------------------------------------
# Real ffmpeg
# ---------------------------------------------------------------------------

async def make_video(tool, path, seconds=2, size="64x64", rate=8):
    await tool._ffmpeg([
        "-f", "lavfi", "-i", f"testsrc=duration={seconds}:size={size}:rate={rate}",
        "-c:v", "libx264", "-pix_fmt", "yuv420p", str(path),
    ])
    return path


@requires_ffmpeg
async def test_probe_reads_metadata(tmp_path):
    tool = MediaTool()
    video = await make_video(tool, tmp_path / "a.mp4")
    info = await tool.probe(video)
    assert (info.width, info.height) == (64, 64)
    assert info.fps == pytest.approx(8)
    assert info.duration == pytest.approx(2, abs=0.2)
    assert info.frame_count == 16


@requires_ffmpeg
async def test_concat_duration_is_sum(tmp_path):
    tool = MediaTool()
    first = await make_video(tool, tmp_path / "a.mp4")
    second = await make_video(tool, tmp_path / "b.mp4", seconds=1)
    third = await make_video(tool, tmp_path / "c.mp4", seconds=3)
    await tool.concat([first, second, third], tmp_path / "joined.mp4")
    assert await tool.total_duration([tmp_path / "joined.mp4"]) == pytest.approx(6, abs=0.3)


@requires_ffmpeg
async def test_fade_merge_shortens_by_transition(tmp_path):
    tool = MediaTool()
    first = await make_video(tool, tmp_path / "a.mp4")
    second = await make_video(tool, tmp_path / "b.mp4")
    updates = []

    async def on_progress(percent, message):
        updates.append(percent)

    await tool.merge([first, second], tmp_path / "merged.mp4", "fade", 0.5, on_progress=on_progress)
    info = await tool.probe(tmp_path / "merged.mp4")
    assert info.duration == pytest.approx(3.5, abs=0.2)
    assert updates[-1] == 100


@requires_ffmpeg
async def test_last_frame_and_scale(tmp_path):
    tool = MediaTool()
    video = await make_video(tool, tmp_path / "a.mp4")
    await tool.extract_last_frame(video, tmp_path / "last.jpg")
    await tool.scale(video, tmp_path / "big.mp4", 128, 128)

    assert (tmp_path / "last.jpg").stat().st_size > 0
    info = await tool.probe(tmp_path / "big.mp4")
    assert (info.width, info.height) == (128, 128)
