"""
Media Tool Adapter
Async wrapper around the ffmpeg / ffprobe command line tools.

Every operation is one subprocess. Long operations report progress by
reading ffmpeg's ``-progress pipe:1`` output and comparing ``out_time_us``
against the expected output duration.
"""

import asyncio
import inspect
import json
import logging
import math
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from vidgen.core.config import settings
from vidgen.core.exceptions import (
    ExecutionError,
    FileSystemError,
    InferenceTimeoutError,
    ServiceUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
# (percent 0..100, message) -> None or awaitable
MediaProgress = Callable[[int, str], Any]

VIDEO_CODECS = {
    "h264": "libx264",
    "h265": "libx265",
    "vp9": "libvpx-vp9",
}

QUALITY_TIERS = {
    "draft": {"crf": 28, "preset": "fast"},
    "standard": {"crf": 23, "preset": "medium"},
    "high": {"crf": 18, "preset": "slow"},
}

TRANSITIONS = ["none", "fade", "fadeblack", "fadewhite", "dissolve", "wipeleft", "wiperight", "slideleft", "slideright"]

MINTERPOLATE = "minterpolate=fps={fps}:mi_mode=mci:mc_mode=aobmc:me_mode=bidir:vsbmc=1"


@dataclass
class VideoInfo:
    """Result of probing a video's first stream."""
    duration: float
    fps: float
    width: int
    height: int
    codec: str
    bitrate: int
    frame_count: int

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


def parse_frame_rate(value: str) -> float:
    """Parse ffprobe rates like ``24/1`` or ``30000/1001``."""
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            return float(num) / float(den) if float(den) else 0.0
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def xfade_filter(durations: Sequence[float], transition: str = "fade", duration: float = 0.5) -> str:
    """
    Build the ``-filter_complex`` chain that crossfades every input into the next.

    Transition ``i`` starts at ``sum(durations[:i]) - duration * i`` so the
    output lasts ``sum(durations) - duration * (len(durations) - 1)`` seconds.
    """
    if len(durations) < 2:
        raise ValidationError("A transition merge needs at least two inputs")
    parts = []
    current = "[0:v]"
    for i in range(1, len(durations)):
        offset = round(sum(durations[:i]) - duration * i, 3)
        if offset < 0:
            raise ValidationError(f"Clip {i - 1} is shorter than the {duration}s transition")
        label = "[outv]" if i == len(durations) - 1 else f"[v{i}]"
        parts.append(
            f"{current}[{i}:v]xfade=transition={transition}:duration={duration}:offset={offset}{label}"
        )
        current = f"[v{i}]"
    return ";".join(parts)


def concat_list(paths: Sequence[PathLike]) -> str:
    """Concat demuxer list file contents."""
    lines = []
    for path in paths:
        escaped = str(Path(path).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


def encode_args(codec: str = "h264", quality: str = "standard") -> List[str]:
    """Video codec arguments for a codec and quality tier."""
    if codec not in VIDEO_CODECS:
        raise ValidationError(f"Unsupported codec: {codec}")
    if quality not in QUALITY_TIERS:
        raise ValidationError(f"Unsupported quality: {quality}")
    tier = QUALITY_TIERS[quality]
    args = ["-c:v", VIDEO_CODECS[codec]]
    if codec == "vp9":
        return args + ["-crf", str(tier["crf"]), "-b:v", "0"]
    return args + ["-preset", tier["preset"], "-crf", str(tier["crf"])]


def audio_codec(codec: str = "h264") -> str:
    """WebM only carries Opus or Vorbis audio."""
    return "libopus" if codec == "vp9" else "aac"


async def _notify(callback: Optional[MediaProgress], percent: int, message: str):
    if callback is None:
        return
    result = callback(percent, message)
    if inspect.isawaitable(result):
        await result


def _ensure_parent(path: PathLike) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileSystemError(f"Cannot create directory {path.parent}: {e}")
    return path


class MediaTool:
    """ffmpeg/ffprobe adapter. Safe to share inside one worker process."""

    def __init__(self, ffmpeg: str = None, ffprobe: str = None, default_timeout: float = None):
        self.ffmpeg = ffmpeg or settings.FFMPEG_BINARY
        self.ffprobe = ffprobe or settings.FFPROBE_BINARY
        self.default_timeout = default_timeout or settings.MEDIA_TIMEOUT_DEFAULT

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg) is not None and shutil.which(self.ffprobe) is not None

    async def _exec(
        self,
        cmd: List[str],
        timeout: float = None,
        on_progress: Optional[MediaProgress] = None,
        expected_duration: float = None,
        label: str = "Processing",
    ) -> str:
        """Run one subprocess, streaming progress lines. Returns stdout."""
        timeout = timeout or self.default_timeout
        logger.debug(f"[MediaTool] {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ServiceUnavailableError(f"Media tool binary not found: {cmd[0]}")

        stdout_lines: List[str] = []
        last_percent = -1

        async def read_stdout():
            nonlocal last_percent
            async for raw in proc.stdout:
                line = raw.decode(errors="replace").strip()
                stdout_lines.append(line)
                if not (on_progress and expected_duration) or not line.startswith("out_time_us="):
                    continue
                try:
                    seconds = int(line.split("=", 1)[1]) / 1_000_000
                except ValueError:
                    continue  # N/A before the first frame
                percent = min(99, int(seconds / expected_duration * 100))
                if percent > last_percent:
                    last_percent = percent
                    await _notify(on_progress, percent, f"{label}... {percent}%")

        try:
            _, stderr, returncode = await asyncio.wait_for(
                asyncio.gather(read_stdout(), proc.stderr.read(), proc.wait()),
                timeout,
            )
        except asyncio.TimeoutError:
            raise InferenceTimeoutError(
                f"{Path(cmd[0]).name} exceeded {timeout:.0f}s", details={"command": cmd}
            )
        finally:
            # also reached when on_progress raises or the task is cancelled
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        if returncode != 0:
            tail = stderr.decode(errors="replace").strip()[-1000:]
            raise ExecutionError(
                f"{Path(cmd[0]).name} exited with code {returncode}: {tail}",
                details={"command": cmd},
            )
        return "\n".join(stdout_lines)

    async def _ffmpeg(self, args: List[str], **kwargs) -> str:
        cmd = [self.ffmpeg, "-y", "-hide_banner", "-loglevel", "error", "-nostats", "-progress", "pipe:1"]
        return await self._exec(cmd + args, **kwargs)

    # -----------------------------------------------------------------------
    # Inspection
    # -----------------------------------------------------------------------

    async def probe(self, path: PathLike) -> VideoInfo:
        """Read duration, fps, size, codec, bitrate and frame count."""
        if not Path(path).exists():
            raise FileSystemError(f"Cannot probe missing file: {path}")
        cmd = [
            self.ffprobe, "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height,codec_name,r_frame_rate,bit_rate,duration,nb_frames:format=duration",
            "-of", "json",
            str(path),
        ]
        output = await self._exec(cmd, timeout=60)
        try:
            payload = json.loads(output)
        except json.JSONDecodeError as e:
            raise ExecutionError(f"Unparseable probe output for {path}: {e}")

        streams = payload.get("streams") or []
        if not streams:
            raise ExecutionError(f"No video stream in {path}")
        stream = streams[0]

        fps = parse_frame_rate(stream.get("r_frame_rate", "0/1"))
        duration_raw = stream.get("duration") or (payload.get("format") or {}).get("duration") or 0
        try:
            duration = float(duration_raw)
        except (TypeError, ValueError):
            duration = 0.0
        try:
            frame_count = int(stream.get("nb_frames"))
        except (TypeError, ValueError):
            frame_count = math.ceil(fps * duration)

        return VideoInfo(
            duration=duration,
            fps=fps,
            width=int(stream.get("width") or 0),
            height=int(stream.get("height") or 0),
            codec=stream.get("codec_name") or "unknown",
            bitrate=int(stream.get("bit_rate") or 0),
            frame_count=frame_count,
        )

    async def total_duration(self, paths: Sequence[PathLike]) -> float:
        total = 0.0
        for path in paths:
            total += (await self.probe(path)).duration
        return total

    # -----------------------------------------------------------------------
    # Frames
    # -----------------------------------------------------------------------

    async def extract_thumbnail(
        self,
        video: PathLike,
        output: PathLike,
        timestamp: str = "00:00:00.500",
        size: Optional[Dict[str, int]] = None,
    ):
        output = _ensure_parent(output)
        args = ["-i", str(video), "-ss", timestamp, "-vframes", "1"]
        if size:
            args += ["-vf", f"scale={size['width']}:{size['height']}"]
        await self._ffmpeg(args + ["-q:v", "2", str(output)], timeout=60)

    async def extract_last_frame(self, video: PathLike, output: PathLike, offset: float = 0.1):
        """Write the frame ``offset`` seconds before the end of ``video``."""
        output = _ensure_parent(output)
        await self._ffmpeg(
            ["-sseof", f"-{offset}", "-i", str(video), "-vframes", "1", "-q:v", "2", str(output)],
            timeout=60,
        )
        if not output.exists():
            raise ExecutionError(f"No frame extracted from the end of {video}")

    async def extract_frames(self, video: PathLike, output_dir: PathLike, fmt: str = "png") -> List[Path]:
        """Dump every frame as ``frame_%04d.<fmt>``; returns them sorted."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        await self._ffmpeg(["-i", str(video), str(output_dir / f"frame_%04d.{fmt}")])
        frames = sorted(output_dir.glob(f"frame_*.{fmt}"))
        if not frames:
            raise ExecutionError(f"Frame extraction produced no frames for {video}")
        return frames

    async def combine_frames(self, frames_dir: PathLike, output: PathLike, fps: float = 8, fmt: str = "png"):
        output = _ensure_parent(output)
        await self._ffmpeg([
            "-framerate", str(fps),
            "-i", str(Path(frames_dir) / f"frame_%04d.{fmt}"),
            "-c:v", "libx264", "-preset", "medium", "-crf", "23",
            "-pix_fmt", "yuv420p",
            str(output),
        ])

    # -----------------------------------------------------------------------
    # Whole-video operations
    # -----------------------------------------------------------------------

    async def concat(self, inputs: Sequence[PathLike], output: PathLike, on_progress: Optional[MediaProgress] = None):
        """Lossless cut-merge with the concat demuxer."""
        if not inputs:
            raise ValidationError("Nothing to concatenate")
        output = _ensure_parent(output)
        list_path = output.with_name(f"{output.stem}_list.txt")
        list_path.write_text(concat_list(inputs))
        try:
            await _notify(on_progress, 10, "Preparing concatenation...")
            await self._ffmpeg(["-f", "concat", "-safe", "0", "-i", str(list_path), "-c", "copy", str(output)])
            await _notify(on_progress, 100, "Concatenation complete")
        finally:
            list_path.unlink(missing_ok=True)

    async def merge(
        self,
        inputs: Sequence[PathLike],
        output: PathLike,
        transition: str = "none",
        transition_duration: float = 0.5,
        on_progress: Optional[MediaProgress] = None,
    ):
        """Merge clips in order, crossfading between them unless ``transition`` is ``none``."""
        if transition not in TRANSITIONS:
            raise ValidationError(f"Unsupported transition: {transition}")
        if len(inputs) < 2 or transition == "none":
            return await self.concat(inputs, output, on_progress)

        output = _ensure_parent(output)
        await _notify(on_progress, 5, "Analyzing videos...")
        durations = [(await self.probe(path)).duration for path in inputs]

        await _notify(on_progress, 15, "Building filter graph...")
        filter_complex = xfade_filter(durations, transition, transition_duration)
        expected = sum(durations) - transition_duration * (len(durations) - 1)

        args = []
        for path in inputs:
            args += ["-i", str(path)]
        args += [
            "-filter_complex", filter_complex,
            "-map", "[outv]",
            "-c:v", "libx264", "-preset", "medium", "-crf", "23",
            str(output),
        ]
        await self._ffmpeg(args, on_progress=on_progress, expected_duration=expected, label="Merging")
        await _notify(on_progress, 100, "Merge complete")

    async def scale(
        self,
        video: PathLike,
        output: PathLike,
        width: int,
        height: int,
        on_progress: Optional[MediaProgress] = None,
    ):
        output = _ensure_parent(output)
        info = await self.probe(video)
        await self._ffmpeg(
            [
                "-i", str(video),
                "-vf", f"scale={width}:{height}:flags=lanczos",
                "-c:v", "libx264", "-preset", "medium", "-crf", "23",
                str(output),
            ],
            on_progress=on_progress,
            expected_duration=info.duration,
            label=f"Scaling to {width}x{height}",
        )

    async def interpolate(
        self,
        video: PathLike,
        output: PathLike,
        target_fps: float,
        on_progress: Optional[MediaProgress] = None,
    ):
        """Motion-compensated frame-rate conversion."""
        output = _ensure_parent(output)
        info = await self.probe(video)
        await self._ffmpeg(
            [
                "-i", str(video),
                "-vf", MINTERPOLATE.format(fps=target_fps),
                "-c:v", "libx264", "-preset", "medium", "-crf", "23",
                str(output),
            ],
            timeout=settings.MEDIA_TIMEOUT_ENHANCE,
            on_progress=on_progress,
            expected_duration=info.duration,
            label=f"Interpolating to {target_fps}fps",
        )

    async def enhance(
        self,
        video: PathLike,
        output: PathLike,
        width: int,
        height: int,
        target_fps: float,
        crf: int = 20,
        preset: str = "medium",
        on_progress: Optional[MediaProgress] = None,
    ):
        """One pass of lanczos scaling followed by motion interpolation."""
        output = _ensure_parent(output)
        info = await self.probe(video)
        await self._ffmpeg(
            [
                "-i", str(video),
                "-vf", f"scale={width}:{height}:flags=lanczos,{MINTERPOLATE.format(fps=target_fps)}",
                "-c:v", "libx264", "-preset", preset, "-crf", str(crf),
                "-pix_fmt", "yuv420p",
                str(output),
            ],
            timeout=settings.MEDIA_TIMEOUT_ENHANCE,
            on_progress=on_progress,
            expected_duration=info.duration,
            label="Enhancing",
        )

    async def encode(
        self,
        video: PathLike,
        output: PathLike,
        codec: str = "h264",
        quality: str = "standard",
        fps: Optional[float] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        audio_bitrate: str = "128k",
        on_progress: Optional[MediaProgress] = None,
    ):
        """Final transcode with the codec and quality tier."""
        codec_args = encode_args(codec, quality)
        output = _ensure_parent(output)
        info = await self.probe(video)

        filters = []
        if fps:
            filters.append(f"fps={fps}")
        if width and height:
            filters.append(f"scale={width}:{height}")

        args = ["-i", str(video)] + codec_args
        if filters:
            args += ["-vf", ",".join(filters)]
        args += ["-c:a", audio_codec(codec), "-b:a", audio_bitrate, str(output)]
        await self._ffmpeg(
            args,
            timeout=settings.MEDIA_TIMEOUT_ENHANCE,
            on_progress=on_progress,
            expected_duration=info.duration,
            label="Encoding",
        )
