"""
Interpolate Worker
Frame-rate conversion with ffmpeg motion interpolation, or RIFE on the
inference service for large multipliers.
"""

import math
from pathlib import Path
from typing import List

from vidgen.core.exceptions import ArtifactMissingError, ValidationError
from vidgen.models import Job
from vidgen.services import graph_builder
from vidgen.services.storage import FileType
from vidgen.workers.base import BaseWorker, JobResult

INTERPOLATION_METHODS = ["ffmpeg", "rife"]


class InterpolateWorker(BaseWorker):
    TASK_NAME = "interpolate"

    async def _rife_frames(self, frames: List[Path], output_dir: Path, multiplier: int) -> int:
        """
        Interpolate each adjacent pair. Every pair's output repeats its second
        frame as the next pair's first, so only the final pair keeps it.
        """
        inference = self.ctx.inference
        storage = self.ctx.storage
        written = 0
        total_pairs = len(frames) - 1
        for i in range(total_pairs):
            self.checkpoint()
            first = await inference.upload_image(storage.read_bytes(frames[i]), f"{self.job_id}_a_{i:04d}.png", "rife_input")
            second = await inference.upload_image(
                storage.read_bytes(frames[i + 1]), f"{self.job_id}_b_{i:04d}.png", "rife_input"
            )
            outputs = await inference.execute(
                graph_builder.build_frame_interpolation(first, second, multiplier),
                timeout=self.settings.INFERENCE_TIMEOUT_FRAME,
            )
            images = sorted(graph_builder.find_image_outputs(outputs), key=lambda image: image["filename"])
            if not images:
                raise ArtifactMissingError(f"No interpolated frames for pair {i + 1}")
            if i < total_pairs - 1:
                images = images[:-1]
            for image in images:
                data = await inference.fetch_artifact(image["filename"], image["subfolder"], image["type"])
                written += 1
                (output_dir / f"frame_{written:04d}.png").write_bytes(data)

            await self.reporter.report(30 + (i + 1) / total_pairs * 50, f"Interpolating pair {i + 1}/{total_pairs}")
        return written

    async def execute(self, job: Job) -> JobResult:
        options = job.settings or {}
        target_fps = options.get("target_fps", 24)
        method = options.get("method", "ffmpeg")
        if method not in INTERPOLATION_METHODS:
            raise ValidationError(f"Unknown interpolation method: {method}")

        self.log(f"Started interpolate job. Target FPS: {target_fps}")
        await self.reporter.report(5, "Starting interpolation...")
        project = self.store.get_project(job.project_id)
        input_path = self.resolve_input_path(options)

        media = self.ctx.media
        storage = self.ctx.storage
        source = await media.probe(input_path)
        self.log(f"Source FPS: {source.fps:.2f}, Target FPS: {target_fps}")
        await self.reporter.report(10, "Analyzing video...")
        if target_fps <= source.fps:
            self.log(f"Target FPS ({target_fps}) is not higher than source ({source.fps:.2f})", "warn")

        output_name = storage.file_name(
            project.project_name, FileType.INTERPOLATED, int(target_fps), job_id=self.job_id
        )
        output_path = storage.path_by_id(job.project_id, "interpolated") / output_name

        multiplier = math.ceil(target_fps / source.fps) if source.fps else 1
        use_rife = method == "rife" and multiplier > 2
        if use_rife and not await self.ctx.inference.is_available():
            self.log("Inference service not available, falling back to FFmpeg", "warn")
            use_rife = False

        if use_rife:
            self.uses_inference = True
            await self.ctx.inference.release_memory()
            await self.reporter.report(15, "Extracting frames...")
            with storage.scratch_dir(f"interpolate_{self.job_id}") as scratch:
                frames = await media.extract_frames(input_path, scratch / "input")
                if len(frames) < 2:
                    raise ValidationError("Need at least two frames to interpolate")
                self.log(f"Extracted {len(frames)} frames")
                await self.reporter.report(30, "Interpolating frames with RIFE...")

                interpolated_dir = scratch / "output"
                interpolated_dir.mkdir()
                count = await self._rife_frames(frames, interpolated_dir, multiplier)
                self.log(f"RIFE produced {count} frames")

                await self.reporter.report(80, "Combining frames...")
                await media.combine_frames(interpolated_dir, output_path, source.fps * multiplier)
        else:
            await self.reporter.report(20, "Interpolating with FFmpeg...")
            await media.interpolate(input_path, output_path, target_fps, on_progress=self.reporter.band(20, 90))

        await self.reporter.report(90, "Getting video info...")
        info = await media.probe(output_path)
        await self.reporter.report(95, "Updating database...")

        return JobResult(
            output_path=str(output_path),
            output_file_name=output_name,
            settings_update={
                "output_path": str(output_path),
                "source_fps": source.fps,
                "output_fps": info.fps,
                "source_frame_count": source.frame_count,
                "output_frame_count": info.frame_count,
                "duration": info.duration,
                "method_used": "rife" if use_rife else "ffmpeg",
            },
            message=(
                f"Interpolation completed. FPS: {source.fps:.2f} -> {info.fps:.2f}, "
                f"Frames: {source.frame_count} -> {info.frame_count}"
            ),
            data={"output_path": str(output_path), "fps": info.fps, "frame_count": info.frame_count, "duration": info.duration},
        )
