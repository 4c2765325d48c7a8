"""
Upscale Worker
Resolution upscaling with ffmpeg lanczos or Real-ESRGAN frame by frame,
plus the one-pass clip enhance job that shares the upscale queue.
"""

from pathlib import Path
from typing import List

from vidgen.core.exceptions import ArtifactMissingError, ValidationError
from vidgen.models import Job
from vidgen.services import graph_builder
from vidgen.services.storage import FileType
from vidgen.workers.base import BaseWorker, JobResult

UPSCALE_MODELS = ["ffmpeg", "realesrgan"]


class UpscaleWorker(BaseWorker):
    TASK_NAME = "upscale"

    async def _upscale_frames(self, frames: List[Path], output_dir: Path, scale: int):
        """Run every frame through the Real-ESRGAN graph."""
        inference = self.ctx.inference
        total = len(frames)
        for i, frame in enumerate(frames):
            self.checkpoint()
            uploaded = await inference.upload_image(
                self.ctx.storage.read_bytes(frame), f"{self.job_id}_frame_{i:04d}.png", "upscale_input"
            )
            outputs = await inference.execute(
                graph_builder.build_frame_upscale(uploaded, scale),
                timeout=self.settings.INFERENCE_TIMEOUT_FRAME,
            )
            images = graph_builder.find_image_outputs(outputs)
            if not images:
                raise ArtifactMissingError(f"No output image for frame {i + 1}")
            data = await inference.fetch_artifact(images[0]["filename"], images[0]["subfolder"], images[0]["type"])
            (output_dir / f"frame_{i + 1:04d}.png").write_bytes(data)

            await self.reporter.report(30 + (i + 1) / total * 50, f"Upscaling frame {i + 1}/{total}")

    async def execute(self, job: Job) -> JobResult:
        options = job.settings or {}
        scale = int(options.get("scale", 2))
        model = options.get("model", "ffmpeg")
        if model not in UPSCALE_MODELS:
            raise ValidationError(f"Unknown upscale model: {model}")

        self.log(f"Started upscale job. Scale: {scale}x, Model: {model}")
        await self.reporter.report(5, "Starting upscale...")
        project = self.store.get_project(job.project_id)
        input_path = self.resolve_input_path(options)

        media = self.ctx.media
        storage = self.ctx.storage
        source = await media.probe(input_path)
        width, height = source.width * scale, source.height * scale
        self.log(f"Input: {source.width}x{source.height}, Target: {width}x{height}")
        await self.reporter.report(10, "Analyzing video...")

        output_name = storage.file_name(project.project_name, FileType.UPSCALED, scale, job_id=self.job_id)
        output_path = storage.path_by_id(job.project_id, "upscaled") / output_name

        if model == "ffmpeg":
            await self.reporter.report(20, "Upscaling with FFmpeg...")
            await media.scale(input_path, output_path, width, height, on_progress=self.reporter.band(20, 90))
        else:
            self.uses_inference = True
            await self.ctx.inference.ensure_available()
            await self.ctx.inference.release_memory()
            await self.reporter.report(15, "Extracting frames...")
            with storage.scratch_dir(f"upscale_{self.job_id}") as scratch:
                frames = await media.extract_frames(input_path, scratch / "input")
                self.log(f"Extracted {len(frames)} frames")
                await self.reporter.report(30, "Upscaling frames with AI...")

                upscaled_dir = scratch / "output"
                upscaled_dir.mkdir()
                await self._upscale_frames(frames, upscaled_dir, scale)
                self.log("All frames upscaled")

                await self.reporter.report(80, "Combining frames...")
                await media.combine_frames(upscaled_dir, output_path, source.fps or 8)

        await self.reporter.report(90, "Getting video info...")
        info = await media.probe(output_path)
        await self.reporter.report(95, "Updating database...")

        return JobResult(
            output_path=str(output_path),
            output_file_name=output_name,
            settings_update={
                "output_path": str(output_path),
                "original_width": source.width,
                "original_height": source.height,
                "output_width": info.width,
                "output_height": info.height,
                "duration": info.duration,
            },
            message=f"Upscale completed. Output: {info.width}x{info.height}",
            data={"output_path": str(output_path), "width": info.width, "height": info.height, "duration": info.duration},
        )


class EnhanceWorker(BaseWorker):
    """Scale and interpolate a clip in one pass, replacing its file."""

    TASK_NAME = "enhance"

    async def execute(self, job: Job) -> JobResult:
        options = job.settings or {}
        clip_id = options.get("clip_id")
        scale = int(options.get("scale", 2))
        target_fps = options.get("target_fps", 30)
        clip = self.store.get_clip(clip_id)
        if clip.file_name and "_enhanced_" in clip.file_name:
            raise ValidationError("This clip has already been enhanced")
        input_path = self.resolve_input_path(options)

        self.log(f"Started enhance job. Scale: {scale}x, Target FPS: {target_fps}")
        await self.reporter.report(5, "Analyzing video...")
        media = self.ctx.media
        source = await media.probe(input_path)
        width, height = source.width * scale, source.height * scale

        output_name = f"{input_path.stem}_enhanced_{scale}x_{target_fps}fps.mp4"
        output_path = input_path.with_name(output_name)

        await self.reporter.report(10, f"Enhancing to {width}x{height} {target_fps}fps...")
        await media.enhance(
            input_path,
            output_path,
            width,
            height,
            target_fps,
            crf=18,
            preset="slow",
            on_progress=self.reporter.band(10, 90),
        )

        await self.reporter.report(90, "Getting video info...")
        info = await media.probe(output_path)
        self.store.update_clip(
            clip_id,
            file_path=str(output_path),
            file_name=output_name,
            frame_count=info.frame_count or clip.frame_count,
            duration_sec=info.duration or clip.duration_sec,
        )
        await self.reporter.report(95, "Updating database...")

        return JobResult(
            output_path=str(output_path),
            output_file_name=output_name,
            settings_update={
                "original_resolution": source.resolution,
                "enhanced_resolution": info.resolution,
                "fps": target_fps,
                "duration": info.duration,
            },
            message=f"Enhance completed. {source.resolution} -> {info.resolution} at {target_fps}fps",
            data={"clip_id": clip_id, "file_path": str(output_path), "resolution": info.resolution},
        )
