"""
Export Worker
Runs the optional merge, upscale and interpolate stages followed by the
mandatory encode, each stage feeding the next.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from vidgen.core.exceptions import ValidationError, VidgenError
from vidgen.models import Job
from vidgen.services.media_tool import QUALITY_TIERS, VIDEO_CODECS
from vidgen.services.progress import stage_bands
from vidgen.workers.base import BaseWorker, JobResult
from vidgen.workers.merge import clip_paths


def plan_stages(options: Dict[str, Any], clip_count: int) -> List[str]:
    """Enabled stages in execution order; ``encode`` always runs last."""
    stages = []
    if options.get("merge", {}).get("enabled") and clip_count > 1:
        stages.append("merge")
    if options.get("upscale", {}).get("enabled"):
        stages.append("upscale")
    if options.get("interpolate", {}).get("enabled"):
        stages.append("interpolate")
    stages.append("encode")
    return stages


def output_extension(encode: Dict[str, Any]) -> str:
    if encode.get("codec") == "vp9":
        return "webm"
    return encode.get("format") or "mp4"


class ExportWorker(BaseWorker):
    TASK_NAME = "export"

    async def _run_stage(self, stage: str, current: Path, scratch: Path, options: Dict[str, Any], band) -> Path:
        media = self.ctx.media
        if stage == "upscale":
            scale = int(options["upscale"].get("scale", 2))
            info = await media.probe(current)
            output = scratch / "upscaled.mp4"
            await media.scale(current, output, info.width * scale, info.height * scale, on_progress=band)
        elif stage == "interpolate":
            output = scratch / "interpolated.mp4"
            await media.interpolate(current, output, options["interpolate"].get("target_fps", 30), on_progress=band)
        else:
            encode = options.get("encode", {})
            output = scratch / f"encoded.{output_extension(encode)}"
            await media.encode(
                current,
                output,
                codec=encode.get("codec", "h264"),
                quality=encode.get("quality", "standard"),
                on_progress=band,
            )
        return output

    async def execute(self, job: Job) -> JobResult:
        options = job.settings or {}
        encode = options.get("encode", {})
        if encode.get("codec", "h264") not in VIDEO_CODECS:
            raise ValidationError(f"Unsupported codec: {encode.get('codec')}")
        if encode.get("quality", "standard") not in QUALITY_TIERS:
            raise ValidationError(f"Unknown quality tier: {encode.get('quality')}")

        self.log("Started export job")
        await self.reporter.report(5, "Starting export...")
        project = self.store.get_project(job.project_id)

        clip_ids = job.input_clip_ids or []
        clips = self.store.get_clips(clip_ids)
        if not clips:
            raise ValidationError("No completed clips found to export")
        inputs = clip_paths(clips)

        stages = plan_stages(options, len(inputs))
        self.log(f"Export stages: {', '.join(stages)}")
        media = self.ctx.media
        storage = self.ctx.storage

        with storage.scratch_dir(f"export_{self.job_id}") as scratch:
            current = Path(inputs[0])
            if len(inputs) > 1 and "merge" not in stages:
                await self.reporter.report(10, "Concatenating clips...")
                current = scratch / "concat.mp4"
                await media.concat(inputs, current)

            for stage, low, high in stage_bands(stages, start=10, span=80):
                self.checkpoint()
                await self.reporter.report(low, f"Running {stage}...", stage=stage)
                band = self.reporter.band(low, high, stage=stage)
                if stage == "merge":
                    merge = options["merge"]
                    output = scratch / "merged.mp4"
                    await media.merge(
                        inputs,
                        output,
                        transition=merge.get("transition", "none"),
                        transition_duration=merge.get("transition_duration", 0.5),
                        on_progress=band,
                    )
                    current = output
                else:
                    current = await self._run_stage(stage, current, scratch, options, band)
                self.log(f"Stage {stage} completed")

            self.checkpoint()
            await self.reporter.report(90, "Saving export...", stage="finalize")
            stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
            output_name = f"{project.project_name}_export_{stamp}_{self.job_id}.{output_extension(encode)}"
            output_path = storage.path_by_id(job.project_id, "exports") / output_name
            storage.write_bytes(output_path, storage.read_bytes(current))

        await self.reporter.report(92, "Generating thumbnail...", stage="finalize")
        thumbnail_path = output_path.with_name(f"{output_path.stem}_thumb.jpg")
        try:
            await media.extract_thumbnail(output_path, thumbnail_path, timestamp="00:00:01")
        except VidgenError as e:
            self.log(f"Failed to generate export thumbnail: {e.message}", "warn")
            thumbnail_path = None

        await self.reporter.report(95, "Getting video info...", stage="finalize")
        info = await media.probe(output_path)
        await self.reporter.report(98, "Updating database...", stage="finalize")

        metadata = {
            "output_path": str(output_path),
            "thumbnail_path": str(thumbnail_path) if thumbnail_path else None,
            "width": info.width,
            "height": info.height,
            "fps": info.fps,
            "duration": info.duration,
            "frame_count": info.frame_count,
            "codec": info.codec,
            "stages": stages,
        }
        return JobResult(
            output_path=str(output_path),
            output_file_name=output_name,
            settings_update=metadata,
            message=f"Export completed: {output_name}",
            data=metadata,
            event_fields={"stage": "done"},
        )
