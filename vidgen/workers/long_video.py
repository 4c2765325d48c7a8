"""
Long Video Worker
Chains image-to-video segments: each segment's last frame becomes the
reference image of the next, then the segments are concatenated and
optionally enhanced.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from vidgen.core.config import Settings
from vidgen.core.exceptions import ArtifactMissingError, ValidationError
from vidgen.models import ClipStatus, Job
from vidgen.services import graph_builder
from vidgen.services.graph_builder import GenerationParams
from vidgen.services.inference_client import StepProgress
from vidgen.services.model_catalog import GenerationMode
from vidgen.services.storage import FileType
from vidgen.workers.base import BaseWorker, JobResult

logger = logging.getLogger(__name__)

SEGMENT_MODEL = "wan21"
SEGMENT_START = 3
SEGMENT_SPAN = 82
# stands in for the bootstrap frame, which only exists once the job runs
BOOTSTRAP_REFERENCE = "bootstrap.png"


def segment_count(total_segments: Optional[int], target_duration: Optional[float], seconds_per_segment: float) -> int:
    """Explicit count wins; otherwise enough segments to cover ``target_duration`` (default 90s)."""
    if total_segments:
        if total_segments < 1:
            raise ValidationError("total_segments must be at least 1")
        return int(total_segments)
    duration = target_duration or 90
    if duration <= 0:
        raise ValidationError("target_duration must be positive")
    return math.ceil(duration / seconds_per_segment)


def segment_band(segment: int, total: int) -> tuple:
    """Progress slice of segment ``segment`` (1-based) out of ``total``."""
    low = SEGMENT_START + (segment - 1) / total * SEGMENT_SPAN
    high = SEGMENT_START + segment / total * SEGMENT_SPAN
    return low, high


def segment_params(
    options: Dict[str, Any], settings: Settings, reference: str, seed: Optional[int] = None
) -> GenerationParams:
    return GenerationParams(
        prompt=options.get("prompt") or "",
        negative_prompt=options.get("negative_prompt"),
        width=options.get("width", 640),
        height=options.get("height", 360),
        steps=settings.LONG_VIDEO_STEPS,
        cfg=settings.LONG_VIDEO_CFG,
        seed=seed,
        frame_count=options.get("frames_per_segment", 81),
        fps=settings.LONG_VIDEO_FPS,
        reference_image=reference,
        denoise=options.get("denoise", 0.7),
    )


def validate_options(options: Dict[str, Any], settings: Settings) -> int:
    """
    Check a long-video request without touching the inference service.

    Returns:
        Number of segments the job will render

    Raises:
        ValidationError: bad prompt, duration or segment graph parameters
    """
    if not (options.get("prompt") or "").strip():
        raise ValidationError("prompt is required")
    total = segment_count(
        options.get("total_segments"),
        options.get("target_duration"),
        settings.LONG_VIDEO_SECONDS_PER_SEGMENT,
    )
    reference = options.get("reference_image")
    if not reference:
        graph_builder.validate_still_image(
            options["prompt"], width=options.get("width", 640), height=options.get("height", 360)
        )
        reference = BOOTSTRAP_REFERENCE
    graph_builder.validate(
        GenerationMode.IMAGE_TO_VIDEO, SEGMENT_MODEL, segment_params(options, settings, reference)
    )
    return total


class LongVideoWorker(BaseWorker):
    TASK_NAME = "long_video"
    USES_INFERENCE = True

    async def _bootstrap_reference(self, options: dict) -> str:
        """Render a still from the prompt and upload it as the first reference."""
        inference = self.ctx.inference
        await self.reporter.report(1, "Generating initial frame...", stage="bootstrap")
        graph = graph_builder.build_still_image(
            options["prompt"],
            negative_prompt=options.get("negative_prompt"),
            width=options.get("width", 640),
            height=options.get("height", 360),
        )
        outputs = await inference.execute(graph, timeout=self.settings.INFERENCE_TIMEOUT_STILL)
        images = graph_builder.find_image_outputs(outputs)
        if not images:
            raise ArtifactMissingError("Initial frame generation produced no image")
        data = await inference.fetch_artifact(images[0]["filename"], images[0]["subfolder"], images[0]["type"])
        reference = await inference.upload_image(data, f"longvideo_{self.job_id}_init.png")
        self.log(f"Initial frame uploaded as {reference}")
        await self.reporter.report(3, "Initial frame ready", stage="bootstrap")
        return reference

    async def _render_segment(self, options: dict, reference: str, segment: int, total: int) -> bytes:
        low, high = segment_band(segment, total)
        fields = {"segment": segment, "total_segments": total, "stage": "segment"}

        async def on_event(event):
            if isinstance(event, StepProgress) and event.max:
                await self.reporter.report(
                    low + event.value / event.max * (high - low),
                    f"Segment {segment}/{total}: step {event.value}/{event.max}",
                    **fields,
                )

        params = segment_params(options, self.settings, reference, seed=graph_builder.random_seed())
        graph = graph_builder.build(GenerationMode.IMAGE_TO_VIDEO, SEGMENT_MODEL, params)

        await self.reporter.report(low, f"Generating segment {segment}/{total}...", **fields)
        outputs = await self.ctx.inference.execute(
            graph, on_progress=on_event, timeout=self.settings.INFERENCE_TIMEOUT_SEGMENT
        )
        artifact = graph_builder.find_video_output(outputs)
        if artifact is None:
            raise ArtifactMissingError(f"Segment {segment} produced no video")
        return await self.ctx.inference.fetch_artifact(artifact["filename"], artifact["subfolder"], artifact["type"])

    async def execute(self, job: Job) -> JobResult:
        options = job.settings or {}
        total = validate_options(options, self.settings)
        frames_per_segment = options.get("frames_per_segment", 81)
        offset = self.settings.LONG_VIDEO_ORDER_OFFSET

        project = self.store.get_project(job.project_id)
        storage = self.ctx.storage
        media = self.ctx.media
        inference = self.ctx.inference
        self.log(f"Started long video job: {total} segments of {frames_per_segment} frames")

        await inference.ensure_available()
        reference = options.get("reference_image")
        if not reference:
            reference = await self._bootstrap_reference(options)

        clip_ids: List[str] = []
        segment_paths = []
        for segment in range(1, total + 1):
            self.checkpoint()
            await inference.release_memory()
            video = await self._render_segment(options, reference, segment, total)

            segment_path = storage.full_path(
                project.project_name, FileType.CLIP, offset + segment, job_id=self.job_id
            )
            storage.write_bytes(segment_path, video)
            segment_paths.append(segment_path)
            info = await media.probe(segment_path)
            clip = self.store.create_clip(
                job.project_id,
                clip_name=f"Segment {segment}",
                order_index=offset + segment,
                prompt=options["prompt"],
                negative_prompt=options.get("negative_prompt"),
                reference_image=reference,
                steps_count=self.settings.LONG_VIDEO_STEPS,
                cfg_scale=self.settings.LONG_VIDEO_CFG,
                file_path=str(segment_path),
                file_name=segment_path.name,
                frame_count=info.frame_count or frames_per_segment,
                duration_sec=info.duration,
                status=ClipStatus.COMPLETED,
            )
            clip_ids.append(clip.id)
            self.log(f"Segment {segment}/{total} saved to {segment_path}")

            if segment < total:
                frame_name = f"longvideo_{self.job_id}_seg{segment}_lastframe.jpg"
                frame_path = segment_path.with_name(frame_name)
                await media.extract_last_frame(segment_path, frame_path)
                reference = await inference.upload_image(storage.read_bytes(frame_path), frame_name)
                storage.delete_file(frame_path)

            high = segment_band(segment, total)[1]
            await self.reporter.report(
                high, f"Segment {segment}/{total} complete", segment=segment, total_segments=total, stage="segment"
            )

        self.checkpoint()
        await self.reporter.report(87, "Concatenating segments...", stage="concat", total_segments=total)
        output_path = storage.full_path(project.project_name, FileType.MERGED, 0, job_id=self.job_id)
        await media.concat(segment_paths, output_path)
        self.log(f"Segments concatenated to {output_path}")

        if options.get("hq_enhance", True):
            self.checkpoint()
            await self.reporter.report(92, "Enhancing video...", stage="enhance", total_segments=total)
            enhanced_path = storage.full_path(project.project_name, FileType.FINAL, 0, job_id=self.job_id)
            scale = self.settings.LONG_VIDEO_ENHANCE_SCALE
            await media.enhance(
                output_path,
                enhanced_path,
                options.get("width", 640) * scale,
                options.get("height", 360) * scale,
                self.settings.LONG_VIDEO_ENHANCE_FPS,
                crf=20,
            )
            output_path = enhanced_path
            self.log(f"Enhanced video saved to {output_path}")

        await self.reporter.report(97, "Updating database...", stage="finalize", total_segments=total)
        return JobResult(
            output_path=str(output_path),
            output_file_name=output_path.name,
            settings_update={"output_path": str(output_path), "clip_ids": clip_ids, "total_segments": total},
            input_clip_ids=clip_ids,
            message=f"Long video completed: {total} segments",
            data={"output_path": str(output_path), "total_segments": total, "clip_ids": clip_ids},
            event_fields={"segment": total, "total_segments": total, "stage": "done"},
        )
