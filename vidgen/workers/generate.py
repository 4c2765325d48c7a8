"""
Generate Worker
Renders one clip on the inference service.
"""

import logging
from pathlib import Path

from vidgen.core.exceptions import ArtifactMissingError, ValidationError, VidgenError
from vidgen.models import ClipStatus, Job
from vidgen.services import graph_builder, resource_scaler
from vidgen.services.graph_builder import GenerationParams
from vidgen.services.inference_client import NodeTransition, StepProgress, remap_step
from vidgen.services.model_catalog import GenerationMode, get_model_spec
from vidgen.services.storage import FileType
from vidgen.workers.base import BaseWorker, JobResult

logger = logging.getLogger(__name__)

STEP_BAND = (15, 85)


class GenerateWorker(BaseWorker):
    """Text/image-to-video generation for a single clip."""

    TASK_NAME = "generate"
    USES_INFERENCE = True

    def build_graph(self, job: Job, clip, project) -> dict:
        """Resolve the clip, project and job settings into a node graph."""
        options = job.settings or {}
        mode = options.get("generation_type", GenerationMode.TEXT_TO_VIDEO)
        model_id = options.get("video_model", "animateDiff")
        spec = get_model_spec(model_id)

        base_width, base_height = graph_builder.parse_resolution(project.resolution)
        frame_count = options.get("frame_count") or spec.default_frames
        if spec.max_frames:
            frame_count = min(frame_count, spec.max_frames)
        width, height, was_scaled = resource_scaler.scale(base_width, base_height, frame_count, mode, model_id)
        if was_scaled:
            self.log(f"Resolution {base_width}x{base_height} -> {width}x{height} for {spec.name}")

        params = GenerationParams(
            prompt=clip.prompt or "",
            negative_prompt=clip.negative_prompt or None,
            width=width,
            height=height,
            steps=clip.steps_count,
            # fixed-resolution models carry their own guidance defaults
            cfg=clip.cfg_scale if spec.native_resolution is None else None,
            seed=clip.seed_value,
            frame_count=frame_count,
            fps=project.frame_rate or spec.default_fps,
            reference_image=clip.reference_image if mode == GenerationMode.IMAGE_TO_VIDEO else None,
            ip_adapter_weight=clip.ip_adapter_weight,
            ip_adapter_preset=options.get("ip_adapter_preset") or "PLUS_FACE",
            denoise=options.get("denoise") if options.get("denoise") is not None else 0.5,
        )
        graph = graph_builder.build(mode, model_id, params)
        self.log(f"Workflow built for {spec.name} ({mode}, {len(graph)} nodes)")
        return graph

    async def _on_inference_event(self, event):
        if isinstance(event, StepProgress):
            await self.reporter.report(
                remap_step(event.value, event.max, STEP_BAND),
                f"Processing step {event.value}/{event.max}",
                step=event.node,
            )
        elif isinstance(event, NodeTransition):
            await self.reporter.message(f"Executing node: {event.node}", step=event.node)

    async def execute(self, job: Job) -> JobResult:
        if not job.input_clip_ids:
            raise ValidationError("Generate job has no clip")
        clip_id = job.input_clip_ids[0]
        clip = self.store.get_clip(clip_id)
        project = self.store.get_project(job.project_id)
        storage = self.ctx.storage

        self.store.set_clip_status(clip_id, ClipStatus.PROCESSING)
        self.log("Started clip generation")
        await self.reporter.report(5, "Starting generation...")

        await self.reporter.report(10, "Building workflow...")
        graph = self.build_graph(job, clip, project)

        await self.reporter.report(15, "Freeing GPU memory...")
        await self.ctx.inference.ensure_available()
        await self.ctx.inference.release_memory()
        self.checkpoint()

        outputs = await self.ctx.inference.execute(
            graph,
            on_progress=self._on_inference_event,
            timeout=self.settings.INFERENCE_TIMEOUT_GENERATE,
        )
        self.log("Inference execution completed")
        self.checkpoint()

        await self.reporter.report(85, "Downloading output...")
        artifact = graph_builder.find_video_output(outputs)
        if artifact is None:
            raise ArtifactMissingError("No output video found in execution result")
        video = await self.ctx.inference.fetch_artifact(artifact["filename"], artifact["subfolder"], artifact["type"])

        file_path = clip.file_path or str(storage.full_path(project.project_name, FileType.CLIP, clip.order_index))
        storage.write_bytes(file_path, video)
        self.log(f"Video saved to {file_path}")

        await self.reporter.report(90, "Generating thumbnail...")
        thumbnail_path = clip.thumbnail_path or str(
            storage.full_path(project.project_name, FileType.THUMB, clip.order_index, "jpg")
        )
        try:
            await self.ctx.media.extract_thumbnail(file_path, thumbnail_path)
            self.log("Thumbnail generated")
        except VidgenError as e:
            self.log(f"Failed to generate thumbnail: {e.message}", "warn")
            thumbnail_path = None

        await self.reporter.report(95, "Updating database...")
        info = await self.ctx.media.probe(file_path)
        self.store.update_clip(
            clip_id,
            status=ClipStatus.COMPLETED,
            file_path=file_path,
            file_name=clip.file_name or Path(file_path).name,
            thumbnail_path=thumbnail_path,
            thumbnail_name=Path(thumbnail_path).name if thumbnail_path else None,
            duration_sec=info.duration,
            frame_count=info.frame_count,
        )

        return JobResult(
            output_path=file_path,
            settings_update={
                "duration": info.duration,
                "frame_count": info.frame_count,
                "width": info.width,
                "height": info.height,
            },
            message="Clip generation completed successfully",
            data={
                "clip_id": clip_id,
                "file_path": file_path,
                "thumbnail_path": thumbnail_path,
                "duration_sec": info.duration,
                "frame_count": info.frame_count,
            },
        )

    async def on_failure(self, job: Job):
        for clip_id in job.input_clip_ids or []:
            try:
                clip = self.store.get_clip(clip_id)
                if clip.status in (ClipStatus.PENDING, ClipStatus.PROCESSING):
                    self.store.set_clip_status(clip_id, ClipStatus.FAILED)
            except VidgenError as e:
                logger.warning(f"[generate] Could not fail clip {clip_id}: {e.message}")
