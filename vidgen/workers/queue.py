"""
Queue Management Utilities
Creates the pending job record, then hands the job to its RQ queue.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List

from redis.exceptions import RedisError
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job as RQJob

from vidgen.core.config import Settings, get_settings
from vidgen.core.exceptions import ServiceUnavailableError, ValidationError
from vidgen.core.redis import Queues, RedisManager
from vidgen.models import ClipStatus, JobStatus, JobType
from vidgen.services import graph_builder
from vidgen.services.graph_builder import GenerationParams
from vidgen.services.job_store import JobStore
from vidgen.services.media_tool import QUALITY_TIERS, TRANSITIONS, VIDEO_CODECS
from vidgen.services.model_catalog import GenerationMode, check_mode

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Manages one RQ queue per job type.

    Features:
    - Pending DB record created before the queue sees the job
    - RQ job id equal to the DB job id
    - Per-type timeouts, no automatic retries
    - Cancellation of pending and processing jobs
    """

    def __init__(self, redis_manager: RedisManager, store: JobStore, settings: Settings = None):
        self.redis_manager = redis_manager
        self.store = store
        self.settings = settings or get_settings()
        self._queues: Dict[str, Queue] = {}

    def get_queue(self, queue_name: str) -> Queue:
        if queue_name not in self._queues:
            self._queues[queue_name] = Queue(name=queue_name, connection=self.redis_manager.get_connection())
            logger.debug(f"Created queue: {queue_name}")
        return self._queues[queue_name]

    def _enqueue(self, queue_name: str, task: Callable, job_id: str, job_type: str, timeout: int) -> str:
        try:
            self.get_queue(queue_name).enqueue(
                task,
                job_id,
                job_id=job_id,
                job_timeout=timeout,
                meta={"type": job_type, "created_at": datetime.utcnow().isoformat()},
            )
        except RedisError as e:
            self.store.mark_failed(job_id, f"Queue unavailable: {e}")
            raise ServiceUnavailableError(f"Queue unavailable: {e}", retryable=True)
        logger.info(f"Enqueued {job_type} job: {job_id}")
        return job_id

    # -----------------------------------------------------------------------
    # Enqueue
    # -----------------------------------------------------------------------

    def enqueue_generate(self, project_id: str, clip: Dict[str, Any], options: Dict[str, Any]) -> Dict[str, str]:
        """
        Create a pending clip and its generate job.

        Args:
            project_id: Owning project
            clip: Clip columns (prompt, negative_prompt, seed_value, ...)
            options: generation_type, video_model, frame_count, denoise, ip_adapter_preset

        Returns:
            Dict with ``job_id`` and ``clip_id``
        """
        from vidgen.workers.tasks import run_generate_task

        clip = dict(clip)
        mode = options.get("generation_type", GenerationMode.TEXT_TO_VIDEO)
        model_id = options.get("video_model", "animateDiff")
        check_mode(model_id, mode)
        graph_builder.validate(
            mode,
            model_id,
            GenerationParams(
                prompt=clip.get("prompt") or "",
                steps=clip.get("steps_count"),
                cfg=clip.get("cfg_scale"),
                seed=clip.get("seed_value"),
                frame_count=options.get("frame_count"),
                reference_image=clip.get("reference_image"),
                denoise=options.get("denoise"),
                ip_adapter_preset=options.get("ip_adapter_preset") or "PLUS_FACE",
            ),
        )

        order_index = clip.pop("order_index", None) or self.store.next_order_index(project_id)
        clip.setdefault("clip_name", f"Clip {order_index}")
        record = self.store.create_clip(project_id, order_index=order_index, status=ClipStatus.PENDING, **clip)
        job_id = self.store.create_job(project_id, JobType.GENERATE, settings=options, input_clip_ids=[record.id])
        self._enqueue(Queues.GENERATE, run_generate_task, job_id, JobType.GENERATE, self.settings.JOB_TIMEOUT_GENERATE)
        return {"job_id": job_id, "clip_id": record.id}

    def enqueue_merge(self, project_id: str, clip_ids: List[str], transition: str = "none", transition_duration: float = 0.5) -> str:
        from vidgen.workers.tasks import run_merge_task

        if not clip_ids:
            raise ValidationError("clip_ids must not be empty")
        if transition not in TRANSITIONS:
            raise ValidationError(f"Unsupported transition: {transition}")
        job_id = self.store.create_job(
            project_id,
            JobType.MERGE,
            settings={"transition": transition, "transition_duration": transition_duration},
            input_clip_ids=clip_ids,
        )
        return self._enqueue(Queues.MERGE, run_merge_task, job_id, JobType.MERGE, self.settings.JOB_TIMEOUT_MERGE)

    def enqueue_upscale(self, project_id: str, options: Dict[str, Any]) -> str:
        from vidgen.workers.tasks import run_upscale_task

        if not (options.get("input_path") or options.get("clip_id")):
            raise ValidationError("input_path or clip_id is required")
        if options.get("scale", 2) not in (2, 4):
            raise ValidationError("scale must be 2 or 4")
        job_id = self.store.create_job(
            project_id,
            JobType.UPSCALE,
            settings=options,
            input_clip_ids=[options["clip_id"]] if options.get("clip_id") else [],
        )
        return self._enqueue(Queues.UPSCALE, run_upscale_task, job_id, JobType.UPSCALE, self.settings.JOB_TIMEOUT_UPSCALE)

    def enqueue_enhance(self, project_id: str, clip_id: str, scale: int = 2, target_fps: int = 30) -> str:
        """Enhance jobs are upscale jobs tagged with ``operation: enhance``."""
        from vidgen.workers.tasks import run_enhance_task

        clip = self.store.get_clip(clip_id)
        if clip.status != ClipStatus.COMPLETED:
            raise ValidationError(f"Clip {clip_id} is {clip.status}, not completed")
        if clip.file_name and "_enhanced_" in clip.file_name:
            raise ValidationError("This clip has already been enhanced")
        job_id = self.store.create_job(
            project_id,
            JobType.UPSCALE,
            settings={"operation": "enhance", "clip_id": clip_id, "scale": scale, "target_fps": target_fps},
            input_clip_ids=[clip_id],
        )
        return self._enqueue(Queues.UPSCALE, run_enhance_task, job_id, JobType.UPSCALE, self.settings.JOB_TIMEOUT_UPSCALE)

    def enqueue_interpolate(self, project_id: str, options: Dict[str, Any]) -> str:
        from vidgen.workers.tasks import run_interpolate_task

        if not (options.get("input_path") or options.get("clip_id")):
            raise ValidationError("input_path or clip_id is required")
        if options.get("target_fps", 24) <= 0:
            raise ValidationError("target_fps must be positive")
        job_id = self.store.create_job(
            project_id,
            JobType.INTERPOLATE,
            settings=options,
            input_clip_ids=[options["clip_id"]] if options.get("clip_id") else [],
        )
        return self._enqueue(
            Queues.INTERPOLATE, run_interpolate_task, job_id, JobType.INTERPOLATE, self.settings.JOB_TIMEOUT_INTERPOLATE
        )

    def enqueue_export(self, project_id: str, clip_ids: List[str], options: Dict[str, Any]) -> str:
        from vidgen.workers.tasks import run_export_task

        if not clip_ids:
            raise ValidationError("clip_ids must not be empty")
        encode = options.get("encode", {})
        if encode.get("codec", "h264") not in VIDEO_CODECS:
            raise ValidationError(f"Unsupported codec: {encode.get('codec')}")
        if encode.get("quality", "standard") not in QUALITY_TIERS:
            raise ValidationError(f"Unknown quality tier: {encode.get('quality')}")
        job_id = self.store.create_job(project_id, JobType.EXPORT, settings=options, input_clip_ids=clip_ids)
        return self._enqueue(Queues.EXPORT, run_export_task, job_id, JobType.EXPORT, self.settings.JOB_TIMEOUT_EXPORT)

    def enqueue_long_video(self, project_id: str, options: Dict[str, Any]) -> str:
        from vidgen.workers.long_video import validate_options
        from vidgen.workers.tasks import run_long_video_task

        validate_options(options, self.settings)
        job_id = self.store.create_job(project_id, JobType.LONG_VIDEO, settings=options)
        return self._enqueue(
            Queues.LONG_VIDEO, run_long_video_task, job_id, JobType.LONG_VIDEO, self.settings.JOB_TIMEOUT_LONG_VIDEO
        )

    # -----------------------------------------------------------------------
    # Cancellation and stats
    # -----------------------------------------------------------------------

    def _cancel_rq_job(self, job_id: str):
        try:
            RQJob.fetch(job_id, connection=self.redis_manager.get_connection()).cancel()
        except NoSuchJobError:
            logger.debug(f"RQ job already gone: {job_id}")
        except RedisError as e:
            # the DB status alone stops the worker from picking it up
            logger.warning(f"Could not cancel RQ job {job_id}: {e}")

    def cancel(self, job_id: str) -> Dict[str, Any]:
        """
        Cancel an active job.

        A pending job is removed from its queue and its placeholder clip is
        deleted. A processing job is only flagged; the worker stops at its
        next checkpoint and keeps whatever it already persisted.

        Raises:
            JobNotFoundError: unknown job
            ValidationError: job already finished
        """
        job = self.store.get_job(job_id)
        previous = self.store.mark_cancelled(job_id)

        if previous == JobStatus.PENDING:
            self._cancel_rq_job(job_id)
            if job.job_type == JobType.GENERATE:
                for clip in self.store.get_clips(job.input_clip_ids or [], completed_only=False):
                    if clip.status == ClipStatus.PENDING:
                        self.store.delete_clip(clip.id)
        self.store.add_log(job_id, f"Job cancelled (was {previous})", "warn")
        logger.info(f"Cancelled job {job_id} (was {previous})")
        return {"job_id": job_id, "status": JobStatus.CANCELLED, "previous_status": previous}

    def get_queue_stats(self) -> Dict[str, Dict[str, Any]]:
        stats = {}
        for name in Queues.ALL:
            try:
                queue = self.get_queue(name)
                stats[name] = {
                    "queued": len(queue),
                    "started": queue.started_job_registry.count,
                    "finished": queue.finished_job_registry.count,
                    "failed": queue.failed_job_registry.count,
                }
            except RedisError as e:
                stats[name] = {"error": str(e)}
        return stats


__all__ = ["QueueManager"]
