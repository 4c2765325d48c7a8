"""
Base Worker Classes
Job lifecycle shared by every queue worker: status transitions, progress,
logging, cancellation checkpoints and failure handling.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from vidgen.core.exceptions import JobCancelledError, ValidationError, VidgenError
from vidgen.models import Job, JobStatus
from vidgen.services.progress import ProgressReporter
from vidgen.workers.context import WorkerContext

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    """What a worker hands back to the lifecycle on success."""
    output_path: Optional[str] = None
    output_file_name: Optional[str] = None
    settings_update: Dict[str, Any] = field(default_factory=dict)
    input_clip_ids: Optional[List[str]] = None
    message: str = "Completed!"
    data: Dict[str, Any] = field(default_factory=dict)
    event_fields: Dict[str, Any] = field(default_factory=dict)


class BaseWorker(ABC):
    """
    Abstract base class for queue workers.

    ``run`` owns the job lifecycle; subclasses implement ``execute`` and
    call ``checkpoint`` between steps so cancellation is observed.

    Features:
    - pending -> processing -> completed|failed transitions
    - Monotonic progress persisted and broadcast
    - JobLog audit trail plus structured logging
    - Best-effort GPU memory release after failures
    """

    TASK_NAME = "job"
    USES_INFERENCE = False

    def __init__(self, context: WorkerContext):
        self.ctx = context
        self.store = context.store
        self.settings = context.settings
        self.start_time: Optional[datetime] = None
        self.job_id: Optional[str] = None
        self.reporter: Optional[ProgressReporter] = None
        self.uses_inference = self.USES_INFERENCE

    def _log_start(self, **context):
        self.start_time = datetime.utcnow()
        logger.info(f"[START] {self.TASK_NAME} | Job: {self.job_id} | Context: {context}")

    def _duration(self) -> float:
        return (datetime.utcnow() - self.start_time).total_seconds() if self.start_time else 0

    def _log_complete(self, result_summary: str = ""):
        logger.info(f"[COMPLETE] {self.TASK_NAME} | Job: {self.job_id} | Duration: {self._duration():.2f}s | {result_summary}")

    def _log_error(self, error: Exception):
        logger.error(f"[ERROR] {self.TASK_NAME} | Job: {self.job_id} | Duration: {self._duration():.2f}s | Error: {error}")

    def log(self, message: str, level: str = "info"):
        """Write to the job's audit trail and the process log."""
        self.store.add_log(self.job_id, message, level)
        getattr(logger, "warning" if level == "warn" else level, logger.info)(f"[{self.TASK_NAME}] {self.job_id}: {message}")

    def resolve_input_path(self, options: Dict[str, Any]) -> Path:
        """Input video named by ``input_path`` or by a clip's file."""
        path = options.get("input_path")
        if not path and options.get("clip_id"):
            path = self.store.get_clip(options["clip_id"]).file_path
        if not path:
            raise ValidationError("Job has neither input_path nor a clip with a file")
        return self.ctx.storage.require_file(path)

    def checkpoint(self):
        """Raise ``JobCancelledError`` if the job was cancelled."""
        if self.store.is_cancelled(self.job_id):
            raise JobCancelledError(f"Job {self.job_id} was cancelled")

    async def run(self, job_id: str) -> Dict[str, Any]:
        self.job_id = job_id
        job = self.store.get_job(job_id)

        if job.status == JobStatus.CANCELLED:
            logger.info(f"[{self.TASK_NAME}] Skipping cancelled job {job_id}")
            return {"job_id": job_id, "status": JobStatus.CANCELLED}
        if not self.store.mark_processing(job_id):
            logger.warning(f"[{self.TASK_NAME}] Job {job_id} is {job.status}, not pending; skipping")
            return {"job_id": job_id, "status": job.status}

        self.reporter = ProgressReporter(job_id, self.store, self.ctx.channel)
        self._log_start(job_type=job.job_type, project_id=job.project_id)

        try:
            result = await self.execute(job)
            self.checkpoint()
            completed = self.store.mark_completed(
                job_id,
                output_path=result.output_path,
                output_file_name=result.output_file_name,
                settings_update=result.settings_update,
                input_clip_ids=result.input_clip_ids,
            )
            if not completed:
                raise JobCancelledError(f"Job {job_id} was cancelled")

        except JobCancelledError:
            self.log("Job cancelled; stopping", "warn")
            await self.on_failure(job)
            await self.reporter.fail("Job cancelled")
            if self.uses_inference:
                await self.ctx.inference.release_memory()
            return {"job_id": job_id, "status": JobStatus.CANCELLED}

        except Exception as e:
            message = e.message if isinstance(e, VidgenError) else (str(e) or type(e).__name__)
            self._log_error(e)
            self.store.mark_failed(job_id, message)
            self.store.add_log(job_id, f"{self.TASK_NAME} failed: {message}", "error")
            await self.on_failure(job)
            await self.reporter.fail(message)
            if self.uses_inference:
                await self.ctx.inference.release_memory()
            raise

        self.log(result.message)
        await self.reporter.complete(result.message, data=result.data, **result.event_fields)
        if self.uses_inference:
            await self.ctx.inference.release_memory()
        self._log_complete(f"Output: {result.output_path}")
        return {"job_id": job_id, "status": JobStatus.COMPLETED, "output_path": result.output_path}

    async def on_failure(self, job: Job):
        """Hook for subclasses to roll related rows forward to a failed state."""

    @abstractmethod
    async def execute(self, job: Job) -> JobResult:
        """
        Do the work. Must be implemented by subclasses.

        Returns:
            JobResult describing the output
        """
        pass


__all__ = [
    "JobResult",
    "BaseWorker",
]
