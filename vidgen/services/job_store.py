"""
Job Store
The single gateway workers and the queue manager use to read and write
project, clip, job and job-log rows.

Every method opens and closes its own session. Returned ORM objects are
detached snapshots; mutate state through the store, never through them.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func

from vidgen.core.config import settings
from vidgen.core.database import Database
from vidgen.core.exceptions import ArtifactMissingError, JobNotFoundError, ValidationError
from vidgen.models import Clip, ClipStatus, Job, JobLog, JobStatus, Project

logger = logging.getLogger(__name__)


class JobStore:
    """Persistence operations used by the worker pool."""

    def __init__(self, database: Database):
        self.database = database

    def _get(self, db, model, row_id: str, label: str):
        row = db.query(model).filter(model.id == row_id).first()
        if row is None:
            raise JobNotFoundError(f"{label} not found: {row_id}")
        return row

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job:
        db = self.database.session()
        try:
            job = self._get(db, Job, job_id, "Job")
            db.expunge(job)
            return job
        finally:
            db.close()

    def get_project(self, project_id: str) -> Project:
        db = self.database.session()
        try:
            project = self._get(db, Project, project_id, "Project")
            db.expunge(project)
            return project
        finally:
            db.close()

    def get_clip(self, clip_id: str) -> Clip:
        db = self.database.session()
        try:
            clip = self._get(db, Clip, clip_id, "Clip")
            db.expunge(clip)
            return clip
        finally:
            db.close()

    def get_clips(self, clip_ids: Iterable[str], completed_only: bool = True) -> List[Clip]:
        """Clips ordered by ``order_index``."""
        clip_ids = list(clip_ids)
        if not clip_ids:
            return []
        db = self.database.session()
        try:
            query = db.query(Clip).filter(Clip.id.in_(clip_ids))
            if completed_only:
                query = query.filter(Clip.status == ClipStatus.COMPLETED)
            clips = query.order_by(Clip.order_index.asc()).all()
            for clip in clips:
                db.expunge(clip)
            return clips
        finally:
            db.close()

    def next_order_index(self, project_id: str) -> int:
        """One past the highest clip index, ignoring long-video segment indexes."""
        db = self.database.session()
        try:
            highest = (
                db.query(func.max(Clip.order_index))
                .filter(Clip.project_id == project_id, Clip.order_index < settings.LONG_VIDEO_ORDER_OFFSET)
                .scalar()
            )
            return (highest or 0) + 1
        finally:
            db.close()

    def get_status(self, job_id: str) -> str:
        db = self.database.session()
        try:
            return self._get(db, Job, job_id, "Job").status
        finally:
            db.close()

    def is_cancelled(self, job_id: str) -> bool:
        return self.get_status(job_id) == JobStatus.CANCELLED

    # -----------------------------------------------------------------------
    # Job lifecycle
    # -----------------------------------------------------------------------

    def create_job(
        self,
        project_id: str,
        job_type: str,
        settings: Optional[Dict[str, Any]] = None,
        input_clip_ids: Optional[List[str]] = None,
        output_path: Optional[str] = None,
        output_file_name: Optional[str] = None,
    ) -> str:
        """Insert a ``pending`` job and return its id."""
        db = self.database.session()
        try:
            self._get(db, Project, project_id, "Project")
            job = Job(
                id=str(uuid.uuid4()),
                project_id=project_id,
                job_type=job_type,
                settings=settings or {},
                input_clip_ids=input_clip_ids or [],
                output_path=output_path,
                output_file_name=output_file_name,
                status=JobStatus.PENDING,
                progress_percent=0,
            )
            db.add(job)
            db.commit()
            return job.id
        finally:
            db.close()

    def mark_processing(self, job_id: str) -> bool:
        """``pending -> processing``. Returns False if the job is no longer pending."""
        db = self.database.session()
        try:
            job = self._get(db, Job, job_id, "Job")
            if job.status != JobStatus.PENDING:
                return False
            job.status = JobStatus.PROCESSING
            job.started_at = datetime.utcnow()
            job.error_message = None
            db.commit()
            return True
        finally:
            db.close()

    def update_progress(self, job_id: str, percent: int) -> int:
        """Raise ``progress_percent``; never lowers it. Returns the stored value."""
        db = self.database.session()
        try:
            job = self._get(db, Job, job_id, "Job")
            percent = max(0, min(int(percent), 99))
            if job.status == JobStatus.PROCESSING and percent > (job.progress_percent or 0):
                job.progress_percent = percent
                db.commit()
            return job.progress_percent
        finally:
            db.close()

    def add_log(self, job_id: str, message: str, level: str = "info"):
        db = self.database.session()
        try:
            db.add(JobLog(job_id=job_id, level=level, message=message))
            db.commit()
        finally:
            db.close()

    def mark_completed(
        self,
        job_id: str,
        output_path: Optional[str] = None,
        output_file_name: Optional[str] = None,
        settings_update: Optional[Dict[str, Any]] = None,
        input_clip_ids: Optional[List[str]] = None,
    ) -> bool:
        """
        ``processing -> completed`` with progress 100.

        Raises:
            ArtifactMissingError: ``output_path`` was given but no file exists there
        """
        if output_path is not None and not Path(output_path).is_file():
            raise ArtifactMissingError(f"Output file does not exist: {output_path}")

        db = self.database.session()
        try:
            job = self._get(db, Job, job_id, "Job")
            if job.status != JobStatus.PROCESSING:
                logger.warning(f"[JobStore] Not completing job {job_id} in status {job.status}")
                return False
            job.status = JobStatus.COMPLETED
            job.progress_percent = 100
            job.completed_at = datetime.utcnow()
            if output_path is not None:
                job.output_path = str(output_path)
                job.output_file_name = output_file_name or Path(output_path).name
            if settings_update:
                job.settings = {**(job.settings or {}), **settings_update}
            if input_clip_ids is not None:
                job.input_clip_ids = list(input_clip_ids)
            db.commit()
            return True
        finally:
            db.close()

    def mark_failed(self, job_id: str, error_message: str) -> bool:
        """Record a failure. Cancelled and completed jobs keep their status."""
        db = self.database.session()
        try:
            job = self._get(db, Job, job_id, "Job")
            if job.status in (JobStatus.CANCELLED, JobStatus.COMPLETED):
                return False
            job.status = JobStatus.FAILED
            job.error_message = error_message
            job.completed_at = datetime.utcnow()
            db.commit()
            return True
        finally:
            db.close()

    def mark_cancelled(self, job_id: str) -> str:
        """Cancel an active job. Returns the status it had before."""
        db = self.database.session()
        try:
            job = self._get(db, Job, job_id, "Job")
            previous = job.status
            if previous not in JobStatus.ACTIVE:
                raise ValidationError(f"Job {job_id} is already {previous}")
            job.status = JobStatus.CANCELLED
            job.completed_at = datetime.utcnow()
            db.commit()
            return previous
        finally:
            db.close()

    def reset_stale(self) -> int:
        """Fail jobs and clips a crashed worker left in ``processing``."""
        db = self.database.session()
        try:
            jobs = db.query(Job).filter(Job.status == JobStatus.PROCESSING).all()
            for job in jobs:
                job.status = JobStatus.FAILED
                job.error_message = "Worker restarted while the job was processing"
                job.completed_at = datetime.utcnow()
            clips = db.query(Clip).filter(Clip.status == ClipStatus.PROCESSING).all()
            for clip in clips:
                clip.status = ClipStatus.FAILED
            db.commit()
            if jobs or clips:
                logger.warning(f"[JobStore] Reset {len(jobs)} stale job(s) and {len(clips)} clip(s)")
            return len(jobs)
        finally:
            db.close()

    # -----------------------------------------------------------------------
    # Clips
    # -----------------------------------------------------------------------

    def create_clip(self, project_id: str, **fields) -> Clip:
        db = self.database.session()
        try:
            self._get(db, Project, project_id, "Project")
            clip = Clip(id=str(uuid.uuid4()), project_id=project_id, **fields)
            db.add(clip)
            db.commit()
            db.refresh(clip)
            db.expunge(clip)
            return clip
        finally:
            db.close()

    def update_clip(self, clip_id: str, **fields):
        """Update clip columns. A ``status`` change must be a forward transition."""
        db = self.database.session()
        try:
            clip = self._get(db, Clip, clip_id, "Clip")
            new_status = fields.pop("status", None)
            if new_status is not None and new_status != clip.status:
                if not ClipStatus.can_transition(clip.status, new_status):
                    raise ValidationError(f"Illegal clip transition {clip.status} -> {new_status}")
                clip.status = new_status
            for name, value in fields.items():
                setattr(clip, name, value)
            db.commit()
        finally:
            db.close()

    def set_clip_status(self, clip_id: str, status: str):
        self.update_clip(clip_id, status=status)

    def delete_clip(self, clip_id: str) -> Optional[Dict[str, Optional[str]]]:
        """Delete the row. Returns the paths of its files, or None if already gone."""
        db = self.database.session()
        try:
            clip = db.query(Clip).filter(Clip.id == clip_id).first()
            if clip is None:
                return None
            files = {"file_path": clip.file_path, "thumbnail_path": clip.thumbnail_path}
            db.delete(clip)
            db.commit()
            return files
        finally:
            db.close()
