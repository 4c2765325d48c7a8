"""
Jobs API Routes
Job status, audit logs and cancellation.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from vidgen.api.deps import get_db, get_queue_manager, http_error
from vidgen.core.exceptions import VidgenError
from vidgen.models import Job, JobLog
from vidgen.schemas.job import CancelResponse, JobLogResponse, JobResponse
from vidgen.workers.queue import QueueManager

router = APIRouter()


@router.get("/{job_id}", response_model=JobResponse)
async def get_job_status(
    job_id: str,
    db: Session = Depends(get_db),
):
    """Get job status and result."""
    job = db.query(Job).filter(Job.id == job_id).first()

    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )

    return job


@router.get("", response_model=List[JobResponse])
async def list_jobs(
    project_id: Optional[str] = None,
    job_type: Optional[str] = None,
    job_status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """List jobs with optional filters."""
    query = db.query(Job)

    if project_id:
        query = query.filter(Job.project_id == project_id)

    if job_type:
        query = query.filter(Job.job_type == job_type)

    if job_status:
        query = query.filter(Job.status == job_status)

    return query.order_by(Job.created_at.desc()).offset(offset).limit(limit).all()


@router.get("/{job_id}/logs", response_model=List[JobLogResponse])
async def get_job_logs(job_id: str, db: Session = Depends(get_db)):
    if not db.query(Job.id).filter(Job.id == job_id).first():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return db.query(JobLog).filter(JobLog.job_id == job_id).order_by(JobLog.id.asc()).all()


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel_job(job_id: str, queue: QueueManager = Depends(get_queue_manager)):
    """
    Cancel a pending or processing job.

    Pending jobs never start. Processing jobs stop at their next step
    boundary and keep any clips they already finished.
    """
    try:
        return queue.cancel(job_id)
    except VidgenError as e:
        raise http_error(e)
