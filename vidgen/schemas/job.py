"""
Job Schemas
Pydantic models for job API responses.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel


class JobResponse(BaseModel):
    """Authoritative job record, also the polling fallback for progress."""
    id: str
    project_id: str
    job_type: str
    status: str
    progress_percent: int = 0
    input_clip_ids: List[str] = []
    settings: Dict[str, Any] = {}
    output_path: Optional[str] = None
    output_file_name: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobLogResponse(BaseModel):
    """One audit-trail line."""
    id: int
    level: str
    message: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EnqueueResponse(BaseModel):
    """Returned by every enqueue endpoint once the pending record exists."""
    job_id: str
    status: str = "pending"
    clip_id: Optional[str] = None


class CancelResponse(BaseModel):
    job_id: str
    status: str
    previous_status: str
