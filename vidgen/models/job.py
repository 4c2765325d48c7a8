"""
Job Model
Database models for queued work units and their append-only logs.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey, JSON
from sqlalchemy.orm import relationship

from vidgen.core.database import Base


class JobType:
    """Job type constants. Each type has its own queue."""
    GENERATE = "generate"
    MERGE = "merge"
    UPSCALE = "upscale"
    INTERPOLATE = "interpolate"
    EXPORT = "export"
    LONG_VIDEO = "longVideo"

    ALL = [GENERATE, MERGE, UPSCALE, INTERPOLATE, EXPORT, LONG_VIDEO]


class JobStatus:
    """Job status constants."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ACTIVE = [PENDING, PROCESSING]
    TERMINAL = [COMPLETED, FAILED, CANCELLED]


class Job(Base):
    """Queued job model."""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    job_type = Column(String(50), nullable=False)

    # Request
    input_clip_ids = Column(JSON, default=list)
    settings = Column(JSON, default=dict)  # job-type specific payload, merged with output metadata

    # Result
    output_path = Column(String(500), nullable=True)
    output_file_name = Column(String(255), nullable=True)

    progress_percent = Column(Integer, nullable=False, default=0)
    status = Column(String(50), nullable=False, default=JobStatus.PENDING, index=True)
    error_message = Column(Text, nullable=True)

    # Timestamps
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="jobs")
    logs = relationship(
        "JobLog",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="JobLog.id",
    )


class JobLog(Base):
    """Append-only log line for a job."""

    __tablename__ = "job_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    level = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    job = relationship("Job", back_populates="logs")
