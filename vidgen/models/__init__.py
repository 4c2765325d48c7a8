# Database models package
from vidgen.models.project import Project
from vidgen.models.clip import Clip, ClipStatus
from vidgen.models.job import Job, JobLog, JobStatus, JobType

__all__ = [
    "Project",
    "Clip",
    "ClipStatus",
    "Job",
    "JobLog",
    "JobStatus",
    "JobType",
]
