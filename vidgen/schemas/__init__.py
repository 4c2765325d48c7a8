# Pydantic schemas package
from vidgen.schemas.job import JobResponse, JobLogResponse, EnqueueResponse, CancelResponse
from vidgen.schemas.project import ProjectCreate, ProjectResponse, ClipResponse, ClipListResponse
from vidgen.schemas.progress import EventType, ProgressEvent
from vidgen.schemas.processing import (
    GenerateClipRequest, LongVideoRequest, MergeRequest, UpscaleRequest, InterpolateRequest,
    EnhanceRequest, ExportRequest, PreviewResolutionRequest
)

__all__ = [
    "JobResponse", "JobLogResponse", "EnqueueResponse", "CancelResponse",
    "ProjectCreate", "ProjectResponse", "ClipResponse", "ClipListResponse",
    "EventType", "ProgressEvent",
    # Processing requests
    "GenerateClipRequest", "LongVideoRequest", "MergeRequest", "UpscaleRequest", "InterpolateRequest",
    "EnhanceRequest", "ExportRequest", "PreviewResolutionRequest"
]
