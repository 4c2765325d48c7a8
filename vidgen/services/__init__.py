# Services package - business logic and external integrations
from vidgen.services.inference_client import InferenceClient
from vidgen.services.job_store import JobStore
from vidgen.services.media_tool import MediaTool
from vidgen.services.progress import ProgressChannel, ProgressReporter
from vidgen.services.storage import StorageService

__all__ = [
    "InferenceClient",
    "JobStore",
    "MediaTool",
    "ProgressChannel",
    "ProgressReporter",
    "StorageService",
]
