"""
API Dependencies
Common dependencies for FastAPI routes. Everything hangs off ``app.state``,
populated by the application lifespan.
"""

from typing import Generator

from fastapi import HTTPException, Request, status

from vidgen.core.exceptions import JobNotFoundError, ServiceUnavailableError, ValidationError, VidgenError
from vidgen.services.inference_client import InferenceClient
from vidgen.services.job_store import JobStore
from vidgen.services.progress import ProgressChannel
from vidgen.services.storage import StorageService
from vidgen.workers.queue import QueueManager


def get_db(request: Request) -> Generator:
    """Get database session."""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def get_store(request: Request) -> JobStore:
    return request.app.state.store


def get_queue_manager(request: Request) -> QueueManager:
    return request.app.state.queue_manager


def get_inference(request: Request) -> InferenceClient:
    return request.app.state.inference


def get_storage(request: Request) -> StorageService:
    return request.app.state.storage


def get_channel(request: Request) -> ProgressChannel:
    return request.app.state.channel


def http_error(error: VidgenError) -> HTTPException:
    """Map a domain error onto an HTTP status."""
    if isinstance(error, JobNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, ServiceUnavailableError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail = {"message": error.message}
    if error.details:
        detail["details"] = error.details
    return HTTPException(status_code=code, detail=detail)
