"""
Error Kinds
Exceptions raised by the orchestration layer.

Validation errors are raised before any external call and never touch job
state. Everything else raised once a job is ``processing`` is caught at the
worker boundary, persisted to ``Job.error_message`` and re-raised.
"""

from typing import Optional


class VidgenError(Exception):
    """Base exception for orchestration errors."""

    def __init__(self, message: str, retryable: bool = False, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.details = details or {}


class ValidationError(VidgenError):
    """Bad or missing parameters."""


class ServiceUnavailableError(VidgenError):
    """The inference service health probe failed."""


class InferenceTimeoutError(VidgenError):
    """A wall-clock ceiling was exceeded."""


class ExecutionError(VidgenError):
    """The inference service or a subprocess reported a failure."""


class ArtifactMissingError(VidgenError):
    """An expected output was not found after a nominally successful execution."""


class FileSystemError(VidgenError):
    """Reading or writing an artifact failed."""


class JobNotFoundError(VidgenError):
    """A job, clip or project row referenced by a job does not exist."""


class JobCancelledError(VidgenError):
    """The job was marked cancelled while it was running."""


__all__ = [
    "VidgenError",
    "ValidationError",
    "ServiceUnavailableError",
    "InferenceTimeoutError",
    "ExecutionError",
    "ArtifactMissingError",
    "FileSystemError",
    "JobNotFoundError",
    "JobCancelledError",
]
