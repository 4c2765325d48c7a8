# Workers package - async job processing with RQ

from vidgen.workers.base import BaseWorker, JobResult
from vidgen.workers.context import WorkerContext, build_context, get_context, install_context
from vidgen.workers.queue import QueueManager

__all__ = [
    # Base
    "BaseWorker",
    "JobResult",
    # Context
    "WorkerContext",
    "build_context",
    "get_context",
    "install_context",
    # Queue
    "QueueManager",
]
