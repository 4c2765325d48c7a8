"""
RQ Task Definitions
Synchronous entry points RQ calls; each runs one worker against the
process-wide context.
"""

import asyncio
import logging
from typing import Any, Dict, Type

from vidgen.workers.base import BaseWorker
from vidgen.workers.context import get_context
from vidgen.workers.export import ExportWorker
from vidgen.workers.generate import GenerateWorker
from vidgen.workers.interpolate import InterpolateWorker
from vidgen.workers.long_video import LongVideoWorker
from vidgen.workers.merge import MergeWorker
from vidgen.workers.upscale import EnhanceWorker, UpscaleWorker

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Helper to run async code in sync context (for RQ)."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def _run(worker_class: Type[BaseWorker], job_id: str) -> Dict[str, Any]:
    logger.info(f"[Task] Starting {worker_class.TASK_NAME}: {job_id}")
    return _run_async(worker_class(get_context()).run(job_id))


def run_generate_task(job_id: str) -> Dict[str, Any]:
    return _run(GenerateWorker, job_id)


def run_merge_task(job_id: str) -> Dict[str, Any]:
    return _run(MergeWorker, job_id)


def run_upscale_task(job_id: str) -> Dict[str, Any]:
    return _run(UpscaleWorker, job_id)


def run_enhance_task(job_id: str) -> Dict[str, Any]:
    return _run(EnhanceWorker, job_id)


def run_interpolate_task(job_id: str) -> Dict[str, Any]:
    return _run(InterpolateWorker, job_id)


def run_export_task(job_id: str) -> Dict[str, Any]:
    return _run(ExportWorker, job_id)


def run_long_video_task(job_id: str) -> Dict[str, Any]:
    return _run(LongVideoWorker, job_id)


__all__ = [
    "run_generate_task",
    "run_merge_task",
    "run_upscale_task",
    "run_enhance_task",
    "run_interpolate_task",
    "run_export_task",
    "run_long_video_task",
]
