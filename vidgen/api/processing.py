"""
Processing API Routes
Enqueue endpoints. Each returns the job id as soon as the pending record
exists; progress is followed over the events stream or by polling the job.
"""

import logging

from fastapi import APIRouter, Depends, status

from vidgen.api.deps import get_queue_manager, http_error
from vidgen.core.exceptions import VidgenError
from vidgen.schemas.job import EnqueueResponse
from vidgen.schemas.processing import (
    EnhanceRequest,
    ExportRequest,
    GenerateClipRequest,
    InterpolateRequest,
    LongVideoRequest,
    MergeRequest,
    UpscaleRequest,
)
from vidgen.workers.queue import QueueManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def generate_clip(request: GenerateClipRequest, queue: QueueManager = Depends(get_queue_manager)):
    """Create a pending clip and queue its generation."""
    try:
        result = queue.enqueue_generate(request.project_id, request.clip_fields(), request.job_settings())
    except VidgenError as e:
        raise http_error(e)
    return EnqueueResponse(job_id=result["job_id"], clip_id=result["clip_id"])


@router.post("/long-video", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def generate_long_video(request: LongVideoRequest, queue: QueueManager = Depends(get_queue_manager)):
    try:
        job_id = queue.enqueue_long_video(request.project_id, request.model_dump(exclude={"project_id"}))
    except VidgenError as e:
        raise http_error(e)
    return EnqueueResponse(job_id=job_id)


@router.post("/merge", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def merge_clips(request: MergeRequest, queue: QueueManager = Depends(get_queue_manager)):
    try:
        job_id = queue.enqueue_merge(request.project_id, request.clip_ids, request.transition, request.transition_duration)
    except VidgenError as e:
        raise http_error(e)
    return EnqueueResponse(job_id=job_id)


@router.post("/upscale", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def upscale_video(request: UpscaleRequest, queue: QueueManager = Depends(get_queue_manager)):
    try:
        job_id = queue.enqueue_upscale(request.project_id, request.model_dump(exclude={"project_id"}, exclude_none=True))
    except VidgenError as e:
        raise http_error(e)
    return EnqueueResponse(job_id=job_id)


@router.post("/enhance", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def enhance_clip(request: EnhanceRequest, queue: QueueManager = Depends(get_queue_manager)):
    try:
        job_id = queue.enqueue_enhance(request.project_id, request.clip_id, request.scale, request.target_fps)
    except VidgenError as e:
        raise http_error(e)
    return EnqueueResponse(job_id=job_id, clip_id=request.clip_id)


@router.post("/interpolate", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def interpolate_video(request: InterpolateRequest, queue: QueueManager = Depends(get_queue_manager)):
    try:
        job_id = queue.enqueue_interpolate(
            request.project_id, request.model_dump(exclude={"project_id"}, exclude_none=True)
        )
    except VidgenError as e:
        raise http_error(e)
    return EnqueueResponse(job_id=job_id)


@router.post("/export", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def export_video(request: ExportRequest, queue: QueueManager = Depends(get_queue_manager)):
    try:
        job_id = queue.enqueue_export(request.project_id, request.clip_ids, request.job_settings())
    except VidgenError as e:
        raise http_error(e)
    return EnqueueResponse(job_id=job_id)
