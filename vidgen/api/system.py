"""
System API Routes
Inference service status, GPU memory release, queue stats and the model catalog.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from vidgen.api.deps import get_inference, get_queue_manager, http_error
from vidgen.core.exceptions import VidgenError
from vidgen.schemas.processing import PreviewResolutionRequest
from vidgen.services import resource_scaler
from vidgen.services.inference_client import InferenceClient
from vidgen.services.model_catalog import MODEL_CATALOG, get_model_spec
from vidgen.workers.queue import QueueManager

router = APIRouter()


@router.get("/status")
async def system_status(
    inference: InferenceClient = Depends(get_inference),
    queue: QueueManager = Depends(get_queue_manager),
):
    status = {"inference": {"available": await inference.is_available(), "url": inference.base_url}}
    if status["inference"]["available"]:
        try:
            status["inference"]["stats"] = await inference.system_stats()
        except VidgenError as e:
            status["inference"]["error"] = e.message
    status["queues"] = queue.get_queue_stats()
    return status


@router.post("/free-memory")
async def free_memory(inference: InferenceClient = Depends(get_inference)):
    await inference.release_memory()
    return {"message": "Memory release requested"}


@router.post("/interrupt")
async def interrupt(inference: InferenceClient = Depends(get_inference)):
    """Stop the execution currently running on the inference service."""
    try:
        await inference.interrupt()
    except VidgenError as e:
        raise http_error(e)
    return {"message": "Interrupted"}


@router.get("/models")
async def list_models():
    return {"models": [asdict(spec) for spec in MODEL_CATALOG.values()]}


@router.post("/models/preview-resolution")
async def preview_resolution(request: PreviewResolutionRequest):
    """Resolution a generation with these inputs would actually run at."""
    try:
        spec = get_model_spec(request.video_model)
        frame_count = request.frame_count or spec.default_frames
        if spec.max_frames:
            frame_count = min(frame_count, spec.max_frames)
        scaled = resource_scaler.scale(
            request.width, request.height, frame_count, request.generation_type, request.video_model
        )
    except VidgenError as e:
        raise http_error(e)
    return {
        "model": spec.model_id,
        "requested": {"width": request.width, "height": request.height},
        "width": scaled.width,
        "height": scaled.height,
        "frame_count": frame_count,
        "was_scaled": scaled.was_scaled,
    }
