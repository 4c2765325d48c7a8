"""
Events API Routes
Server-sent progress stream for one job, relayed from its pub/sub channel.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from vidgen.api.deps import get_channel, get_store, http_error
from vidgen.core.config import settings
from vidgen.core.exceptions import VidgenError
from vidgen.models import JobStatus
from vidgen.schemas.progress import EventType, ProgressEvent
from vidgen.services.job_store import JobStore
from vidgen.services.progress import ProgressChannel, parse_event

logger = logging.getLogger(__name__)

router = APIRouter()


def sse(payload: str) -> str:
    return f"data: {payload}\n\n"


def terminal_event_for(job) -> ProgressEvent:
    """Event describing a job that already finished before the client subscribed."""
    if job.status == JobStatus.COMPLETED:
        return ProgressEvent(
            type=EventType.COMPLETED,
            percent=100,
            message="Completed!",
            data={"output_path": job.output_path},
        )
    return ProgressEvent(
        type=EventType.ERROR,
        percent=job.progress_percent,
        message=job.error_message or f"Job {job.status}",
    )


@router.get("/jobs/{job_id}/progress")
async def stream_job_progress(
    job_id: str,
    request: Request,
    channel: ProgressChannel = Depends(get_channel),
    store: JobStore = Depends(get_store),
):
    """
    Stream progress events as ``text/event-stream``.

    The first frame is ``{"type": "connected", "jobId": ...}``. Every
    published event is relayed verbatim; the stream closes shortly after
    a ``completed`` or ``error`` event.
    """
    try:
        store.get_job(job_id)
    except VidgenError as e:
        raise http_error(e)

    async def event_stream():
        yield sse(json.dumps({"type": EventType.CONNECTED, "jobId": job_id}))

        async with channel.subscribe(job_id) as messages:
            # subscribed first: a job finishing after this check still reaches us
            job = store.get_job(job_id)
            if job.status in JobStatus.TERMINAL:
                yield sse(terminal_event_for(job).to_json())
                return

            async for payload in messages:
                yield sse(payload)
                event = parse_event(payload)
                if event is not None and event.is_terminal:
                    await asyncio.sleep(settings.PROGRESS_CLOSE_DELAY)
                    break
                if await request.is_disconnected():
                    logger.debug(f"[Events] Client left stream for job {job_id}")
                    break

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
