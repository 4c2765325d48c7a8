"""
Clips API Routes
List and delete a project's clips.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from vidgen.api.deps import get_db, get_storage, get_store, http_error
from vidgen.core.exceptions import JobNotFoundError
from vidgen.models import Clip, ClipStatus
from vidgen.schemas.project import ClipListResponse, ClipResponse
from vidgen.services.job_store import JobStore
from vidgen.services.storage import StorageService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/projects/{project_id}/clips", response_model=ClipListResponse)
async def list_clips(project_id: str, clip_status: Optional[str] = None, db: Session = Depends(get_db)):
    """Clips ordered by ``order_index``; long-video segments sort after regular clips."""
    query = db.query(Clip).filter(Clip.project_id == project_id)
    if clip_status:
        query = query.filter(Clip.status == clip_status)
    clips = query.order_by(Clip.order_index.asc()).all()
    return ClipListResponse(clips=clips, total=len(clips))


@router.get("/clips/{clip_id}", response_model=ClipResponse)
async def get_clip(clip_id: str, db: Session = Depends(get_db)):
    clip = db.query(Clip).filter(Clip.id == clip_id).first()
    if not clip:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clip not found")
    return clip


@router.delete("/clips/{clip_id}")
async def delete_clip(
    clip_id: str,
    store: JobStore = Depends(get_store),
    storage: StorageService = Depends(get_storage),
):
    """
    Delete a clip row and, best effort, its video and thumbnail.

    A clip that is still being rendered cannot be deleted; cancel its job first.
    """
    try:
        clip = store.get_clip(clip_id)
    except JobNotFoundError as e:
        raise http_error(e)
    if clip.status == ClipStatus.PROCESSING:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Clip is being generated")

    files = store.delete_clip(clip_id)
    if files is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clip not found")
    removed = [path for path in files.values() if storage.delete_file(path)]
    logger.info(f"Deleted clip {clip_id} ({len(removed)} file(s) removed)")
    return {"deleted": clip_id, "files_removed": removed}
