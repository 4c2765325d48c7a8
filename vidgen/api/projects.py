"""
Projects API Routes
Create, list, fetch and delete projects.
"""

import logging
import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from vidgen.api.deps import get_db, get_storage
from vidgen.models import Project
from vidgen.schemas.project import ProjectCreate, ProjectResponse
from vidgen.services.storage import StorageService, to_camel_case

logger = logging.getLogger(__name__)

router = APIRouter()

PROJECT_OUTPUT_FOLDERS = ["merged", "upscaled", "interpolated", "exports"]


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(request: ProjectCreate, db: Session = Depends(get_db)):
    project = Project(
        id=str(uuid.uuid4()),
        project_name=to_camel_case(request.display_name),
        display_name=request.display_name,
        description=request.description,
        resolution=request.resolution,
        frame_rate=request.frame_rate,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info(f"Created project {project.id} ({project.project_name})")
    return project


@router.get("", response_model=List[ProjectResponse])
async def list_projects(limit: int = 50, offset: int = 0, db: Session = Depends(get_db)):
    return db.query(Project).order_by(Project.created_at.desc()).offset(offset).limit(limit).all()


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, db: Session = Depends(get_db)):
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """Delete the project, its clips and jobs, and its per-project output folders."""
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")

    for clip in project.clips:
        storage.delete_file(clip.file_path)
        storage.delete_file(clip.thumbnail_path)
    db.delete(project)
    db.commit()
    for subfolder in PROJECT_OUTPUT_FOLDERS:
        storage.delete_folder(storage.base_path / subfolder / project_id)
    return {"deleted": project_id}
