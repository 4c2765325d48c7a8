"""
Project and Clip Schemas
Pydantic models for project and clip API requests and responses.
"""

import re
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator


class ProjectCreate(BaseModel):
    """Schema for creating a project."""
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    resolution: str = Field("512x512", description="Target resolution as WxH")
    frame_rate: int = Field(8, ge=1, le=120)

    @field_validator("resolution")
    @classmethod
    def check_resolution(cls, v):
        if not re.fullmatch(r"\d+x\d+", v):
            raise ValueError("resolution must look like 640x360")
        return v


class ProjectResponse(BaseModel):
    id: str
    project_name: str
    display_name: str
    description: Optional[str] = None
    resolution: str
    frame_rate: int
    status: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ClipResponse(BaseModel):
    """Schema for clip response."""
    id: str
    project_id: str
    clip_name: str
    order_index: int
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    seed_value: Optional[int] = None
    steps_count: int
    cfg_scale: float
    reference_image: Optional[str] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    thumbnail_path: Optional[str] = None
    duration_sec: Optional[float] = None
    frame_count: Optional[int] = None
    status: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ClipListResponse(BaseModel):
    clips: List[ClipResponse]
    total: int
