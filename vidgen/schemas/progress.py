"""
Progress Event Schemas
The single typed event published on a job's progress channel.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class EventType:
    """Progress event types."""
    CONNECTED = "connected"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"

    TERMINAL = [COMPLETED, ERROR]


class ProgressEvent(BaseModel):
    """One message on ``job:{id}:progress``."""
    type: str = Field(..., description="progress, completed or error")
    percent: Optional[int] = Field(None, ge=0, le=100)
    message: Optional[str] = None
    step: Optional[str] = Field(None, description="Inference node currently executing")
    segment: Optional[int] = Field(None, description="1-based long-video segment")
    total_segments: Optional[int] = None
    stage: Optional[str] = Field(None, description="Pipeline stage, e.g. merge or encode")
    data: Optional[Dict[str, Any]] = Field(None, description="Result payload on completion")
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())

    @property
    def is_terminal(self) -> bool:
        return self.type in EventType.TERMINAL

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)
