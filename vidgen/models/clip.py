"""
Clip Model
One generated video unit inside a project.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, Float, BigInteger, ForeignKey
from sqlalchemy.orm import relationship

from vidgen.core.database import Base


class ClipStatus:
    """Clip status constants. Transitions only move forward."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    TRANSITIONS = {
        PENDING: {PROCESSING, FAILED},
        PROCESSING: {COMPLETED, FAILED},
        COMPLETED: set(),
        FAILED: set(),
    }

    @classmethod
    def can_transition(cls, current: str, new: str) -> bool:
        return new in cls.TRANSITIONS.get(current, set())


class Clip(Base):
    """Generated clip model."""

    __tablename__ = "clips"

    id = Column(String(36), primary_key=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    clip_name = Column(String(255), nullable=False)
    order_index = Column(Integer, nullable=False, default=0, index=True)

    # Generation parameters
    prompt = Column(Text, nullable=True)
    negative_prompt = Column(Text, nullable=True)
    seed_value = Column(BigInteger, nullable=True)
    steps_count = Column(Integer, nullable=False, default=20)
    cfg_scale = Column(Float, nullable=False, default=7.5)
    reference_image = Column(String(500), nullable=True)  # filename in the inference input store
    ip_adapter_weight = Column(Float, nullable=True, default=0.8)

    # Output
    file_path = Column(String(500), nullable=True)
    file_name = Column(String(255), nullable=True)
    thumbnail_path = Column(String(500), nullable=True)
    thumbnail_name = Column(String(255), nullable=True)
    duration_sec = Column(Float, nullable=True)
    frame_count = Column(Integer, nullable=True)

    status = Column(String(50), nullable=False, default=ClipStatus.PENDING)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="clips")
