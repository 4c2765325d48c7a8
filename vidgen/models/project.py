"""
Project Model
Generation context: target resolution and frame rate. Owns clips and jobs.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer
from sqlalchemy.orm import relationship

from vidgen.core.database import Base


class Project(Base):
    """Project model."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)
    project_name = Column(String(100), nullable=False)
    display_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Generation context
    resolution = Column(String(20), nullable=False, default="512x512")  # WxH
    frame_rate = Column(Integer, nullable=False, default=8)
    status = Column(String(50), nullable=False, default="draft")

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    clips = relationship("Clip", back_populates="project", cascade="all, delete-orphan")
    jobs = relationship("Job", back_populates="project", cascade="all, delete-orphan")
