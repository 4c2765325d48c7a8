"""
Database Configuration
SQLAlchemy engine and session management.
Supports both SQLite (local dev) and PostgreSQL (production).

Engines are owned by whoever constructs a ``Database`` (the API lifespan or
the worker entry point); importing this module opens no connections.
"""

import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """Create an engine with settings appropriate for the backend."""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}  # Needed for SQLite
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            # One shared connection so every session sees the same in-memory DB
            return create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(database_url, connect_args=connect_args)

    # PostgreSQL settings
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


class Database:
    """Owns an engine and its session factory."""

    def __init__(self, database_url: str, engine: Optional[Engine] = None):
        self.url = database_url
        self.engine = engine or create_db_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def session(self):
        """Open a new session. Callers are responsible for closing it."""
        return self.SessionLocal()

    def init_db(self):
        """Create all tables."""
        from vidgen.models import Project, Clip, Job, JobLog  # noqa
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables ready")

    def dispose(self):
        """Close every pooled connection."""
        self.engine.dispose()
        logger.info("Database engine disposed")
