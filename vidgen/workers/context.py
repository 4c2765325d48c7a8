"""
Worker Context
Collaborators every worker needs, built and owned by the process entry point.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from vidgen.core.config import Settings, get_settings
from vidgen.core.database import Database
from vidgen.core.redis import RedisManager
from vidgen.services.inference_client import InferenceClient
from vidgen.services.job_store import JobStore
from vidgen.services.media_tool import MediaTool
from vidgen.services.progress import ProgressChannel
from vidgen.services.storage import StorageService

logger = logging.getLogger(__name__)


@dataclass
class WorkerContext:
    store: JobStore
    channel: ProgressChannel
    inference: InferenceClient
    media: MediaTool
    storage: StorageService
    settings: Settings = field(default_factory=get_settings)
    database: Optional[Database] = None
    redis_manager: Optional[RedisManager] = None

    def close(self):
        if self.redis_manager is not None:
            self.redis_manager.close()
        if self.database is not None:
            self.database.dispose()


def build_context(settings: Settings = None) -> WorkerContext:
    """Construct the production context from settings."""
    settings = settings or get_settings()
    database = Database(settings.DATABASE_URL)
    database.init_db()
    redis_manager = RedisManager(settings.REDIS_URL)
    return WorkerContext(
        store=JobStore(database),
        channel=ProgressChannel(redis_manager),
        inference=InferenceClient(settings.COMFYUI_URL),
        media=MediaTool(settings.FFMPEG_BINARY, settings.FFPROBE_BINARY),
        storage=StorageService(settings.STORAGE_PATH),
        settings=settings,
        database=database,
        redis_manager=redis_manager,
    )


_context: Optional[WorkerContext] = None


def install_context(context: WorkerContext):
    """Make ``context`` the one RQ task entry points run with."""
    global _context
    _context = context


def get_context() -> WorkerContext:
    """Context installed by the entry point, built lazily if none was."""
    global _context
    if _context is None:
        logger.info("No worker context installed; building from settings")
        _context = build_context()
    return _context
