"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "Vidgen API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database - SQLite for local dev, PostgreSQL for production
    DATABASE_URL: str = "sqlite:///./vidgen.db"

    # Redis (RQ queues + progress pub/sub)
    REDIS_URL: str = "redis://localhost:6379"

    # Inference service (ComfyUI node-graph server)
    COMFYUI_URL: str = "http://localhost:8188"
    COMFYUI_PROBE_TIMEOUT: float = 5.0  # Seconds for the availability probe
    COMFYUI_HTTP_TIMEOUT: float = 60.0  # Seconds for submit/fetch/upload calls

    # Media tool
    FFMPEG_BINARY: str = "ffmpeg"
    FFPROBE_BINARY: str = "ffprobe"

    # Local media storage root
    STORAGE_PATH: str = "./public/storage"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Worker settings - RQ hard ceilings per queue (seconds)
    JOB_TIMEOUT_GENERATE: int = 1900
    JOB_TIMEOUT_MERGE: int = 900
    JOB_TIMEOUT_UPSCALE: int = 3600
    JOB_TIMEOUT_INTERPOLATE: int = 3600
    JOB_TIMEOUT_EXPORT: int = 3600
    JOB_TIMEOUT_LONG_VIDEO: int = 7200

    # Inference wall-clock ceilings per execution (seconds)
    INFERENCE_TIMEOUT_GENERATE: float = 1800
    INFERENCE_TIMEOUT_STILL: float = 300
    INFERENCE_TIMEOUT_FRAME: float = 120
    INFERENCE_TIMEOUT_SEGMENT: float = 1800

    # Media tool ceilings per subprocess (seconds)
    MEDIA_TIMEOUT_DEFAULT: float = 600
    MEDIA_TIMEOUT_ENHANCE: float = 3600

    # Long video
    LONG_VIDEO_SECONDS_PER_SEGMENT: float = 5.0625  # 81 frames at 16fps
    LONG_VIDEO_ORDER_OFFSET: int = 900
    LONG_VIDEO_STEPS: int = 25
    LONG_VIDEO_CFG: float = 6.0
    LONG_VIDEO_FPS: int = 16
    LONG_VIDEO_ENHANCE_SCALE: int = 2
    LONG_VIDEO_ENHANCE_FPS: int = 30

    # Progress channel
    PROGRESS_CLOSE_DELAY: float = 0.1  # Seconds to wait after a terminal event
    PROGRESS_POLL_INTERVAL: float = 2.0  # Suggested client fallback poll interval

    @field_validator('COMFYUI_URL', 'REDIS_URL', mode='before')
    @classmethod
    def strip_urls(cls, v):
        """Strip whitespace and trailing slashes from service URLs."""
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
