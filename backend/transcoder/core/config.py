"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
Every value has a development default so the service imports without one.
"""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Video Transcoding Service"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api/video"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:5173"]

    # Redis (progress snapshots)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Database (artifact metadata records)
    DATABASE_URL: str = "sqlite+aiosqlite:///./transcoder.db"

    # S3/MinIO artifact storage
    STORAGE_BUCKET: str = "transcoded-videos"
    STORAGE_REGION: str = "us-east-1"
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO

    # Local media handling
    MEDIA_ROOT: str = "./media"

    # FFmpeg
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    MAX_CONCURRENT_TRANSCODES: int = 2

    # Progress tracking
    PROGRESS_TTL_SECONDS: int = 600
    SUBSCRIBER_QUEUE_SIZE: int = 100

    # Upload / signed URLs
    UPLOAD_URL_EXPIRE_SECONDS: int = 3600
    DOWNLOAD_URL_EXPIRE_SECONDS: int = 3600
    UPLOAD_MAX_ATTEMPTS: int = 3
    UPLOAD_RETRY_INITIAL_DELAY: float = 1.0
    UPLOAD_RETRY_MAX_DELAY: float = 10.0

    # Cancellation
    CANCEL_JOIN_TIMEOUT_SECONDS: float = 5.0
    SHUTDOWN_TIMEOUT_SECONDS: float = 10.0

    @property
    def uploads_dir(self) -> Path:
        """Directory receiving raw multipart uploads."""
        return Path(self.MEDIA_ROOT) / "uploads"

    @property
    def videos_dir(self) -> Path:
        """Directory holding transcoded and temporarily staged artifacts."""
        return Path(self.MEDIA_ROOT) / "videos-handling"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
