"""Domain models for transcoding jobs."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    """Status of a transcoding job."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class Resolution(str, Enum):
    """Named resolution presets accepted in place of "<W>x<H>"."""
    RES_720P = "720p"
    RES_1080P = "1080p"
    RES_2K = "2k"
    RES_4K = "4k"


# Resolution dimensions mapping
RESOLUTION_DIMENSIONS = {
    Resolution.RES_720P: (1280, 720),
    Resolution.RES_1080P: (1920, 1080),
    Resolution.RES_2K: (2560, 1440),
    Resolution.RES_4K: (3840, 2160),
}

# Encoders callers may select, mapped to the output container
CODEC_CONTAINERS = {
    "libx264": "mp4",
    "libx265": "mp4",
    "mpeg4": "mp4",
    "libvpx": "webm",
    "libvpx-vp9": "webm",
}

MIN_DIMENSION = 16
MAX_DIMENSION = 7680


@dataclass
class TranscodeJob:
    """Identity and control unit of one transcode request.

    Status transitions are monotone: once a terminal status is set,
    ``transition`` refuses every further change.
    """
    job_id: str
    user_id: str
    input_path: str
    output_path: str
    resolution: str
    codec: str
    status: JobStatus = JobStatus.RUNNING
    percent: float = 0.0
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def transcoding_option(self) -> str:
        return f"{self.resolution}-{self.codec}"

    @property
    def output_filename(self) -> str:
        return self.output_path.replace("\\", "/").rsplit("/", 1)[-1]

    def advance(self, percent: float) -> float:
        """Raise the recorded percent, never lowering it. Returns the new value."""
        bounded = max(0.0, min(100.0, float(percent)))
        if bounded > self.percent:
            self.percent = bounded
        return self.percent

    def transition(self, status: JobStatus, error: Optional[str] = None) -> bool:
        """Move to ``status`` unless already terminal.

        Returns:
            True if the transition happened
        """
        if self.status.is_terminal:
            return False
        self.status = status
        if status is JobStatus.COMPLETED:
            self.percent = 100.0
        if status is JobStatus.FAILED:
            self.error = error
        return True
