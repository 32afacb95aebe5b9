"""Pydantic schemas and option parsing for the transcoding service."""

import re
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from transcoder.modules.transcoding.errors import InvalidTranscodingOption
from transcoder.modules.transcoding.models import (
    CODEC_CONTAINERS,
    MAX_DIMENSION,
    MIN_DIMENSION,
    RESOLUTION_DIMENSIONS,
    JobStatus,
    Resolution,
    TranscodeJob,
)

_DIMENSIONS_PATTERN = re.compile(r"^(\d{1,5})x(\d{1,5})$")


class TranscodingOption(BaseModel):
    """Parsed "<resolution>-<codec>" option."""
    width: int
    height: int
    codec: str

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def container(self) -> str:
        return CODEC_CONTAINERS[self.codec]


def parse_resolution(value: str) -> tuple[int, int]:
    """Parse "<W>x<H>" or a named preset such as "720p".

    Raises:
        InvalidTranscodingOption: If the value is not a usable resolution
    """
    value = (value or "").strip().lower()
    if not value:
        raise InvalidTranscodingOption("Resolution is required")

    try:
        return RESOLUTION_DIMENSIONS[Resolution(value)]
    except ValueError:
        pass

    match = _DIMENSIONS_PATTERN.match(value)
    if not match:
        raise InvalidTranscodingOption(f"Unsupported resolution: {value!r}")

    width, height = int(match.group(1)), int(match.group(2))
    for dimension in (width, height):
        if not MIN_DIMENSION <= dimension <= MAX_DIMENSION:
            raise InvalidTranscodingOption(
                f"Resolution {value!r} outside {MIN_DIMENSION}..{MAX_DIMENSION}"
            )
        if dimension % 2:
            raise InvalidTranscodingOption(f"Resolution {value!r} must use even dimensions")
    return width, height


def parse_codec(value: str) -> str:
    """Validate a caller-supplied encoder name against the allowed set."""
    codec = (value or "").strip().lower()
    if not codec:
        raise InvalidTranscodingOption("Codec is required")
    if codec not in CODEC_CONTAINERS:
        raise InvalidTranscodingOption(
            f"Unsupported codec: {codec!r}. Allowed: {sorted(CODEC_CONTAINERS)}"
        )
    return codec


def parse_transcoding_option(option: Optional[str]) -> TranscodingOption:
    """Parse the compound "<resolution>-<codec>" option.

    Only the first "-" separates the parts, so encoders such as
    ``libvpx-vp9`` keep their own hyphen.

    Raises:
        InvalidTranscodingOption: If either part is missing or not allowed
    """
    if not option or not option.strip():
        raise InvalidTranscodingOption("transcodingOption is required")

    resolution, sep, codec = option.strip().partition("-")
    if not sep:
        raise InvalidTranscodingOption(
            f"transcodingOption must look like '<resolution>-<codec>', got {option!r}"
        )

    width, height = parse_resolution(resolution)
    return TranscodingOption(width=width, height=height, codec=parse_codec(codec))


class ProgressSnapshot(BaseModel):
    """Latest known state of one job, as stored and streamed."""
    job_id: str = Field(..., alias="jobId")
    user_id: Optional[str] = Field(None, alias="userId")
    percent: float = Field(0.0, ge=0, le=100)
    status: JobStatus = JobStatus.RUNNING
    resolution: Optional[str] = None
    codec: Optional[str] = None
    error: Optional[str] = None

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def _error_only_when_failed(self) -> "ProgressSnapshot":
        if self.status is not JobStatus.FAILED:
            self.error = None
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_job(cls, job: TranscodeJob) -> "ProgressSnapshot":
        return cls(
            job_id=job.job_id,
            user_id=job.user_id,
            percent=round(job.percent, 2),
            status=job.status,
            resolution=job.resolution,
            codec=job.codec,
            error=job.error,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class TranscodingStartResponse(BaseModel):
    """Response for an accepted transcoding submission."""
    message: str = "Transcoding started"
    transcoding_job_id: str = Field(..., alias="transcodingJobId")

    class Config:
        populate_by_name = True


class CancelTranscodingRequest(BaseModel):
    """Body of a cancellation request. The id is checked by hand to answer 400."""
    transcoding_job_id: Optional[str] = Field(None, alias="transcodingJobId")

    class Config:
        populate_by_name = True


class CancelTranscodingResponse(BaseModel):
    message: str
    result: str
