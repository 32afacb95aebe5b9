"""Exceptions raised by the transcoding pipeline."""

from typing import Optional


class TranscodingError(Exception):
    """Base exception for transcoding errors."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class InvalidRequest(TranscodingError):
    """Caller input is missing or malformed. Never retried."""


class InvalidTranscodingOption(InvalidRequest):
    """The "<resolution>-<codec>" option could not be parsed or is not allowed."""


class DuplicateJobError(TranscodingError):
    """A live handle is already registered under this job id."""


class EngineFailure(TranscodingError):
    """The external encoder could not be started or exited with an error."""


class UploadFailure(TranscodingError):
    """The output artifact could not be stored after all attempts."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        attempts: int = 0,
    ):
        super().__init__(message, job_id)
        self.attempts = attempts


class ArtifactMissing(UploadFailure):
    """The local artifact to upload does not exist."""


class ResourceCleanupFailure(TranscodingError):
    """A local file or cache entry could not be removed. Logged, never fatal."""


class ProgressStoreError(TranscodingError):
    """The progress store could not be read or written."""
