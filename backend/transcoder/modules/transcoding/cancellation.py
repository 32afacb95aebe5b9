"""Cancellation of running transcoding jobs."""

import asyncio
import logging
from enum import Enum
from pathlib import Path

from transcoder.core.logging import log_info, log_warning
from transcoder.core.metrics import TRANSCODE_JOBS_TOTAL
from transcoder.modules.transcoding.files import cleanup_local_file
from transcoder.modules.transcoding.models import JobStatus
from transcoder.modules.transcoding.progress import ProgressChannel
from transcoder.modules.transcoding.registry import JobRegistry
from transcoder.modules.transcoding.schemas import ProgressSnapshot

logger = logging.getLogger(__name__)


class CancelResult(str, Enum):
    OK = "ok"
    NOT_FOUND = "not-found"


class CancellationManager:
    """Tears down a running job: process, registry entry, snapshot, partial output.

    Process exit is awaited for at most ``join_timeout`` seconds, so
    ``cancel`` may return before the OS has reaped the process.
    """

    def __init__(
        self,
        registry: JobRegistry,
        channel: ProgressChannel,
        join_timeout: float = 5.0,
    ):
        self.registry = registry
        self.channel = channel
        self.join_timeout = join_timeout

    async def cancel(self, job_id: str) -> CancelResult:
        """Cancel ``job_id``. Unknown or already finished jobs are NOT_FOUND.

        Taking the registry entry decides the race with the job's own
        completion: whichever side removes it records the terminal outcome.
        """
        handle = self.registry.unregister(job_id)
        if handle is None:
            log_info(logger, f"Cancel requested for unknown or finished job {job_id}", job_id=job_id)
            return CancelResult.NOT_FOUND

        job = handle.job
        handle.terminate()
        job.transition(JobStatus.CANCELED)
        TRANSCODE_JOBS_TOTAL.labels(status=JobStatus.CANCELED.value).inc()

        await self.channel.discard(job_id, notice=ProgressSnapshot.from_job(job))

        if handle.engine is not None:
            try:
                await asyncio.wait_for(handle.engine.wait(), timeout=self.join_timeout)
            except asyncio.TimeoutError:
                log_warning(
                    logger,
                    f"ffmpeg for job {job_id} did not exit within {self.join_timeout}s",
                    job_id=job_id,
                )

        cleanup_local_file(Path(job.output_path))
        log_info(logger, f"Transcoding job {job_id} has been canceled and cache cleared", job_id=job_id)
        return CancelResult.OK
