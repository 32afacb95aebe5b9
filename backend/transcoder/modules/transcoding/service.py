"""Service layer for transcoding operations.

Submission registers the job and returns immediately; the encode, the
upload and every state change run in a background task per job. Failures
in that task end up as a terminal ``failed`` snapshot, never as an
exception for the caller who already got their job id.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

from transcoder.core.config import Settings, settings as default_settings
from transcoder.core.logging import (
    get_correlation_id,
    log_error,
    log_info,
    log_warning,
    set_correlation_id,
)
from transcoder.core.metrics import TRANSCODE_JOBS_TOTAL
from transcoder.modules.transcoding.cancellation import CancellationManager, CancelResult
from transcoder.modules.transcoding.errors import DuplicateJobError, InvalidRequest
from transcoder.modules.transcoding.ffmpeg import EngineEvent, EngineHandle, FFmpegTranscoder
from transcoder.modules.transcoding.files import cleanup_local_file
from transcoder.modules.transcoding.finalizer import UploadFinalizer
from transcoder.modules.transcoding.models import JobStatus, TranscodeJob
from transcoder.modules.transcoding.progress import ProgressChannel
from transcoder.modules.transcoding.registry import JobHandle, JobRegistry
from transcoder.modules.transcoding.retry import RetryConfig
from transcoder.modules.transcoding.schemas import ProgressSnapshot, parse_transcoding_option
from transcoder.modules.video.repository import generate_video_id

logger = logging.getLogger(__name__)

JOB_ID_ATTEMPTS = 5


class TranscodingEngine(Protocol):
    async def start(self, job: TranscodeJob) -> EngineHandle: ...


class TranscodingService:
    """Coordinates engine, registry, progress channel, finalizer and cancellation."""

    def __init__(
        self,
        engine: TranscodingEngine,
        registry: JobRegistry,
        channel: ProgressChannel,
        finalizer: UploadFinalizer,
        cancellation: CancellationManager,
        videos_dir: Path,
        max_concurrent: int = 2,
    ):
        self.engine = engine
        self.registry = registry
        self.channel = channel
        self.finalizer = finalizer
        self.cancellation = cancellation
        self.videos_dir = Path(videos_dir)
        self._slots = asyncio.Semaphore(max_concurrent)
        self._tasks: set[asyncio.Task] = set()

    def _new_job(self, input_path: str, option: Optional[str], user_id: Optional[str]) -> JobHandle:
        parsed = parse_transcoding_option(option)
        if not user_id:
            raise InvalidRequest("userId is required")

        for _ in range(JOB_ID_ATTEMPTS):
            job_id = generate_video_id()
            job = TranscodeJob(
                job_id=job_id,
                user_id=user_id,
                input_path=str(input_path),
                output_path=str(self.videos_dir / f"{job_id}.{parsed.container}"),
                resolution=parsed.resolution,
                codec=parsed.codec,
            )
            handle = JobHandle(job)
            try:
                self.registry.register(job_id, handle)
            except DuplicateJobError:
                continue
            return handle

        raise DuplicateJobError("Could not allocate a unique job id")

    async def submit(
        self,
        input_path: str,
        transcoding_option: Optional[str],
        user_id: Optional[str],
    ) -> TranscodeJob:
        """Start transcoding ``input_path`` and return without waiting for it.

        Raises:
            InvalidRequest: If the option or user id is missing or invalid
        """
        handle = self._new_job(input_path, transcoding_option, user_id)
        job = handle.job
        self.videos_dir.mkdir(parents=True, exist_ok=True)

        await self.channel.publish(ProgressSnapshot.from_job(job))
        handle.task = asyncio.create_task(
            self._run(handle, get_correlation_id()),
            name=f"transcode-{job.job_id}",
        )
        self._tasks.add(handle.task)
        handle.task.add_done_callback(self._tasks.discard)
        log_info(
            logger,
            f"Transcoding job {job.job_id} accepted",
            job_id=job.job_id,
            user_id=job.user_id,
            option=job.transcoding_option,
        )
        return job

    async def cancel(self, job_id: str) -> CancelResult:
        return await self.cancellation.cancel(job_id)

    async def status(self, job_id: str) -> Optional[ProgressSnapshot]:
        """Current snapshot: live state while registered, else the stored one."""
        handle = self.registry.lookup(job_id)
        if handle is not None:
            return ProgressSnapshot.from_job(handle.job)
        return await self.channel.latest(job_id)

    async def _run(self, handle: JobHandle, correlation_id: str) -> None:
        set_correlation_id(correlation_id)
        job = handle.job
        # The encoded file is kept for a manual re-upload once finalizing starts
        finalizing = False
        try:
            outcome = await self._encode(handle)
            if outcome is None:
                return
            # Whoever removes the registry entry owns the terminal outcome
            if not self.registry.release(job.job_id, handle):
                return

            if outcome.status is JobStatus.FAILED:
                cleanup_local_file(job.output_path)
                await self._record_failure(job, outcome.error or "Transcoding failed")
                return

            finalizing = True
            await self.finalizer.finalize_job(job)
            TRANSCODE_JOBS_TOTAL.labels(status=JobStatus.COMPLETED.value).inc()
            log_info(logger, f"Transcoding job {job.job_id} completed", job_id=job.job_id)
        except asyncio.CancelledError:
            log_warning(logger, f"Transcoding job {job.job_id} interrupted", job_id=job.job_id)
            self.registry.release(job.job_id, handle)
            if not finalizing:
                cleanup_local_file(job.output_path)
            await self._record_failure(job, "Transcoding interrupted by shutdown")
            raise
        except Exception as e:
            log_error(logger, f"Transcoding job {job.job_id} failed", e, job_id=job.job_id)
            self.registry.release(job.job_id, handle)
            if not finalizing:
                cleanup_local_file(job.output_path)
            await self._record_failure(job, str(e))
        finally:
            self.channel.forget(job.job_id)

    async def _encode(self, handle: JobHandle) -> Optional[EngineEvent]:
        """Run the encoder inside a worker slot.

        Returns:
            The terminal engine event, or None if the job was canceled
        """
        job = handle.job
        async with self._slots:
            if handle.terminated:
                return None

            engine = await self.engine.start(job)
            if not handle.attach(engine):
                # Canceled while spawning; the engine was killed on attach
                await engine.wait()
                cleanup_local_file(job.output_path)
                return None

            outcome: Optional[EngineEvent] = None
            try:
                async for event in engine.events():
                    if event.is_terminal:
                        outcome = event
                        continue
                    if handle.terminated:
                        continue
                    job.advance(event.percent)
                    await self.channel.publish(ProgressSnapshot.from_job(job))
            finally:
                # No-op once the process has exited; kills it if we bail out early
                engine.cancel()
            return outcome

    async def _record_failure(self, job: TranscodeJob, error: str) -> None:
        if not job.transition(JobStatus.FAILED, error=error):
            return
        TRANSCODE_JOBS_TOTAL.labels(status=JobStatus.FAILED.value).inc()
        await self.channel.publish(ProgressSnapshot.from_job(job))

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Cancel every registered job and wait for all job tasks to end.

        Jobs already past the encoder (uploading) get ``timeout`` seconds to
        finish; whatever is still running after that is cancelled and
        recorded as failed.
        """
        for job_id in self.registry.job_ids():
            await self.cancellation.cancel(job_id)

        tasks = list(self._tasks)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            log_warning(logger, f"Cancelled {len(pending)} job task(s) still running at shutdown")
            await asyncio.gather(*pending, return_exceptions=True)


def build_transcoding_service(
    progress_store,
    artifact_store,
    metadata_store,
    config: Optional[Settings] = None,
) -> TranscodingService:
    """Wire a TranscodingService from settings and its collaborators."""
    config = config or default_settings
    videos_dir = config.videos_dir

    registry = JobRegistry()
    channel = ProgressChannel(
        progress_store,
        ttl_seconds=config.PROGRESS_TTL_SECONDS,
        queue_size=config.SUBSCRIBER_QUEUE_SIZE,
    )
    finalizer = UploadFinalizer(
        artifact_store,
        metadata_store,
        channel,
        videos_dir,
        retry_config=RetryConfig(
            max_attempts=config.UPLOAD_MAX_ATTEMPTS,
            initial_delay=config.UPLOAD_RETRY_INITIAL_DELAY,
            max_delay=config.UPLOAD_RETRY_MAX_DELAY,
        ),
        upload_url_ttl=config.UPLOAD_URL_EXPIRE_SECONDS,
        download_url_ttl=config.DOWNLOAD_URL_EXPIRE_SECONDS,
    )
    cancellation = CancellationManager(
        registry, channel, join_timeout=config.CANCEL_JOIN_TIMEOUT_SECONDS
    )
    engine = FFmpegTranscoder(ffmpeg_path=config.FFMPEG_PATH, ffprobe_path=config.FFPROBE_PATH)

    return TranscodingService(
        engine=engine,
        registry=registry,
        channel=channel,
        finalizer=finalizer,
        cancellation=cancellation,
        videos_dir=videos_dir,
        max_concurrent=config.MAX_CONCURRENT_TRANSCODES,
    )


__all__ = [
    "TranscodingService",
    "TranscodingEngine",
    "build_transcoding_service",
]
