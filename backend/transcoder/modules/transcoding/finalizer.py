"""Upload of finished artifacts to object storage.

A finished artifact is uploaded through a fresh presigned URL per attempt,
its metadata record is persisted, and only then is the local copy removed.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from transcoder.core.logging import log_info, log_warning
from transcoder.core.metrics import UPLOAD_ATTEMPTS_TOTAL
from transcoder.modules.transcoding.errors import ArtifactMissing, UploadFailure
from transcoder.modules.transcoding.files import cleanup_local_file, resolve_in
from transcoder.modules.transcoding.models import JobStatus, TranscodeJob
from transcoder.modules.transcoding.progress import ProgressChannel
from transcoder.modules.transcoding.retry import UPLOAD_RETRY_CONFIG, RetryConfig
from transcoder.modules.transcoding.schemas import ProgressSnapshot
from transcoder.modules.video.repository import MetadataStore
from transcoder.modules.video.schemas import ArtifactMetadata
from transcoder.modules.video.storage import ArtifactStore

logger = logging.getLogger(__name__)


class UploadFinalizer:
    """Uploads an artifact with bounded retry and records its metadata."""

    def __init__(
        self,
        artifact_store: ArtifactStore,
        metadata_store: MetadataStore,
        channel: ProgressChannel,
        videos_dir: Path,
        retry_config: Optional[RetryConfig] = None,
        upload_url_ttl: int = 3600,
        download_url_ttl: int = 3600,
    ):
        self.artifact_store = artifact_store
        self.metadata_store = metadata_store
        self.channel = channel
        self.videos_dir = Path(videos_dir)
        self.retry_config = retry_config or UPLOAD_RETRY_CONFIG
        self.upload_url_ttl = upload_url_ttl
        self.download_url_ttl = download_url_ttl

    async def _upload_with_retry(self, user_id: str, filename: str, path: Path) -> int:
        """Upload ``path``, retrying up to ``max_attempts`` in total.

        Returns:
            The attempt number that succeeded

        Raises:
            UploadFailure: After the last attempt failed
        """
        config = self.retry_config
        last_error: Optional[Exception] = None

        for attempt in range(1, config.max_attempts + 1):
            try:
                url = await self.artifact_store.generate_upload_url(
                    user_id, filename, self.upload_url_ttl
                )
                await self.artifact_store.put_bytes(url, str(path))
            except Exception as e:
                last_error = e
                UPLOAD_ATTEMPTS_TOTAL.labels(outcome="failure").inc()
                log_warning(
                    logger,
                    f"Upload of {filename} failed",
                    attempt=attempt,
                    attempts_left=config.max_attempts - attempt,
                    error=str(e),
                )
                if config.should_retry(attempt):
                    await asyncio.sleep(config.calculate_delay(attempt))
                continue

            UPLOAD_ATTEMPTS_TOTAL.labels(outcome="success").inc()
            return attempt

        raise UploadFailure(
            f"Failed to upload {filename} after {config.max_attempts} attempts: {last_error}",
            attempts=config.max_attempts,
        ) from last_error

    async def finalize(self, user_id: str, filename: str) -> ArtifactMetadata:
        """Upload a local artifact, persist its metadata and delete the local copy.

        Args:
            user_id: Owner, used as the storage namespace
            filename: Bare file name inside the videos directory

        Returns:
            The persisted metadata

        Raises:
            ArtifactMissing: If the local artifact does not exist
            UploadFailure: If every upload attempt failed
        """
        path = resolve_in(self.videos_dir, filename)
        if not path.is_file():
            raise ArtifactMissing(f"Artifact {filename} not found in {self.videos_dir}")

        attempts = await self._upload_with_retry(user_id, filename, path)

        download_url = await self.artifact_store.generate_download_url(
            user_id, filename, self.download_url_ttl
        )
        metadata = await self.metadata_store.create_artifact_record(
            ArtifactMetadata(
                filename=filename,
                extension=os.path.splitext(filename)[1],
                user_id=user_id,
                s3_url=download_url,
                date_created=datetime.now(timezone.utc),
            )
        )

        cleanup_local_file(path)
        log_info(
            logger,
            f"Artifact {filename} stored and local copy removed",
            user_id=user_id,
            video_id=metadata.video_id,
            attempts=attempts,
        )
        return metadata

    async def finalize_job(self, job: TranscodeJob) -> ArtifactMetadata:
        """Finalize a job's output and publish its terminal completed snapshot."""
        metadata = await self.finalize(job.user_id, job.output_filename)
        job.transition(JobStatus.COMPLETED)
        await self.channel.publish(ProgressSnapshot.from_job(job))
        return metadata
