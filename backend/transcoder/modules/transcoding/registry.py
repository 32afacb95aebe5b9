"""Process-wide table of live transcoding jobs."""

import asyncio
import logging
import threading
from typing import Optional

from transcoder.core.metrics import TRANSCODE_JOBS_ACTIVE
from transcoder.modules.transcoding.errors import DuplicateJobError
from transcoder.modules.transcoding.ffmpeg import EngineHandle
from transcoder.modules.transcoding.models import TranscodeJob

logger = logging.getLogger(__name__)


class JobHandle:
    """Control handle for one registered job.

    A job may be registered before its encoder is spawned (it waits for a
    worker slot), so the engine handle is attached later. ``terminate``
    consumes the handle exactly once; an engine attached after that is
    killed on arrival.
    """

    def __init__(self, job: TranscodeJob):
        self.job = job
        self.engine: Optional[EngineHandle] = None
        self.task: Optional[asyncio.Task] = None
        self._terminated = False

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def terminated(self) -> bool:
        return self._terminated

    def attach(self, engine: EngineHandle) -> bool:
        """Bind the spawned encoder to this handle.

        Returns:
            False if the handle was already terminated; the engine is killed
        """
        if self._terminated:
            engine.cancel()
            return False
        self.engine = engine
        return True

    def terminate(self) -> bool:
        """Kill the encoder, if any. Only the first call has an effect."""
        if self._terminated:
            return False
        self._terminated = True
        if self.engine is not None:
            self.engine.cancel()
        return True


class JobRegistry:
    """Maps job ids to their live handle.

    The lock only guards the dict operations themselves and is never held
    across an await.
    """

    def __init__(self):
        self._jobs: dict[str, JobHandle] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def register(self, job_id: str, handle: JobHandle) -> None:
        """Register a live handle.

        Raises:
            DuplicateJobError: If a handle is already registered for job_id
        """
        with self._lock:
            if job_id in self._jobs:
                raise DuplicateJobError(f"Job {job_id} is already registered", job_id=job_id)
            self._jobs[job_id] = handle
            TRANSCODE_JOBS_ACTIVE.set(len(self._jobs))

    def lookup(self, job_id: str) -> Optional[JobHandle]:
        with self._lock:
            return self._jobs.get(job_id)

    def unregister(self, job_id: str) -> Optional[JobHandle]:
        """Remove and return the handle for job_id, if any.

        Whoever receives the handle owns its teardown.
        """
        with self._lock:
            handle = self._jobs.pop(job_id, None)
            TRANSCODE_JOBS_ACTIVE.set(len(self._jobs))
            return handle

    def release(self, job_id: str, handle: JobHandle) -> bool:
        """Remove the entry only if it still maps to ``handle``.

        Used on the engine's own terminal path: it never removes a newer
        entry and never re-adds one that cancellation already took.

        Returns:
            True if this call removed the entry
        """
        with self._lock:
            if self._jobs.get(job_id) is not handle:
                return False
            del self._jobs[job_id]
            TRANSCODE_JOBS_ACTIVE.set(len(self._jobs))
            return True

    def job_ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)
