"""Progress persistence and live fan-out.

Every snapshot is written to the progress store (Redis, with a TTL) and,
when someone is watching that job, handed to its single live subscriber.
"""

import asyncio
import logging
import threading
from typing import AsyncIterator, Optional, Protocol

import redis.asyncio as redis
from pydantic import ValidationError

from transcoder.core.metrics import PROGRESS_SUBSCRIBERS
from transcoder.modules.transcoding.errors import ProgressStoreError
from transcoder.modules.transcoding.schemas import ProgressSnapshot

logger = logging.getLogger(__name__)

PROGRESS_KEY_PREFIX = "progress:"


def progress_key(job_id: str) -> str:
    return f"{PROGRESS_KEY_PREFIX}{job_id}"


class ProgressStore(Protocol):
    """Durable last-snapshot-per-job store."""

    async def get(self, job_id: str) -> Optional[ProgressSnapshot]: ...

    async def set(self, snapshot: ProgressSnapshot, ttl_seconds: int) -> None: ...

    async def delete(self, job_id: str) -> bool: ...


class RedisProgressStore:
    """Progress store backed by Redis string keys with expiry."""

    def __init__(self, client: redis.Redis):
        self.client = client

    async def get(self, job_id: str) -> Optional[ProgressSnapshot]:
        """Return the stored snapshot, or None if unknown or expired."""
        try:
            raw = await self.client.get(progress_key(job_id))
        except redis.RedisError as e:
            raise ProgressStoreError(f"Failed to read progress: {e}", job_id=job_id) from e
        if raw is None:
            return None
        try:
            return ProgressSnapshot.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable progress entry", extra={"job_id": job_id})
            return None

    async def set(self, snapshot: ProgressSnapshot, ttl_seconds: int) -> None:
        """Replace the snapshot for its job and reset the expiry."""
        try:
            await self.client.set(progress_key(snapshot.job_id), snapshot.to_json(), ex=ttl_seconds)
        except redis.RedisError as e:
            raise ProgressStoreError(
                f"Failed to write progress: {e}", job_id=snapshot.job_id
            ) from e

    async def delete(self, job_id: str) -> bool:
        try:
            return bool(await self.client.delete(progress_key(job_id)))
        except redis.RedisError as e:
            raise ProgressStoreError(f"Failed to delete progress: {e}", job_id=job_id) from e


class _Subscription:
    """Bounded mailbox of one live subscriber. Offering never blocks."""

    def __init__(self, job_id: str, maxsize: int):
        self.job_id = job_id
        self.queue: asyncio.Queue[Optional[ProgressSnapshot]] = asyncio.Queue(maxsize)
        self.closed = False

    def _put(self, item: Optional[ProgressSnapshot]) -> None:
        try:
            self.queue.put_nowait(item)
        except asyncio.QueueFull:
            # Drop the oldest pending snapshot; the newest one supersedes it
            self.queue.get_nowait()
            self.queue.put_nowait(item)

    def offer(self, snapshot: ProgressSnapshot) -> None:
        if not self.closed:
            self._put(snapshot)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._put(None)


class ProgressChannel:
    """Per-job progress fan-out to the progress store and a live subscriber.

    One subscriber slot exists per job; a new subscription detaches the
    previous one. The store write happens on every publish, independent of
    subscriber state. Jobs closed by cancellation stop accepting publishes,
    so a write still in flight can never resurrect a cleared snapshot.
    """

    def __init__(
        self,
        store: ProgressStore,
        ttl_seconds: int = 600,
        queue_size: int = 100,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.queue_size = queue_size
        self._subscribers: dict[str, _Subscription] = {}
        self._closed: set[str] = set()
        self._lock = threading.Lock()

    def _is_closed(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._closed

    def has_subscriber(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._subscribers

    async def publish(self, snapshot: ProgressSnapshot) -> bool:
        """Persist ``snapshot`` and deliver it to the attached subscriber.

        Returns:
            False if the job was closed and the snapshot was dropped
        """
        job_id = snapshot.job_id
        if self._is_closed(job_id):
            return False

        try:
            await self.store.set(snapshot, self.ttl_seconds)
        except ProgressStoreError as e:
            logger.error("Progress store write failed", exc_info=e, extra={"job_id": job_id})

        if self._is_closed(job_id):
            # Cancellation cleared the store while our write was in flight
            await self._delete_quietly(job_id)
            return False

        with self._lock:
            subscription = self._subscribers.get(job_id)
        if subscription is not None:
            subscription.offer(snapshot)
        return True

    async def discard(self, job_id: str, notice: Optional[ProgressSnapshot] = None) -> None:
        """Close a job's channel and delete its stored snapshot.

        The subscriber, if any, receives ``notice`` and is detached. The
        close happens before the first await, so no publish issued after
        this call starts can reach the store.
        """
        with self._lock:
            self._closed.add(job_id)
            subscription = self._subscribers.pop(job_id, None)
        if subscription is not None:
            if notice is not None:
                subscription.offer(notice)
            subscription.close()
        await self._delete_quietly(job_id)

    def forget(self, job_id: str) -> None:
        """Drop the closed mark once the job's publisher has finished."""
        with self._lock:
            self._closed.discard(job_id)

    async def _delete_quietly(self, job_id: str) -> None:
        try:
            await self.store.delete(job_id)
        except ProgressStoreError as e:
            logger.error("Progress store delete failed", exc_info=e, extra={"job_id": job_id})

    async def latest(self, job_id: str) -> Optional[ProgressSnapshot]:
        """Stored snapshot for polling, None when unknown or expired."""
        return await self.store.get(job_id)

    async def subscribe(self, job_id: str) -> AsyncIterator[ProgressSnapshot]:
        """Stream snapshots for ``job_id`` until a terminal one or detachment.

        A stored snapshot, if present, is replayed first. Closing the
        iterator (client disconnect) only detaches; the job keeps running.
        """
        subscription = _Subscription(job_id, self.queue_size)
        with self._lock:
            previous = self._subscribers.get(job_id)
            self._subscribers[job_id] = subscription
        if previous is not None:
            previous.close()
        PROGRESS_SUBSCRIBERS.inc()

        try:
            last: Optional[ProgressSnapshot] = None
            try:
                last = await self.store.get(job_id)
            except ProgressStoreError as e:
                logger.warning("Progress replay unavailable", extra={"job_id": job_id, "error": str(e)})
            if last is not None:
                yield last
                if last.is_terminal:
                    return

            while True:
                snapshot = await subscription.queue.get()
                if snapshot is None:
                    return
                if (
                    last is not None
                    and not snapshot.is_terminal
                    and snapshot.percent <= last.percent
                ):
                    continue
                last = snapshot
                yield snapshot
                if snapshot.is_terminal:
                    return
        finally:
            subscription.closed = True
            with self._lock:
                if self._subscribers.get(job_id) is subscription:
                    del self._subscribers[job_id]
            PROGRESS_SUBSCRIBERS.dec()
