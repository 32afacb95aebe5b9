"""Tests for progress persistence and live fan-out."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis
from hypothesis import given, settings, strategies as st

from fakes import InMemoryProgressStore, make_snapshot, wait_until
from transcoder.modules.transcoding.errors import ProgressStoreError
from transcoder.modules.transcoding.models import JobStatus
from transcoder.modules.transcoding.progress import ProgressChannel, RedisProgressStore, progress_key
from transcoder.modules.transcoding.schemas import ProgressSnapshot


async def collect(channel: ProgressChannel, job_id: str, into: list) -> None:
    async for snapshot in channel.subscribe(job_id):
        into.append(snapshot)


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_without_subscriber_still_writes_store(self) -> None:
        store = InMemoryProgressStore()
        channel = ProgressChannel(store, ttl_seconds=600)

        assert await channel.publish(make_snapshot(percent=10)) is True

        assert store.entries["job-1"].percent == 10
        assert store.ttls["job-1"] == 600

    @pytest.mark.asyncio
    async def test_writes_replace_previous_snapshot(self) -> None:
        store = InMemoryProgressStore()
        channel = ProgressChannel(store)

        await channel.publish(make_snapshot(percent=10))
        await channel.publish(make_snapshot(percent=20))

        assert len(store.entries) == 1
        assert store.entries["job-1"].percent == 20

    @pytest.mark.asyncio
    async def test_store_failure_does_not_block_delivery(self) -> None:
        store = InMemoryProgressStore()
        store.set = AsyncMock(side_effect=ProgressStoreError("redis down"))
        channel = ProgressChannel(store)
        received: list = []
        task = asyncio.create_task(collect(channel, "job-1", received))
        await wait_until(lambda: channel.has_subscriber("job-1"))

        await channel.publish(make_snapshot(percent=100, status=JobStatus.COMPLETED))
        await asyncio.wait_for(task, timeout=1.0)

        assert [s.status for s in received] == [JobStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_discarded_job_drops_later_publishes(self) -> None:
        store = InMemoryProgressStore()
        channel = ProgressChannel(store)
        await channel.publish(make_snapshot(percent=10))

        await channel.discard("job-1")

        assert await channel.publish(make_snapshot(percent=20)) is False
        assert "job-1" not in store.entries

        channel.forget("job-1")
        assert await channel.publish(make_snapshot(percent=30)) is True

    @pytest.mark.asyncio
    async def test_write_in_flight_during_discard_is_removed(self) -> None:
        store = InMemoryProgressStore()
        channel = ProgressChannel(store)
        write_started = asyncio.Event()
        finish_write = asyncio.Event()
        original_set = store.set

        async def slow_set(snapshot, ttl_seconds):
            write_started.set()
            await finish_write.wait()
            await original_set(snapshot, ttl_seconds)

        store.set = slow_set
        publish = asyncio.create_task(channel.publish(make_snapshot(percent=40)))
        await write_started.wait()

        await channel.discard("job-1")
        finish_write.set()

        assert await publish is False
        assert "job-1" not in store.entries


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_subscriber_receives_updates_until_terminal(self) -> None:
        channel = ProgressChannel(InMemoryProgressStore())
        received: list = []
        task = asyncio.create_task(collect(channel, "job-1", received))
        await wait_until(lambda: channel.has_subscriber("job-1"))

        for percent in (25, 50):
            await channel.publish(make_snapshot(percent=percent))
        await channel.publish(make_snapshot(percent=100, status=JobStatus.COMPLETED))
        await asyncio.wait_for(task, timeout=1.0)

        assert [s.percent for s in received] == [25, 50, 100]
        assert received[-1].status is JobStatus.COMPLETED
        assert not channel.has_subscriber("job-1")

    @pytest.mark.asyncio
    async def test_unknown_job_yields_nothing_until_an_event_arrives(self) -> None:
        channel = ProgressChannel(InMemoryProgressStore())
        received: list = []
        task = asyncio.create_task(collect(channel, "expired", received))
        await wait_until(lambda: channel.has_subscriber("expired"))

        await asyncio.sleep(0.05)
        assert received == []
        assert not task.done()

        await channel.publish(make_snapshot(job_id="expired", percent=5))
        await wait_until(lambda: len(received) == 1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not channel.has_subscriber("expired")

    @pytest.mark.asyncio
    async def test_stored_snapshot_is_replayed_first(self) -> None:
        store = InMemoryProgressStore()
        channel = ProgressChannel(store)
        await channel.publish(make_snapshot(percent=60))
        received: list = []
        task = asyncio.create_task(collect(channel, "job-1", received))
        await wait_until(lambda: len(received) == 1)

        await channel.publish(make_snapshot(percent=100, status=JobStatus.COMPLETED))
        await asyncio.wait_for(task, timeout=1.0)

        assert [s.percent for s in received] == [60, 100]

    @pytest.mark.asyncio
    async def test_terminal_snapshot_in_store_ends_stream(self) -> None:
        store = InMemoryProgressStore()
        channel = ProgressChannel(store)
        await channel.publish(make_snapshot(percent=30, status=JobStatus.FAILED, error="boom"))

        received = []
        await asyncio.wait_for(collect(channel, "job-1", received), timeout=1.0)

        assert len(received) == 1
        assert received[0].status is JobStatus.FAILED
        assert received[0].error == "boom"

    @pytest.mark.asyncio
    async def test_last_attach_wins(self) -> None:
        channel = ProgressChannel(InMemoryProgressStore())
        first: list = []
        second: list = []
        first_task = asyncio.create_task(collect(channel, "job-1", first))
        await wait_until(lambda: channel.has_subscriber("job-1"))

        second_task = asyncio.create_task(collect(channel, "job-1", second))
        await asyncio.wait_for(first_task, timeout=1.0)

        await channel.publish(make_snapshot(percent=100, status=JobStatus.COMPLETED))
        await asyncio.wait_for(second_task, timeout=1.0)

        assert first == []
        assert [s.status for s in second] == [JobStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_discard_delivers_notice_and_detaches(self) -> None:
        channel = ProgressChannel(InMemoryProgressStore())
        received: list = []
        task = asyncio.create_task(collect(channel, "job-1", received))
        await wait_until(lambda: channel.has_subscriber("job-1"))

        await channel.discard("job-1", notice=make_snapshot(percent=40, status=JobStatus.CANCELED))
        await asyncio.wait_for(task, timeout=1.0)

        assert [s.status for s in received] == [JobStatus.CANCELED]

    @given(percents=st.lists(st.floats(min_value=0, max_value=99), min_size=1, max_size=30))
    @settings(max_examples=50, deadline=None)
    @pytest.mark.asyncio
    async def test_delivered_percent_never_decreases(self, percents: list[float]) -> None:
        """**Feature: video-transcoder, Property 2: Monotone Progress**

        For any sequence of running snapshots, the percent seen by a live
        subscriber SHALL be non-decreasing.
        """
        channel = ProgressChannel(InMemoryProgressStore(), queue_size=len(percents) + 2)
        received: list = []
        task = asyncio.create_task(collect(channel, "job-1", received))
        await wait_until(lambda: channel.has_subscriber("job-1"))

        for percent in percents:
            await channel.publish(make_snapshot(percent=percent))
        await channel.publish(make_snapshot(percent=100, status=JobStatus.COMPLETED))
        await asyncio.wait_for(task, timeout=1.0)

        seen = [s.percent for s in received]
        assert seen == sorted(seen)
        assert received[-1].status is JobStatus.COMPLETED


class TestRedisProgressStore:
    @pytest.mark.asyncio
    async def test_set_uses_json_and_expiry(self) -> None:
        client = AsyncMock()
        store = RedisProgressStore(client)
        snapshot = make_snapshot(percent=12.5)

        await store.set(snapshot, ttl_seconds=600)

        client.set.assert_awaited_once_with(progress_key("job-1"), snapshot.to_json(), ex=600)

    @pytest.mark.asyncio
    async def test_get_parses_stored_json(self) -> None:
        client = AsyncMock()
        client.get.return_value = '{"jobId": "job-1", "percent": 42, "status": "running"}'
        store = RedisProgressStore(client)

        snapshot = await store.get("job-1")

        client.get.assert_awaited_once_with("progress:job-1")
        assert isinstance(snapshot, ProgressSnapshot)
        assert snapshot.percent == 42
        assert snapshot.status is JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_missing_or_unreadable_entry_is_none(self) -> None:
        client = AsyncMock()
        store = RedisProgressStore(client)

        client.get.return_value = None
        assert await store.get("job-1") is None

        client.get.return_value = "not json"
        assert await store.get("job-1") is None

    @pytest.mark.asyncio
    async def test_redis_errors_are_wrapped(self) -> None:
        client = AsyncMock()
        client.delete.side_effect = redis.ConnectionError("refused")
        store = RedisProgressStore(client)

        with pytest.raises(ProgressStoreError):
            await store.delete("job-1")

    def test_snapshot_json_uses_camel_case_and_hides_unset_error(self) -> None:
        payload = make_snapshot(percent=50).to_json()

        assert '"jobId":"job-1"' in payload
        assert '"userId":"user-1"' in payload
        assert "error" not in payload
