"""HTTP surface tests over an in-process ASGI transport."""

import json
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI

from fakes import ScriptedEngine, build_service, make_snapshot, wait_until
from transcoder.modules.transcoding.models import JobStatus
from transcoder.modules.transcoding.router import router as transcoding_router
from transcoder.modules.video.router import router as video_router
from transcoder.modules.video.storage import StorageError

PREFIX = "/api/video"


def make_app(tmp_path: Path, engine=None):
    service = build_service(tmp_path / "videos-handling", engine=engine)
    app = FastAPI()
    app.include_router(transcoding_router, prefix=PREFIX)
    app.include_router(video_router, prefix=PREFIX)
    app.state.transcoding_service = service
    app.state.artifact_store = service.finalizer.artifact_store
    app.state.uploads_dir = tmp_path / "uploads"
    return app, service


def client_for(app: FastAPI) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


class TestTranscodingRoutes:
    @pytest.mark.asyncio
    async def test_submit_returns_job_id(self, tmp_path: Path) -> None:
        app, service = make_app(tmp_path)

        async with client_for(app) as client:
            response = await client.post(
                f"{PREFIX}/transcoding",
                files={"video": ("clip.mp4", b"raw video", "video/mp4")},
                data={"transcodingOption": "1280x720-libx264", "userId": "user-1"},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Transcoding started"
        job_id = body["transcodingJobId"]
        assert job_id

        await wait_until(lambda: len(service.registry) == 0)
        await wait_until(lambda: job_id in service.channel.store.entries
                         and service.channel.store.entries[job_id].is_terminal)
        assert service.channel.store.entries[job_id].status is JobStatus.COMPLETED
        uploads = list((tmp_path / "uploads").iterdir())
        assert len(uploads) == 1
        assert uploads[0].name.endswith("-clip.mp4")

    @pytest.mark.asyncio
    async def test_submit_without_option_is_400(self, tmp_path: Path) -> None:
        app, service = make_app(tmp_path)

        async with client_for(app) as client:
            response = await client.post(
                f"{PREFIX}/transcoding",
                files={"video": ("clip.mp4", b"raw video", "video/mp4")},
                data={"userId": "user-1"},
            )

        assert response.status_code == 400
        assert len(service.registry) == 0
        assert list((tmp_path / "uploads").iterdir()) == []

    @pytest.mark.asyncio
    async def test_cancel_requires_job_id(self, tmp_path: Path) -> None:
        app, _ = make_app(tmp_path)

        async with client_for(app) as client:
            empty = await client.request("DELETE", f"{PREFIX}/cancel-transcoding", json={})
            missing = await client.request("DELETE", f"{PREFIX}/cancel-transcoding")

        assert empty.status_code == 400
        assert missing.status_code == 400

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent_over_http(self, tmp_path: Path) -> None:
        engine = ScriptedEngine(hold=True)
        app, service = make_app(tmp_path, engine=engine)
        job = await service.submit(str(tmp_path / "in.mov"), "1280x720-libx264", "user-1")
        handle = service.registry.lookup(job.job_id)

        async with client_for(app) as client:
            first = await client.request(
                "DELETE", f"{PREFIX}/cancel-transcoding", json={"transcodingJobId": job.job_id}
            )
            second = await client.request(
                "DELETE", f"{PREFIX}/cancel-transcoding", json={"transcodingJobId": job.job_id}
            )
        await handle.task

        assert first.status_code == 200
        assert first.json()["result"] == "ok"
        assert second.status_code == 200
        assert second.json()["result"] == "not-found"
        assert job.job_id not in service.channel.store.entries

    @pytest.mark.asyncio
    async def test_progress_stream_for_finished_job(self, tmp_path: Path) -> None:
        app, service = make_app(tmp_path)
        await service.channel.publish(make_snapshot(job_id="77", percent=100, status=JobStatus.COMPLETED))

        async with client_for(app) as client:
            response = await client.get(f"{PREFIX}/progress", params={"jobId": "77"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.text.endswith("\n\n")
        assert response.text.startswith("data: ")
        payload = json.loads(response.text[len("data: "):].strip())
        assert payload["jobId"] == "77"
        assert payload["status"] == "completed"
        assert payload["percent"] == 100

    @pytest.mark.asyncio
    async def test_progress_requires_job_id(self, tmp_path: Path) -> None:
        app, _ = make_app(tmp_path)

        async with client_for(app) as client:
            response = await client.get(f"{PREFIX}/progress")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_poll_status(self, tmp_path: Path) -> None:
        app, service = make_app(tmp_path)
        await service.channel.publish(
            make_snapshot(job_id="88", percent=12, status=JobStatus.FAILED, error="bad input")
        )

        async with client_for(app) as client:
            found = await client.get(f"{PREFIX}/transcoding/88")
            missing = await client.get(f"{PREFIX}/transcoding/unknown")

        assert found.status_code == 200
        assert found.json()["status"] == "failed"
        assert found.json()["error"] == "bad input"
        assert missing.status_code == 404


class TestVideoRoutes:
    @pytest.mark.asyncio
    async def test_health_check(self, tmp_path: Path) -> None:
        app, _ = make_app(tmp_path)

        async with client_for(app) as client:
            response = await client.get(f"{PREFIX}/health-check")

        assert response.status_code == 200
        assert response.text == "Server is alive"

    @pytest.mark.asyncio
    async def test_presigned_and_refreshed_urls(self, tmp_path: Path) -> None:
        app, _ = make_app(tmp_path)

        async with client_for(app) as client:
            presigned = await client.get(f"{PREFIX}/presigned-url/user-1/a.mp4")
            refreshed = await client.get(f"{PREFIX}/refresh-url/user-1/a.mp4")

        assert presigned.json() == {"presignedUrl": "https://storage.test/user-1/a.mp4?expires=3600"}
        assert refreshed.json() == {"refreshedUrl": "https://storage.test/user-1/a.mp4?expires=3600"}

    @pytest.mark.asyncio
    async def test_signing_failure_is_500(self, tmp_path: Path) -> None:
        app, service = make_app(tmp_path)

        async def broken(user, key, expires_in):
            raise StorageError("no credentials")

        service.finalizer.artifact_store.generate_download_url = broken

        async with client_for(app) as client:
            response = await client.get(f"{PREFIX}/refresh-url/user-1/a.mp4")

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_two_phase_upload(self, tmp_path: Path) -> None:
        app, service = make_app(tmp_path)

        async with client_for(app) as client:
            temp = await client.post(
                f"{PREFIX}/upload/temp",
                files={"file": ("holiday.mp4", b"video bytes", "video/mp4")},
            )
            assert temp.status_code == 200
            assert temp.json() == {"message": "File uploaded temporarily", "fileName": "holiday.mp4"}
            assert (service.videos_dir / "holiday.mp4").exists()

            uploaded = await client.post(
                f"{PREFIX}/upload/s3", json={"userId": "user-1", "fileName": "holiday.mp4"}
            )

        assert uploaded.status_code == 200
        body = uploaded.json()
        assert body["message"] == "File uploaded successfully to S3"
        assert body["videoId"] == "vid-1"
        assert body["presignedUrl"] == "https://storage.test/user-1/holiday.mp4?expires=3600"
        assert not (service.videos_dir / "holiday.mp4").exists()

    @pytest.mark.asyncio
    async def test_upload_s3_errors(self, tmp_path: Path) -> None:
        app, _ = make_app(tmp_path)

        async with client_for(app) as client:
            no_name = await client.post(f"{PREFIX}/upload/s3", json={"userId": "user-1"})
            absent = await client.post(
                f"{PREFIX}/upload/s3", json={"userId": "user-1", "fileName": "ghost.mp4"}
            )

        assert no_name.status_code == 400
        assert absent.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_local_artifact(self, tmp_path: Path) -> None:
        app, service = make_app(tmp_path)
        (service.videos_dir / "123.mp4").write_bytes(b"encoded")
        await service.channel.publish(make_snapshot(job_id="123", percent=100, status=JobStatus.COMPLETED))

        async with client_for(app) as client:
            deleted = await client.delete(f"{PREFIX}/123.mp4")
            again = await client.delete(f"{PREFIX}/123.mp4")

        assert deleted.status_code == 200
        assert deleted.text == "Delete done!"
        assert not (service.videos_dir / "123.mp4").exists()
        assert "123" not in service.channel.store.entries
        assert again.status_code == 404
