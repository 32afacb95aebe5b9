"""FastAPI dependencies resolving the services built at application start-up."""

from pathlib import Path

from fastapi import Request

from transcoder.modules.transcoding.service import TranscodingService
from transcoder.modules.video.storage import ArtifactStore


def get_transcoding_service(request: Request) -> TranscodingService:
    return request.app.state.transcoding_service


def get_artifact_store(request: Request) -> ArtifactStore:
    return request.app.state.artifact_store


def get_uploads_dir(request: Request) -> Path:
    return request.app.state.uploads_dir
