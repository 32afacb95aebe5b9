"""Video API router.

Health check, the manual two-phase upload path, signed URL refresh and
deletion of local artifacts.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import PlainTextResponse

from transcoder.core.config import settings
from transcoder.core.logging import log_error, log_info
from transcoder.modules.transcoding.dependencies import get_artifact_store, get_transcoding_service
from transcoder.modules.transcoding.errors import (
    ArtifactMissing,
    InvalidRequest,
    ProgressStoreError,
    UploadFailure,
)
from transcoder.modules.transcoding.files import resolve_in, safe_filename, save_stream
from transcoder.modules.transcoding.service import TranscodingService
from transcoder.modules.video.schemas import (
    PresignedUrlResponse,
    RefreshedUrlResponse,
    S3UploadRequest,
    S3UploadResponse,
    TempUploadResponse,
)
from transcoder.modules.video.storage import ArtifactStore, StorageError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["videos"])


@router.get("/health-check", response_class=PlainTextResponse)
async def health_check() -> str:
    return "Server is alive"


@router.get("/refresh-url/{user}/{filename}", response_model=RefreshedUrlResponse)
async def refresh_url(
    user: str,
    filename: str,
    store: ArtifactStore = Depends(get_artifact_store),
):
    """Sign a fresh download URL for an already stored artifact."""
    try:
        url = await store.generate_download_url(user, filename, settings.DOWNLOAD_URL_EXPIRE_SECONDS)
    except StorageError as e:
        log_error(logger, "Error refreshing presigned URL", e, user_id=user, file_name=filename)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not refresh presigned URL",
        )
    return RefreshedUrlResponse(refreshed_url=url)


@router.get("/presigned-url/{user_id}/{filename}", response_model=PresignedUrlResponse)
async def presigned_url(
    user_id: str,
    filename: str,
    store: ArtifactStore = Depends(get_artifact_store),
):
    try:
        url = await store.generate_download_url(user_id, filename, settings.DOWNLOAD_URL_EXPIRE_SECONDS)
    except StorageError as e:
        log_error(logger, "Error generating presigned URL", e, user_id=user_id, file_name=filename)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error generating presigned URL",
        )
    return PresignedUrlResponse(presigned_url=url)


@router.post("/upload/temp", response_model=TempUploadResponse)
async def upload_temp(
    file: UploadFile = File(...),
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Stage a file in the handling directory for a later ``/upload/s3``."""
    try:
        name = safe_filename(file.filename or "")
    except InvalidRequest:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

    destination = service.videos_dir / name
    await asyncio.to_thread(save_stream, file.file, destination)
    log_info(logger, f"Saved temporary upload to {destination}", file_name=name)
    return TempUploadResponse(file_name=name)


@router.post("/upload/s3", response_model=S3UploadResponse)
async def upload_s3(
    request: S3UploadRequest,
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Upload a staged file, record its metadata and remove the local copy."""
    if not request.file_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file specified for upload to S3",
        )
    if not request.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required")

    try:
        metadata = await service.finalizer.finalize(request.user_id, request.file_name)
    except InvalidRequest as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ArtifactMissing as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except UploadFailure as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    except StorageError as e:
        log_error(logger, "Error signing download URL", e, file_name=request.file_name)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload file to S3",
        )

    return S3UploadResponse(video_id=metadata.video_id, presigned_url=metadata.s3_url)


@router.delete("/{file_name}", response_class=PlainTextResponse)
async def delete_file(
    file_name: str,
    service: TranscodingService = Depends(get_transcoding_service),
) -> str:
    """Delete a local artifact and the progress entry of the job that made it."""
    try:
        path = resolve_in(service.videos_dir, file_name)
    except InvalidRequest as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    try:
        path.unlink()
    except FileNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    job_id = file_name.split(".")[0]
    try:
        await service.channel.store.delete(job_id)
    except ProgressStoreError as e:
        log_error(logger, "Failed to delete progress entry", e, job_id=job_id)

    log_info(logger, f"Deleted local artifact {file_name}", file_name=file_name)
    return "Delete done!"
