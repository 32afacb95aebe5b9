"""Transcoding API router.

Submission, cancellation, live progress (server-sent events) and polling.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse

from transcoder.core.logging import log_info
from transcoder.modules.transcoding.dependencies import get_transcoding_service, get_uploads_dir
from transcoder.modules.transcoding.errors import InvalidRequest, ProgressStoreError
from transcoder.modules.transcoding.files import cleanup_local_file, safe_filename, save_stream
from transcoder.modules.transcoding.schemas import (
    CancelTranscodingRequest,
    CancelTranscodingResponse,
    ProgressSnapshot,
    TranscodingStartResponse,
)
from transcoder.modules.transcoding.service import TranscodingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["transcoding"])


@router.post("/transcoding", response_model=TranscodingStartResponse)
async def start_transcoding(
    video: UploadFile = File(...),
    transcodingOption: Optional[str] = Form(None),
    userId: Optional[str] = Form(None),
    service: TranscodingService = Depends(get_transcoding_service),
    uploads_dir: Path = Depends(get_uploads_dir),
):
    """Store the upload and start transcoding it in the background.

    Returns as soon as the job is registered; progress is observed through
    ``GET /progress`` or ``GET /transcoding/{jobId}``.
    """
    try:
        name = safe_filename(video.filename or "")
    except InvalidRequest as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    input_path = uploads_dir / f"{int(time.time() * 1000)}-{name}"
    await asyncio.to_thread(save_stream, video.file, input_path)

    try:
        job = await service.submit(str(input_path), transcodingOption, userId)
    except InvalidRequest as e:
        cleanup_local_file(input_path)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    return TranscodingStartResponse(transcoding_job_id=job.job_id)


@router.delete("/cancel-transcoding", response_model=CancelTranscodingResponse)
async def cancel_transcoding(
    request: Optional[CancelTranscodingRequest] = Body(None),
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Cancel a job. Unknown or already finished jobs still answer 200."""
    job_id = request.transcoding_job_id if request else None
    if not job_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Transcoding job ID is required",
        )

    result = await service.cancel(job_id)
    return CancelTranscodingResponse(
        message=f"Transcoding job {job_id} canceled successfully",
        result=result.value,
    )


@router.get("/progress")
async def stream_progress(
    jobId: Optional[str] = Query(None),
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Stream progress snapshots as server-sent events.

    The stream ends on a terminal snapshot, on cancellation, or when the
    client goes away. Disconnecting never affects the job itself.
    """
    if not jobId:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Transcoding job ID is required",
        )

    async def event_stream() -> AsyncIterator[str]:
        log_info(logger, f"Progress subscriber attached to job {jobId}", job_id=jobId)
        async for snapshot in service.channel.subscribe(jobId):
            yield f"data: {snapshot.to_json()}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get(
    "/transcoding/{job_id}",
    response_model=ProgressSnapshot,
    response_model_exclude_none=True,
)
async def get_transcoding_status(
    job_id: str,
    service: TranscodingService = Depends(get_transcoding_service),
):
    """Latest known snapshot for a job, 404 when unknown or expired."""
    try:
        snapshot = await service.status(job_id)
    except ProgressStoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)

    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transcoding job {job_id} not found",
        )
    return snapshot
