"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from transcoder.core.config import settings
from transcoder.core.database import async_session_maker, init_models
from transcoder.core.logging import setup_logging
from transcoder.core.metrics import get_content_type, get_metrics, set_app_info
from transcoder.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from transcoder.core.redis import redis_client
from transcoder.modules.transcoding.progress import RedisProgressStore
from transcoder.modules.transcoding.router import router as transcoding_router
from transcoder.modules.transcoding.service import build_transcoding_service
from transcoder.modules.video.repository import SqlMetadataStore
from transcoder.modules.video.router import router as video_router
from transcoder.modules.video.storage import get_default_storage


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    await init_models()
    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    settings.videos_dir.mkdir(parents=True, exist_ok=True)

    artifact_store = get_default_storage()
    service = build_transcoding_service(
        progress_store=RedisProgressStore(redis_client),
        artifact_store=artifact_store,
        metadata_store=SqlMetadataStore(async_session_maker),
        config=settings,
    )
    app.state.transcoding_service = service
    app.state.artifact_store = artifact_store
    app.state.uploads_dir = settings.uploads_dir

    yield

    await service.shutdown(timeout=settings.SHUTDOWN_TIMEOUT_SECONDS)
    await redis_client.aclose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Video transcoding with live progress, cancellation and S3 upload.",
    lifespan=lifespan,
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


# The catch-all DELETE /{file_name} in the video router must come last
app.include_router(transcoding_router, prefix=settings.API_PREFIX)
app.include_router(video_router, prefix=settings.API_PREFIX)
