"""Prometheus metrics for the transcoding service."""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "transcoder_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Transcoding Metrics
# ============================================
TRANSCODE_JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Transcoding jobs by terminal status",
    ["status"],
    registry=REGISTRY,
)

TRANSCODE_JOBS_ACTIVE = Gauge(
    "transcode_jobs_active",
    "Transcoding jobs currently registered (queued or encoding)",
    registry=REGISTRY,
)

TRANSCODE_DURATION_SECONDS = Histogram(
    "transcode_duration_seconds",
    "Wall time of the external encode process",
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800, 3600],
    registry=REGISTRY,
)

UPLOAD_ATTEMPTS_TOTAL = Counter(
    "transcode_upload_attempts_total",
    "Artifact upload attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

PROGRESS_SUBSCRIBERS = Gauge(
    "progress_subscribers",
    "Live progress subscribers currently attached",
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Render all metrics in Prometheus exposition format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Content type for the metrics endpoint."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info labels."""
    APP_INFO.info({"version": version, "environment": environment})
