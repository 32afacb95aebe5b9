"""S3 artifact storage with presigned URLs.

Objects are namespaced per user as ``<user_id>/<filename>``. Uploads go
through a short-lived presigned PUT URL, the same way browser clients
upload.
"""

import asyncio
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from transcoder.core.config import settings

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024


class StorageError(Exception):
    """Signing or transferring an object failed."""


class ArtifactStore(Protocol):
    """Object store exposing time-limited signed URLs per user namespace."""

    async def generate_upload_url(self, user: str, key: str, expires_in: int) -> str: ...

    async def generate_download_url(self, user: str, key: str, expires_in: int) -> str: ...

    async def put_bytes(self, url: str, local_path: str) -> None: ...


@dataclass
class S3Config:
    """Configuration for S3-compatible storage."""
    bucket: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None


def object_key(user: str, key: str) -> str:
    """User-namespaced object key."""
    return f"{user}/{key}"


def guess_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


async def iter_file_chunks(path: Path, chunk_size: int = UPLOAD_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Read ``path`` in chunks off the event loop."""
    with open(path, "rb") as f:
        while True:
            chunk = await asyncio.to_thread(f.read, chunk_size)
            if not chunk:
                break
            yield chunk


class S3ArtifactStore:
    """Artifact store backed by S3 or an S3-compatible service."""

    def __init__(
        self,
        config: S3Config,
        http_client: Optional[httpx.AsyncClient] = None,
        upload_timeout: float = 300.0,
    ):
        self.config = config
        self._client = None
        self._http_client = http_client
        self._upload_timeout = upload_timeout

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region,
                "config": BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
            }
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
            if self.config.access_key and self.config.secret_key:
                client_kwargs["aws_access_key_id"] = self.config.access_key
                client_kwargs["aws_secret_access_key"] = self.config.secret_key
            self._client = boto3.client(**client_kwargs)
        return self._client

    def _presign(self, operation: str, user: str, key: str, expires_in: int) -> str:
        try:
            return self._get_client().generate_presigned_url(
                operation,
                Params={"Bucket": self.config.bucket, "Key": object_key(user, key)},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not sign {operation} for {object_key(user, key)}: {e}") from e

    async def generate_upload_url(self, user: str, key: str, expires_in: int = 3600) -> str:
        """Presigned PUT URL for ``<user>/<key>``."""
        return await asyncio.to_thread(self._presign, "put_object", user, key, expires_in)

    async def generate_download_url(self, user: str, key: str, expires_in: int = 3600) -> str:
        """Presigned GET URL for ``<user>/<key>``.

        Calling it again for the same object is how expired links are refreshed.
        """
        return await asyncio.to_thread(self._presign, "get_object", user, key, expires_in)

    async def put_bytes(self, url: str, local_path: str) -> None:
        """PUT the file at ``local_path`` to a presigned URL.

        Raises:
            StorageError: On any transport error or non-2xx response
        """
        path = Path(local_path)
        try:
            size = path.stat().st_size
        except OSError as e:
            raise StorageError(f"Upload of {path.name} failed: {e}") from e
        # Presigned PUTs reject chunked transfer encoding
        headers = {
            "Content-Type": guess_content_type(local_path),
            "Content-Length": str(size),
        }

        try:
            if self._http_client is not None:
                response = await self._http_client.put(
                    url, content=iter_file_chunks(path), headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._upload_timeout) as client:
                    response = await client.put(
                        url, content=iter_file_chunks(path), headers=headers
                    )
            response.raise_for_status()
        except (httpx.HTTPError, OSError) as e:
            raise StorageError(f"Upload of {path.name} failed: {e}") from e

        logger.info("Uploaded artifact", extra={"file_name": path.name, "size": size})


def get_default_storage() -> S3ArtifactStore:
    """Artifact store configured from settings."""
    config = S3Config(
        bucket=settings.STORAGE_BUCKET,
        region=settings.STORAGE_REGION,
        endpoint_url=settings.STORAGE_ENDPOINT_URL,
        access_key=settings.STORAGE_ACCESS_KEY or os.environ.get("AWS_ACCESS_KEY_ID"),
        secret_key=settings.STORAGE_SECRET_KEY or os.environ.get("AWS_SECRET_ACCESS_KEY"),
    )
    return S3ArtifactStore(config)
