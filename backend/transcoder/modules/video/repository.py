"""Repository and metadata store for artifact records."""

import secrets
import time
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from transcoder.modules.video.models import ArtifactRecord
from transcoder.modules.video.schemas import ArtifactMetadata


def generate_video_id() -> str:
    """Millisecond timestamp with a random suffix."""
    return f"{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


class ArtifactRecordRepository:
    """Repository for ArtifactRecord operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, metadata: ArtifactMetadata) -> ArtifactRecord:
        """Insert a record for ``metadata``, assigning a video id if missing."""
        record = ArtifactRecord(
            video_id=metadata.video_id or generate_video_id(),
            filename=metadata.filename,
            extension=metadata.extension,
            user_id=metadata.user_id,
            s3_url=metadata.s3_url,
            date_created=metadata.date_created,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_by_id(self, video_id: str) -> Optional[ArtifactRecord]:
        result = await self.session.execute(
            select(ArtifactRecord).where(ArtifactRecord.video_id == video_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: str) -> list[ArtifactRecord]:
        result = await self.session.execute(
            select(ArtifactRecord)
            .where(ArtifactRecord.user_id == user_id)
            .order_by(ArtifactRecord.date_created.desc())
        )
        return list(result.scalars().all())


class MetadataStore(Protocol):
    async def create_artifact_record(self, metadata: ArtifactMetadata) -> ArtifactMetadata: ...


class SqlMetadataStore:
    """Metadata store committing each record in its own session."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def create_artifact_record(self, metadata: ArtifactMetadata) -> ArtifactMetadata:
        async with self.session_maker() as session:
            record = await ArtifactRecordRepository(session).create(metadata)
            await session.commit()
            return ArtifactMetadata.model_validate(record)
