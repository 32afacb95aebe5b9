"""Database models for stored artifacts."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from transcoder.core.database import Base


class ArtifactRecord(Base):
    """Metadata of one artifact persisted to object storage.

    Written once after a successful upload and never updated.
    """
    __tablename__ = "artifact_records"

    video_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    extension: Mapped[str] = mapped_column(String(16), nullable=False, default="")
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    s3_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    date_created: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ArtifactRecord {self.video_id} - {self.user_id}/{self.filename}>"
