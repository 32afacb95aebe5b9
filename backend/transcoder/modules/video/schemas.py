"""Pydantic schemas for artifacts and the manual upload routes."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ArtifactMetadata(BaseModel):
    """Metadata recorded for an uploaded artifact."""
    video_id: Optional[str] = Field(None, alias="videoId")
    filename: str
    extension: str
    user_id: str = Field(..., alias="userId")
    s3_url: str = Field(..., alias="s3Url")
    date_created: datetime = Field(..., alias="dateCreated")

    class Config:
        populate_by_name = True
        from_attributes = True


class TempUploadResponse(BaseModel):
    message: str = "File uploaded temporarily"
    file_name: str = Field(..., alias="fileName")

    class Config:
        populate_by_name = True


class S3UploadRequest(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId")
    file_name: Optional[str] = Field(None, alias="fileName")

    class Config:
        populate_by_name = True


class S3UploadResponse(BaseModel):
    message: str = "File uploaded successfully to S3"
    video_id: Optional[str] = Field(None, alias="videoId")
    presigned_url: str = Field(..., alias="presignedUrl")

    class Config:
        populate_by_name = True


class RefreshedUrlResponse(BaseModel):
    refreshed_url: str = Field(..., alias="refreshedUrl")

    class Config:
        populate_by_name = True


class PresignedUrlResponse(BaseModel):
    presigned_url: str = Field(..., alias="presignedUrl")

    class Config:
        populate_by_name = True
