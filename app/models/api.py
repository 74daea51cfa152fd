from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import (
    MAX_SOURCE_IMAGES,
    MergeFields,
    OverlayUpdate,
    TimelineSpecification,
    VideoJob,
)


class VideoGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(default="", validation_alias="prompt")
    style_id: Optional[str] = Field(default=None, validation_alias="style_id")
    source_images: List[str] = Field(default_factory=list, max_length=MAX_SOURCE_IMAGES, validation_alias="source_images")
    logo_ref: Optional[str] = Field(default=None, validation_alias="logo_ref")
    auto_generate: bool = Field(default=True, validation_alias="auto_generate")

    @field_validator("source_images")
    def validate_source_images(cls, value: List[str]) -> List[str]:  # noqa: D417
        cleaned = [item.strip() for item in value]
        if any(not item for item in cleaned):
            raise ValueError("source image references must not be blank")
        return cleaned


class JobMediaUrls(BaseModel):
    source_images: List[Optional[str]] = Field(default_factory=list)
    segments: Optional[List[Optional[str]]] = None
    logo: Optional[str] = None
    final_video: Optional[str] = None


class VideoJobResponse(BaseModel):
    job: VideoJob
    media: Optional[JobMediaUrls] = None


class VideoJobListResponse(BaseModel):
    items: List[VideoJob]


class CompositionRequest(BaseModel):
    overlay: OverlayUpdate = Field(default_factory=MergeFields)


class TimelineResponse(BaseModel):
    timeline: TimelineSpecification
    render_props: dict[str, Any]


class FrameStateResponse(BaseModel):
    state: dict[str, Any]


class RenderedVideoRequest(BaseModel):
    video_url: str

    @field_validator("video_url")
    def validate_video_url(cls, value: str) -> str:  # noqa: D417
        cleaned = value.strip()
        if not cleaned.lower().startswith(("http://", "https://")):
            raise ValueError("video_url must be an http(s) URL")
        return cleaned


class MediaAsset(BaseModel):
    key: str
    url: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None


class MediaListResponse(BaseModel):
    items: List[MediaAsset]


class MediaUploadResponse(BaseModel):
    asset: MediaAsset


class MediaUploadRequest(BaseModel):
    folder: str
    filename: Optional[str] = None
    content_type: Optional[str] = None
    data: str
