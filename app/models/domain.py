from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

VIDEO_WIDTH = 1080
VIDEO_HEIGHT = 1920
VIDEO_FPS = 30
SCENE_COUNT = 3
SCENE_DURATION_FRAMES = 180
TOTAL_DURATION_FRAMES = SCENE_COUNT * SCENE_DURATION_FRAMES
MAX_SOURCE_IMAGES = 3

DEFAULT_PRIMARY_COLOR = "#c72c41"
DEFAULT_SECONDARY_COLOR = "#FFFFFF"


class VideoJobStatus(str, Enum):
    QUEUED = "queued"
    GENERATING = "generating"
    EDITING = "editing"
    READY_TO_RENDER = "ready_to_render"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[VideoJobStatus, frozenset[VideoJobStatus]] = {
    VideoJobStatus.QUEUED: frozenset({VideoJobStatus.GENERATING, VideoJobStatus.FAILED}),
    VideoJobStatus.GENERATING: frozenset(
        {VideoJobStatus.GENERATING, VideoJobStatus.EDITING, VideoJobStatus.FAILED}
    ),
    VideoJobStatus.EDITING: frozenset(
        {VideoJobStatus.GENERATING, VideoJobStatus.READY_TO_RENDER, VideoJobStatus.FAILED}
    ),
    VideoJobStatus.READY_TO_RENDER: frozenset(
        {
            VideoJobStatus.GENERATING,
            VideoJobStatus.READY_TO_RENDER,
            VideoJobStatus.COMPLETED,
            VideoJobStatus.FAILED,
        }
    ),
    VideoJobStatus.COMPLETED: frozenset(
        {VideoJobStatus.GENERATING, VideoJobStatus.READY_TO_RENDER, VideoJobStatus.FAILED}
    ),
    VideoJobStatus.FAILED: frozenset(
        {VideoJobStatus.GENERATING, VideoJobStatus.READY_TO_RENDER, VideoJobStatus.FAILED}
    ),
}

STATUSES_WITH_SEGMENTS = frozenset(
    {VideoJobStatus.EDITING, VideoJobStatus.READY_TO_RENDER, VideoJobStatus.COMPLETED}
)


def can_transition(current: VideoJobStatus, target: VideoJobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class SegmentRole(str, Enum):
    INTRO = "intro"
    MAIN = "main"
    OUTRO = "outro"


SEGMENT_ROLE_ORDER: tuple[SegmentRole, ...] = (SegmentRole.INTRO, SegmentRole.MAIN, SegmentRole.OUTRO)


class LogoPosition(str, Enum):
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"


class Segment(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: SegmentRole
    clip_ref: str
    prompt: str


class Caption(BaseModel):
    text: str
    start_frame: int = Field(..., ge=0)
    end_frame: int

    @model_validator(mode="after")
    def validate_range(self) -> "Caption":
        if self.end_frame <= self.start_frame:
            raise ValueError("end_frame must be greater than start_frame")
        return self


class OverlaySpecification(BaseModel):
    captions: List[Caption] = Field(default_factory=list)
    logo_ref: Optional[str] = None
    logo_position: LogoPosition = LogoPosition.BOTTOM_RIGHT
    music_track: str = ""
    primary_color: str = DEFAULT_PRIMARY_COLOR
    secondary_color: str = DEFAULT_SECONDARY_COLOR


class ReplaceAll(BaseModel):
    mode: Literal["replace"] = "replace"
    spec: OverlaySpecification


class MergeFields(BaseModel):
    """Partial overlay update; only explicitly provided fields are applied."""

    mode: Literal["merge"] = "merge"
    captions: Optional[List[Caption]] = None
    logo_ref: Optional[str] = None
    logo_position: Optional[LogoPosition] = None
    music_track: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None

    def provided_fields(self) -> dict[str, Any]:
        fields = self.model_dump(exclude_unset=True, exclude={"mode"})
        return {key: value for key, value in fields.items() if value is not None}


OverlayUpdate = Annotated[Union[ReplaceAll, MergeFields], Field(discriminator="mode")]


class VideoJobStatusHistory(BaseModel):
    status: VideoJobStatus
    message: str
    occurred_at: datetime = Field(default_factory=datetime.utcnow)


class VideoJob(BaseModel):
    id: UUID
    prompt: str = ""
    style_id: str
    status: VideoJobStatus = VideoJobStatus.QUEUED
    status_history: List[VideoJobStatusHistory] = Field(default_factory=list)
    source_images: List[str] = Field(default_factory=list, max_length=MAX_SOURCE_IMAGES)
    logo_ref: Optional[str] = None
    segments: Optional[List[Segment]] = None
    overlay_spec: Optional[OverlaySpecification] = None
    final_video_ref: Optional[str] = None
    error_message: Optional[str] = None
    generation_attempt: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("segments")
    def validate_segments(cls, value: Optional[List[Segment]]) -> Optional[List[Segment]]:  # noqa: D417
        if value is None:
            return value
        roles = tuple(segment.role for segment in value)
        if roles != SEGMENT_ROLE_ORDER:
            raise ValueError("segments must hold exactly one intro, main and outro, in that order")
        return value

    @model_validator(mode="after")
    def validate_status_invariants(self) -> "VideoJob":
        if self.status == VideoJobStatus.COMPLETED and not self.final_video_ref:
            raise ValueError("completed job requires final_video_ref")
        if self.status == VideoJobStatus.FAILED and not (self.error_message or "").strip():
            raise ValueError("failed job requires error_message")
        if self.status in STATUSES_WITH_SEGMENTS and not self.segments:
            raise ValueError(f"{self.status.value} job requires segments")
        return self


class TimelineSpecification(BaseModel):
    scenes: List[str] = Field(default_factory=list, max_length=SCENE_COUNT)
    scene_kind: Literal["clip", "image"] = "clip"
    overlay: OverlaySpecification = Field(default_factory=OverlaySpecification)
    style_id: str
    fps: int = VIDEO_FPS
    width: int = VIDEO_WIDTH
    height: int = VIDEO_HEIGHT
    scene_duration_frames: int = Field(default=SCENE_DURATION_FRAMES, gt=0)

    @computed_field  # type: ignore[misc]
    @property
    def total_duration_frames(self) -> int:
        return SCENE_COUNT * self.scene_duration_frames

    def as_render_props(self) -> dict[str, Any]:
        """Flat props record handed to the rendering backend."""
        clips = self.scenes if self.scene_kind == "clip" else []
        images = self.scenes if self.scene_kind == "image" else []
        return {
            "segmentUrls": list(clips),
            "images": list(images),
            "logoUrl": self.overlay.logo_ref,
            "captions": [
                {"text": caption.text, "startFrame": caption.start_frame, "endFrame": caption.end_frame}
                for caption in self.overlay.captions
            ],
            "musicTrack": self.overlay.music_track,
            "logoPosition": self.overlay.logo_position.value,
            "primaryColor": self.overlay.primary_color,
            "secondaryColor": self.overlay.secondary_color,
            "styleId": self.style_id,
        }


class GenerationResult(BaseModel):
    success: bool
    segments: List[Segment] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None


class CompositionResult(BaseModel):
    success: bool
    timeline: Optional[TimelineSpecification] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
