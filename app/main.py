from __future__ import annotations

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, status

from app.config import Settings, get_settings
from app.errors import (
    ErrorKind,
    FrameOutOfRange,
    InvalidInput,
    JobNotFound,
    NoPlayableMedia,
    NotReady,
    VideoJobError,
)
from app.models.api import (
    CompositionRequest,
    FrameStateResponse,
    MediaListResponse,
    MediaUploadRequest,
    MediaUploadResponse,
    RenderedVideoRequest,
    TimelineResponse,
    VideoGenerationRequest,
    VideoJobListResponse,
    VideoJobResponse,
)
from app.queue.queue import KafkaQueue, LocalQueue
from app.services.video_service import VideoService, build_notifier
from app.storage.repository import VideoJobRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

_service: VideoService | None = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    global _service
    yield
    if _service is not None:
        _service.close()
        _service = None


app = FastAPI(lifespan=lifespan)

HTTP_422_UNPROCESSABLE = 422

ERROR_STATUS = {
    ErrorKind.INVALID_INPUT.value: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_READY.value: status.HTTP_409_CONFLICT,
    ErrorKind.NO_PLAYABLE_MEDIA.value: HTTP_422_UNPROCESSABLE,
    ErrorKind.GENERATION_FAILURE.value: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PERSISTENCE_FAILURE.value: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_video_service(settings: Settings = Depends(get_settings)) -> VideoService:
    global _service
    if _service is None:
        notifier = build_notifier(settings)
        service = VideoService(repo=VideoJobRepository(notifier=notifier), settings=settings, notifier=notifier)
        queue = _build_queue(settings, service)
        service.bind_queue(queue)
        _service = service
    return _service


def _build_queue(settings: Settings, service: VideoService):
    if settings.kafka_enabled:
        return KafkaQueue(
            bootstrap_servers=settings.kafka_bootstrap_servers,
            topic=settings.kafka_topic,
            group_id=settings.kafka_group_id,
            processor=service.process_job,
        )
    return LocalQueue(processor=service.process_job)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, JobNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, FrameOutOfRange):
        return HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=str(exc))
    if isinstance(exc, InvalidInput):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotReady):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NoPlayableMedia):
        return HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=str(exc))
    if isinstance(exc, ValueError):
        # storage client errors
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@app.post("/videos", response_model=VideoJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_video(
    payload: VideoGenerationRequest,
    service: VideoService = Depends(get_video_service),
) -> VideoJobResponse:
    job = await service.create_job(payload)
    return VideoJobResponse(job=job)


@app.get("/videos", response_model=VideoJobListResponse)
async def list_videos(
    limit: int | None = Query(default=50, ge=1, le=200),
    service: VideoService = Depends(get_video_service),
) -> VideoJobListResponse:
    return VideoJobListResponse(items=await service.list_jobs(limit))


@app.get("/videos/{job_id}", response_model=VideoJobResponse)
async def get_video(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    try:
        job = await service.get_job(job_id)
        media = await service.media_urls(job)
    except (VideoJobError, ValueError) as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job, media=media)


@app.post("/videos/{job_id}/scenes:generate", response_model=VideoJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def generate_scenes(job_id: UUID, service: VideoService = Depends(get_video_service)) -> VideoJobResponse:
    try:
        await service.request_generation(job_id)
        job = await service.get_job(job_id)
    except VideoJobError as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job)


@app.post("/videos/{job_id}/composition:prepare", response_model=TimelineResponse)
async def prepare_composition(
    job_id: UUID,
    payload: CompositionRequest,
    service: VideoService = Depends(get_video_service),
) -> TimelineResponse:
    try:
        result = await service.prepare_composition(job_id, payload.overlay)
    except VideoJobError as exc:
        raise _http_error(exc) from exc
    if not result.success or result.timeline is None:
        code = ERROR_STATUS.get(result.error_kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=code, detail=result.error)
    return TimelineResponse(timeline=result.timeline, render_props=result.timeline.as_render_props())


@app.get("/videos/{job_id}/timeline", response_model=TimelineResponse)
async def get_timeline(job_id: UUID, service: VideoService = Depends(get_video_service)) -> TimelineResponse:
    try:
        timeline = await service.preview_timeline(job_id)
    except (VideoJobError, ValueError) as exc:
        raise _http_error(exc) from exc
    return TimelineResponse(timeline=timeline, render_props=timeline.as_render_props())


@app.get("/videos/{job_id}/timeline/frames/{frame}", response_model=FrameStateResponse)
async def get_frame_state(
    job_id: UUID,
    frame: int,
    service: VideoService = Depends(get_video_service),
) -> FrameStateResponse:
    try:
        state = await service.frame_state(job_id, frame)
    except (VideoJobError, ValueError) as exc:
        raise _http_error(exc) from exc
    return FrameStateResponse(state=state)


@app.post("/videos/{job_id}/render:complete", response_model=VideoJobResponse)
async def complete_render(
    job_id: UUID,
    payload: RenderedVideoRequest,
    service: VideoService = Depends(get_video_service),
) -> VideoJobResponse:
    try:
        job = await service.attach_rendered_video(job_id, payload.video_url)
        media = await service.media_urls(job)
    except (VideoJobError, ValueError) as exc:
        raise _http_error(exc) from exc
    return VideoJobResponse(job=job, media=media)


@app.post("/media", response_model=MediaUploadResponse, status_code=status.HTTP_201_CREATED)
def upload_media(
    payload: MediaUploadRequest,
    service: VideoService = Depends(get_video_service),
) -> MediaUploadResponse:
    try:
        data = base64.b64decode(payload.data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid base64 payload") from exc
    try:
        asset = service.upload_media(
            folder=payload.folder,
            filename=payload.filename,
            data=data,
            content_type=payload.content_type,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return MediaUploadResponse(asset=asset)


@app.get("/media", response_model=MediaListResponse)
def list_media(
    folder: str | None = Query(
        default=None,
        description="Folder inside the media prefix (for example products). Leave empty for the root.",
    ),
    service: VideoService = Depends(get_video_service),
) -> MediaListResponse:
    try:
        items = service.list_media(folder)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return MediaListResponse(items=items)
