from __future__ import annotations

import asyncio
import logging
import pathlib
from dataclasses import asdict
from typing import Any, Optional, Union
from uuid import UUID, uuid4

import httpx

from app.clients.s3_storage import S3StorageClient
from app.clients.veo import VeoClient
from app.config import Settings
from app.errors import JobNotFound, NotReady, PersistenceFailure
from app.events.publisher import JobEventPublisher, JobNotifier
from app.models.api import JobMediaUrls, MediaAsset, VideoGenerationRequest
from app.models.domain import (
    CompositionResult,
    GenerationResult,
    MergeFields,
    ReplaceAll,
    TimelineSpecification,
    VideoJob,
    VideoJobStatus,
    VideoJobStatusHistory,
)
from app.queue.queue import BaseQueue
from app.services.composition import CompositionBuilder
from app.services.orchestrator import GenerationOrchestrator
from app.services.scene_generator import SceneGenerator, VeoSceneGenerator
from app.services.timeline import evaluate_frame
from app.storage.repository import VideoJobRepository


class VideoService:
    def __init__(
        self,
        repo: VideoJobRepository,
        settings: Settings,
        storage: S3StorageClient | None = None,
        generator: SceneGenerator | None = None,
        notifier: JobNotifier | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.repo = repo
        self.queue: BaseQueue | None = None
        self.settings = settings
        self.log = logging.getLogger(__name__)
        self.notifier = notifier
        self._http_transport = http_transport
        self.storage = storage or S3StorageClient(
            bucket=settings.s3_bucket,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            public_url=settings.s3_public_url,
            addressing_style=settings.s3_addressing_style,
        )
        self.generator = generator or VeoSceneGenerator(
            client=VeoClient(
                api_key=settings.genai_api_key,
                model=settings.genai_model,
                base_url=settings.genai_base_url,
                timeout=settings.genai_timeout,
                logger=self.log,
            ),
            storage=self.storage,
            folder_prefix=settings.storage_folder_prefix,
            logger=self.log,
        )
        self.orchestrator = GenerationOrchestrator(
            repo=repo,
            generator=self.generator,
            storage=self.storage,
            settings=settings,
            http_transport=http_transport,
        )
        self.composition = CompositionBuilder(repo=repo, storage=self.storage, settings=settings)

    def bind_queue(self, queue: BaseQueue) -> None:
        self.queue = queue

    async def create_job(self, payload: VideoGenerationRequest) -> VideoJob:
        job = VideoJob(
            id=uuid4(),
            prompt=payload.prompt.strip(),
            style_id=payload.style_id or self.settings.default_style,
            status=VideoJobStatus.QUEUED,
            status_history=[VideoJobStatusHistory(status=VideoJobStatus.QUEUED, message="Job enqueued")],
            source_images=payload.source_images,
            logo_ref=payload.logo_ref,
        )
        job = await self.repo.save(job)
        self.log.info("video job created", extra={"job_id": str(job.id), "style_id": job.style_id})
        if payload.auto_generate:
            await self.request_generation(job.id)
        return job

    async def get_job(self, job_id: UUID) -> VideoJob:
        job = await self.repo.get(job_id)
        if not job:
            raise JobNotFound(job_id)
        return job

    async def list_jobs(self, limit: int | None = None) -> list[VideoJob]:
        return await self.repo.list(limit)

    async def media_urls(self, job: VideoJob) -> JobMediaUrls:
        async def resolve(ref: str | None) -> str | None:
            return await asyncio.to_thread(self.storage.resolve_url, ref)

        return JobMediaUrls(
            source_images=[await resolve(ref) for ref in job.source_images],
            segments=[await resolve(segment.clip_ref) for segment in job.segments] if job.segments else None,
            logo=await resolve(job.logo_ref),
            final_video=await resolve(job.final_video_ref),
        )

    async def request_generation(self, job_id: UUID) -> GenerationResult | None:
        """Queues generation when a queue is bound, otherwise runs it inline."""
        await self.get_job(job_id)
        if self.queue is not None:
            self.queue.enqueue(job_id)
            return None
        return await self.orchestrator.run_generation(job_id)

    def process_job(self, job_id: UUID) -> None:
        result = asyncio.run(self.orchestrator.run_generation(job_id))
        if not result.success:
            self.log.warning(
                "queued generation finished without segments",
                extra={"job_id": str(job_id), "error": result.error},
            )

    async def prepare_composition(
        self,
        job_id: UUID,
        update: Union[ReplaceAll, MergeFields, None] = None,
    ) -> CompositionResult:
        await self.get_job(job_id)
        return await self.composition.prepare_composition(job_id, update)

    async def preview_timeline(self, job_id: UUID) -> TimelineSpecification:
        job = await self.get_job(job_id)
        return await self.composition.preview_timeline(job)

    async def frame_state(self, job_id: UUID, frame: int) -> dict[str, Any]:
        timeline = await self.preview_timeline(job_id)
        return asdict(evaluate_frame(timeline, frame))

    async def attach_rendered_video(self, job_id: UUID, video_url: str) -> VideoJob:
        job = await self.get_job(job_id)
        if job.status != VideoJobStatus.READY_TO_RENDER:
            raise NotReady("Video is not ready to render")
        timeout = httpx.Timeout(
            connect=10.0,
            read=self.settings.rendered_video_timeout,
            write=10.0,
            pool=self.settings.rendered_video_timeout,
        )
        async with httpx.AsyncClient(timeout=timeout, transport=self._http_transport) as client:
            try:
                response = await client.get(video_url)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise PersistenceFailure(
                    f"Failed to download rendered video: {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise PersistenceFailure(f"Failed to download rendered video: {exc}") from exc
        key = f"{self.settings.storage_folder_prefix}/{job.id}/final.mp4"
        ref = await asyncio.to_thread(self.storage.upload_bytes, key, response.content, "video/mp4")
        updated = await self.repo.set_final_video(job.id, ref)
        self.log.info("rendered video attached", extra={"job_id": str(job.id), "final_video_ref": ref})
        return updated

    def upload_media(
        self,
        folder: str,
        filename: str | None,
        data: bytes,
        content_type: str | None = None,
    ) -> MediaAsset:
        if not folder or not folder.strip():
            raise ValueError("folder is required")
        if not data:
            raise ValueError("empty upload")
        safe_name = pathlib.PurePosixPath(filename or "").name
        if not safe_name:
            safe_name = f"asset-{uuid4().hex}"
        prefix = self._compose_media_prefix(folder)
        key = self.storage.upload_bytes(
            f"{prefix}/{safe_name}",
            data,
            content_type or "application/octet-stream",
        )
        return MediaAsset(key=key, url=self.storage.public_url(key), size=len(data))

    def list_media(self, folder: str | None) -> list[MediaAsset]:
        prefix = self._compose_media_prefix(folder)
        return [MediaAsset(**item) for item in self.storage.list_files(prefix)]

    def close(self) -> None:
        if self.notifier is not None:
            self.notifier.close()

    def _compose_media_prefix(self, folder: str | None) -> str:
        parts = [self.settings.media_folder_prefix.strip("/")]
        if folder:
            clean = "/".join(part for part in folder.strip().split("/") if part and part not in (".", ".."))
            if clean:
                parts.append(clean)
        return "/".join(part for part in parts if part)


def build_notifier(settings: Settings, logger: Optional[logging.Logger] = None) -> JobNotifier:
    log = logger or logging.getLogger(__name__)
    publisher: JobEventPublisher | None = None
    if settings.kafka_enabled and settings.kafka_updates_topic:
        try:
            publisher = JobEventPublisher(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                topic=settings.kafka_updates_topic,
                logger=log,
            )
        except Exception:  # pragma: no cover - best effort logging
            log.warning(
                "job event publisher unavailable",
                extra={"topic": settings.kafka_updates_topic},
                exc_info=True,
            )
    return JobNotifier(publisher=publisher, logger=log)
