from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional
from uuid import UUID

import httpx
from PIL import Image, UnidentifiedImageError

from app.clients.s3_storage import S3StorageClient
from app.config import Settings
from app.errors import (
    ErrorKind,
    GenerationFailure,
    InvalidInput,
    StaleGenerationAttempt,
    VideoJobError,
)
from app.models.domain import (
    SCENE_COUNT,
    SEGMENT_ROLE_ORDER,
    GenerationResult,
    Segment,
    SegmentRole,
    VideoJob,
    VideoJobStatus,
)
from app.services.prompts import scene_prompt, style_prompt, subject_label
from app.services.scene_generator import SceneGenerator
from app.storage.repository import VideoJobRepository


def detect_image_mime(data: bytes) -> str:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidInput("Source image is not a readable image") from exc
    return Image.MIME.get(image_format or "", "image/jpeg")


class GenerationOrchestrator:
    """Drives a job from queued to editing (three segments) or failed.

    The three roles are generated concurrently against the primary source
    image. Acceptance is all-or-nothing: segments are written in a single
    update only when every role produced a clip. The first failure decides
    the outcome; role calls still in flight are then cancelled. The primary
    image is read from storage, or fetched over HTTP for http(s) references.
    Each run bumps the job's generation attempt, and writes from an attempt
    that has since been superseded are refused by the store.
    """

    def __init__(
        self,
        repo: VideoJobRepository,
        generator: SceneGenerator,
        storage: S3StorageClient,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.repo = repo
        self.generator = generator
        self.storage = storage
        self.settings = settings
        self.log = logger or logging.getLogger(__name__)
        self._http_transport = http_transport

    async def run_generation(self, job_id: UUID) -> GenerationResult:
        job = await self.repo.get(job_id)
        if job is None:
            self.log.warning("generation requested for unknown job", extra={"job_id": str(job_id)})
            return GenerationResult(success=False, error="Video job not found", error_kind=ErrorKind.INVALID_INPUT.value)

        attempt: int | None = None
        try:
            if not job.source_images:
                raise InvalidInput("No input images found")
            attempt = await self.repo.begin_generation(job_id)
            self.log.info(
                "starting multi-scene generation",
                extra={"job_id": str(job_id), "attempt": attempt, "style_id": job.style_id},
            )
            image, mime_type = await self._load_primary_image(job)
            base = style_prompt(self.settings, job.style_id)
            subject = subject_label(job.prompt)
            tasks = [
                asyncio.ensure_future(
                    self._generate_role(job, role, scene_prompt(role, subject, base), image, mime_type)
                )
                for role in SEGMENT_ROLE_ORDER
            ]
            try:
                clips = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            segments = list(clips)
            if len(segments) != SCENE_COUNT:
                raise GenerationFailure(f"Expected {SCENE_COUNT} segments but got {len(segments)}")
            await self.repo.set_segments(job_id, segments, VideoJobStatus.EDITING, attempt=attempt)
        except StaleGenerationAttempt as exc:
            self.log.info("generation attempt superseded", extra={"job_id": str(job_id), "attempt": attempt})
            return GenerationResult(success=False, error=str(exc), error_kind=exc.kind.value)
        except Exception as exc:
            return await self._fail(job_id, exc, attempt)

        self.log.info("multi-scene generation completed", extra={"job_id": str(job_id), "attempt": attempt})
        return GenerationResult(success=True, segments=segments)

    async def _load_primary_image(self, job: VideoJob) -> tuple[bytes, str]:
        ref = job.source_images[0]
        if ref.lower().startswith(("http://", "https://")):
            data = await self._fetch_image(ref)
        else:
            try:
                data = await asyncio.to_thread(self.storage.download_bytes, ref)
            except ValueError as exc:
                raise InvalidInput(f"Could not load source image {ref}: {exc}") from exc
        if not data:
            raise InvalidInput(f"Source image {ref} is empty")
        return data, detect_image_mime(data)

    async def _fetch_image(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=30.0, transport=self._http_transport, follow_redirects=True) as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise InvalidInput(
                    f"Could not load source image {url}: HTTP {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise InvalidInput(f"Could not load source image {url}: {exc}") from exc
        return response.content

    async def _generate_role(
        self,
        job: VideoJob,
        role: SegmentRole,
        prompt: str,
        image: bytes,
        mime_type: str,
    ) -> Segment:
        self.log.debug("generating scene", extra={"job_id": str(job.id), "role": role.value, "prompt": prompt})
        clip = await self.generator.generate(job.id, role, job.style_id, prompt, image, mime_type)
        if clip is None or not clip.clip_ref:
            raise GenerationFailure(f"No video data in {role.value} response")
        return Segment(role=role, clip_ref=clip.clip_ref, prompt=clip.prompt or prompt)

    async def _fail(self, job_id: UUID, exc: Exception, attempt: int | None) -> GenerationResult:
        message = str(exc).strip() or exc.__class__.__name__
        kind = exc.kind if isinstance(exc, VideoJobError) else ErrorKind.GENERATION_FAILURE
        self.log.error(
            "AI generation failed",
            extra={"job_id": str(job_id), "attempt": attempt, "error_kind": kind.value},
            exc_info=not isinstance(exc, VideoJobError),
        )
        try:
            await self.repo.set_status(job_id, VideoJobStatus.FAILED, error_message=message, attempt=attempt)
        except StaleGenerationAttempt:
            self.log.info("failure not recorded, attempt superseded", extra={"job_id": str(job_id)})
        except Exception:
            self.log.exception("could not record generation failure", extra={"job_id": str(job_id)})
        return GenerationResult(success=False, error=message, error_kind=kind.value)
