from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Union
from uuid import UUID

from app.clients.s3_storage import S3StorageClient
from app.config import Settings
from app.errors import (
    ErrorKind,
    InvalidInput,
    InvalidTransition,
    NoPlayableMedia,
    NotReady,
    StaleGenerationAttempt,
    VideoJobError,
)
from app.models.domain import (
    SCENE_COUNT,
    CompositionResult,
    MergeFields,
    OverlaySpecification,
    ReplaceAll,
    TimelineSpecification,
    VideoJob,
    VideoJobStatus,
)
from app.storage.repository import VideoJobRepository

GENERATION_IN_PROGRESS = frozenset({VideoJobStatus.QUEUED, VideoJobStatus.GENERATING})


def merge_overlay(
    stored: OverlaySpecification | None,
    update: Union[ReplaceAll, MergeFields, None],
) -> OverlaySpecification:
    """ReplaceAll wins wholesale; MergeFields overrides only the fields it carries."""
    if isinstance(update, ReplaceAll):
        return update.spec.model_copy(deep=True)
    merged = stored.model_dump() if stored is not None else {}
    if update is not None:
        merged.update(update.provided_fields())
    return OverlaySpecification.model_validate(merged)


def build_timeline(
    style_id: str,
    overlay: OverlaySpecification,
    clip_urls: Optional[Sequence[str]],
    image_urls: Sequence[str] = (),
) -> TimelineSpecification:
    """Clips win whenever the job has segments at all; still images are only a fallback for jobs without any."""
    if clip_urls is not None:
        return TimelineSpecification(
            scenes=list(clip_urls)[:SCENE_COUNT],
            scene_kind="clip",
            overlay=overlay,
            style_id=style_id,
        )
    return TimelineSpecification(
        scenes=list(image_urls)[:SCENE_COUNT],
        scene_kind="image",
        overlay=overlay,
        style_id=style_id,
    )


class CompositionBuilder:
    def __init__(
        self,
        repo: VideoJobRepository,
        storage: S3StorageClient,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.repo = repo
        self.storage = storage
        self.settings = settings
        self.log = logger or logging.getLogger(__name__)

    async def prepare_composition(
        self,
        job_id: UUID,
        update: Union[ReplaceAll, MergeFields, None] = None,
    ) -> CompositionResult:
        job = await self.repo.get(job_id)
        if job is None:
            return CompositionResult(
                success=False,
                error="Video job not found",
                error_kind=ErrorKind.INVALID_INPUT.value,
            )
        if job.status in GENERATION_IN_PROGRESS:
            # generation still owns the job
            return CompositionResult(
                success=False,
                error="Video segments are still being generated",
                error_kind=ErrorKind.NOT_READY.value,
            )

        self.log.info("preparing composition", extra={"job_id": str(job_id)})
        try:
            if not job.segments or len(job.segments) != SCENE_COUNT:
                raise NotReady("No video segments found. Please generate AI video first.")
            clip_urls = await self._resolve_all([segment.clip_ref for segment in job.segments])
            if not clip_urls:
                raise NoPlayableMedia("No valid video segment URLs found")
            overlay = merge_overlay(job.overlay_spec, update)
            if not overlay.logo_ref and job.logo_ref:
                overlay.logo_ref = job.logo_ref
            await self.repo.set_overlay_spec(
                job_id,
                overlay,
                status=VideoJobStatus.READY_TO_RENDER,
                attempt=job.generation_attempt,
            )
            timeline = build_timeline(self._style_id(job), await self._playable_overlay(overlay), clip_urls)
        except (StaleGenerationAttempt, InvalidTransition) as exc:
            # a generation run took the job over while URLs were resolving
            self.log.info("composition superseded by generation", extra={"job_id": str(job_id), "error": str(exc)})
            return CompositionResult(
                success=False,
                error="Video segments are being regenerated",
                error_kind=ErrorKind.NOT_READY.value,
            )
        except Exception as exc:
            return await self._fail(job_id, exc, job.generation_attempt)

        self.log.info(
            "composition ready",
            extra={"job_id": str(job_id), "scenes": len(timeline.scenes)},
        )
        return CompositionResult(success=True, timeline=timeline)

    async def preview_timeline(self, job: VideoJob) -> TimelineSpecification:
        """Read-only timeline for any job; falls back to the source images when no segments exist."""
        overlay = await self._playable_overlay(merge_overlay(job.overlay_spec, None))
        if not overlay.logo_ref and job.logo_ref:
            overlay.logo_ref = await asyncio.to_thread(self.storage.resolve_url, job.logo_ref)
        if job.segments:
            clip_urls = await self._resolve_all([segment.clip_ref for segment in job.segments])
            return build_timeline(self._style_id(job), overlay, clip_urls)
        image_urls = await self._resolve_all(job.source_images[:SCENE_COUNT])
        return build_timeline(self._style_id(job), overlay, None, image_urls)

    def _style_id(self, job: VideoJob) -> str:
        return job.style_id or self.settings.default_style

    async def _resolve_all(self, refs: Sequence[str]) -> List[str]:
        urls = await asyncio.gather(*(asyncio.to_thread(self.storage.resolve_url, ref) for ref in refs))
        dropped = [ref for ref, url in zip(refs, urls) if not url]
        if dropped:
            self.log.warning("dropping unresolvable media", extra={"refs": dropped})
        return [url for url in urls if url]

    async def _playable_overlay(self, overlay: OverlaySpecification) -> OverlaySpecification:
        playable = overlay.model_copy(deep=True)
        if playable.logo_ref:
            playable.logo_ref = await asyncio.to_thread(self.storage.resolve_url, playable.logo_ref)
            if playable.logo_ref is None:
                self.log.warning("logo reference could not be resolved", extra={"logo_ref": overlay.logo_ref})
        return playable

    async def _fail(self, job_id: UUID, exc: Exception, attempt: int) -> CompositionResult:
        message = str(exc).strip() or exc.__class__.__name__
        kind = exc.kind if isinstance(exc, VideoJobError) else ErrorKind.PERSISTENCE_FAILURE
        self.log.error(
            "render preparation failed",
            extra={"job_id": str(job_id), "error_kind": kind.value},
            exc_info=not isinstance(exc, (NotReady, NoPlayableMedia, InvalidInput)),
        )
        try:
            await self.repo.set_status(job_id, VideoJobStatus.FAILED, error_message=message, attempt=attempt)
        except StaleGenerationAttempt:
            self.log.info("render preparation failure not recorded, generation restarted", extra={"job_id": str(job_id)})
        except Exception:
            self.log.exception("could not record render preparation failure", extra={"job_id": str(job_id)})
        return CompositionResult(success=False, error=message, error_kind=kind.value)
