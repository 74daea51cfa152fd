from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from app.clients.s3_storage import S3StorageClient
from app.clients.veo import VeoClient, VeoServiceUnavailable
from app.errors import GenerationFailure
from app.models.domain import SegmentRole


@dataclass(frozen=True)
class GeneratedClip:
    clip_ref: str
    prompt: str


class SceneGenerator:
    """Produces one video clip from one image and a text prompt."""

    async def generate(
        self,
        job_id: UUID,
        role: SegmentRole,
        style_id: str,
        prompt: str,
        image: bytes,
        mime_type: str,
    ) -> GeneratedClip:  # pragma: no cover - interface
        raise NotImplementedError


class VeoSceneGenerator(SceneGenerator):
    def __init__(
        self,
        client: VeoClient,
        storage: S3StorageClient,
        folder_prefix: str = "jobs",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.storage = storage
        self.folder_prefix = folder_prefix.strip("/")
        self.log = logger or logging.getLogger(__name__)

    async def generate(
        self,
        job_id: UUID,
        role: SegmentRole,
        style_id: str,
        prompt: str,
        image: bytes,
        mime_type: str,
    ) -> GeneratedClip:
        if not self.client.enabled():
            raise GenerationFailure(
                "VIDEO_SERVICE_GENAI_API_KEY is not configured; scene generation is unavailable"
            )
        self.log.info(
            "generating scene",
            extra={"job_id": str(job_id), "role": role.value, "style_id": style_id},
        )
        try:
            media = await self.client.generate_clip(image, mime_type, prompt)
        except VeoServiceUnavailable as exc:
            raise GenerationFailure(f"{role.value} scene generation unavailable: {exc}") from exc
        except Exception as exc:
            raise GenerationFailure(f"{role.value} scene generation failed: {exc}") from exc
        if media is None or not media.data:
            raise GenerationFailure(f"No video data in {role.value} response")

        extension = mimetypes.guess_extension(media.mime_type) or ".mp4"
        key = f"{self.folder_prefix}/{job_id}/segments/{role.value}{extension}"
        clip_ref = await asyncio.to_thread(self.storage.upload_bytes, key, media.data, media.mime_type)
        self.log.info("scene stored", extra={"job_id": str(job_id), "role": role.value, "clip_ref": clip_ref})
        return GeneratedClip(clip_ref=clip_ref, prompt=prompt)
