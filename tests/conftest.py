import asyncio
import io
from uuid import UUID, uuid4

import pytest
from PIL import Image

from app.clients.s3_storage import S3StorageClient
from app.config import Settings
from app.errors import GenerationFailure
from app.events.publisher import JobNotifier
from app.models.domain import VideoJob, VideoJobStatus, VideoJobStatusHistory
from app.services.scene_generator import GeneratedClip, SceneGenerator
from app.storage.repository import VideoJobRepository


def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 40, 60)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeSceneGenerator(SceneGenerator):
    def __init__(self, storage, fail_roles=(), empty_roles=(), delay=0.01, role_delays=None, error_message=None):
        self.storage = storage
        self.fail_roles = set(fail_roles)
        self.empty_roles = set(empty_roles)
        self.delay = delay
        self.role_delays = dict(role_delays or {})
        self.error_message = error_message
        self.calls = []
        self.finished = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.before_return = None

    async def generate(self, job_id: UUID, role, style_id, prompt, image, mime_type):
        self.calls.append({"role": role, "prompt": prompt, "image": image, "mime_type": mime_type})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.role_delays.get(role, self.delay))
            if self.before_return is not None:
                await self.before_return(job_id, role)
            if role in self.fail_roles:
                if self.error_message is not None:
                    raise GenerationFailure(self.error_message)
                raise GenerationFailure(f"{role.value} scene generation failed: model refused")
            if role in self.empty_roles:
                return GeneratedClip(clip_ref="", prompt=prompt)
            key = self.storage.upload_bytes(f"jobs/{job_id}/segments/{role.value}.mp4", b"clip", "video/mp4")
            self.finished.append(role)
            return GeneratedClip(clip_ref=key, prompt=prompt)
        finally:
            self.in_flight -= 1


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def photo():
    return png_bytes()


@pytest.fixture
def storage():
    return S3StorageClient(bucket="test-bucket", access_key=None, secret_key=None)


@pytest.fixture
def notifier():
    return JobNotifier()


@pytest.fixture
def repo(notifier):
    return VideoJobRepository(notifier=notifier)


@pytest.fixture
def generator(storage):
    return FakeSceneGenerator(storage)


@pytest.fixture
def make_generator(storage):
    def factory(**options):
        return FakeSceneGenerator(storage, **options)

    return factory


@pytest.fixture
def make_job(repo, storage):
    def factory(prompt="Spicy Ramen Bowl", style_id="vibrant", images=1, **fields):
        refs = [storage.upload_bytes(f"media/products/photo-{idx}.png", png_bytes(), "image/png") for idx in range(images)]
        job = VideoJob(
            id=uuid4(),
            prompt=prompt,
            style_id=style_id,
            status=VideoJobStatus.QUEUED,
            status_history=[VideoJobStatusHistory(status=VideoJobStatus.QUEUED, message="Job enqueued")],
            source_images=refs,
            **fields,
        )
        return asyncio.run(repo.save(job))

    return factory

