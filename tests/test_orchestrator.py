import asyncio
from uuid import uuid4

import httpx

from app.config import DEFAULT_STYLE_PROMPTS
from app.models.domain import SegmentRole, VideoJob, VideoJobStatus
from app.services.orchestrator import GenerationOrchestrator


def build_orchestrator(repo, generator, storage, settings):
    return GenerationOrchestrator(repo=repo, generator=generator, storage=storage, settings=settings)


def test_generation_stores_three_segments_and_moves_to_editing(repo, storage, settings, generator, make_job):
    job = make_job(prompt="Spicy Ramen Bowl with extra chili", style_id="vibrant")
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    result = asyncio.run(orchestrator.run_generation(job.id))

    assert result.success
    stored = asyncio.run(repo.get(job.id))
    assert stored.status == VideoJobStatus.EDITING
    assert [segment.role for segment in stored.segments] == [SegmentRole.INTRO, SegmentRole.MAIN, SegmentRole.OUTRO]
    assert stored.error_message is None
    assert [item.status for item in stored.status_history] == [
        VideoJobStatus.QUEUED,
        VideoJobStatus.GENERATING,
        VideoJobStatus.EDITING,
    ]

    prompts = {segment.role: segment.prompt for segment in stored.segments}
    assert prompts[SegmentRole.INTRO].startswith("Close-up hero shot of Spicy Ramen Bowl,")
    assert prompts[SegmentRole.MAIN].startswith("Slow panning shot around Spicy Ramen Bowl ")
    assert prompts[SegmentRole.OUTRO].startswith("Wide shot of Spicy Ramen Bowl ")
    assert len(set(prompts.values())) == 3
    for prompt in prompts.values():
        assert prompt.endswith(DEFAULT_STYLE_PROMPTS["vibrant"])


def test_all_roles_run_concurrently_on_primary_image(repo, storage, settings, generator, make_job):
    job = make_job(images=3)
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    asyncio.run(orchestrator.run_generation(job.id))

    assert generator.max_in_flight == 3
    primary = storage.download_bytes(job.source_images[0])
    assert all(call["image"] == primary for call in generator.calls)
    assert all(call["mime_type"] == "image/png" for call in generator.calls)


def test_one_failed_role_fails_the_whole_job(repo, storage, settings, make_job, make_generator):
    generator = make_generator(fail_roles={SegmentRole.MAIN})
    job = make_job()
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    result = asyncio.run(orchestrator.run_generation(job.id))

    assert not result.success
    assert result.error_kind == "generation_failure"
    assert "main" in result.error
    stored = asyncio.run(repo.get(job.id))
    assert stored.status == VideoJobStatus.FAILED
    assert stored.segments is None
    assert stored.error_message == result.error


def test_missing_media_is_a_generation_failure(repo, storage, settings, make_job, make_generator):
    generator = make_generator(empty_roles={SegmentRole.OUTRO})
    job = make_job()
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    result = asyncio.run(orchestrator.run_generation(job.id))

    assert not result.success
    stored = asyncio.run(repo.get(job.id))
    assert stored.status == VideoJobStatus.FAILED
    assert stored.error_message == "No video data in outro response"
    assert stored.segments is None


def test_job_without_images_fails_before_any_generation(repo, storage, settings, generator, make_job):
    job = make_job(images=0)
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    result = asyncio.run(orchestrator.run_generation(job.id))

    assert not result.success
    assert result.error_kind == "invalid_input"
    assert generator.calls == []
    stored = asyncio.run(repo.get(job.id))
    assert stored.status == VideoJobStatus.FAILED
    assert stored.error_message == "No input images found"


def test_unreadable_source_image_is_invalid_input(repo, storage, settings, generator, make_job):
    job = make_job()
    storage.upload_bytes(job.source_images[0], b"not an image", "image/png")
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    result = asyncio.run(orchestrator.run_generation(job.id))

    assert result.error_kind == "invalid_input"
    assert generator.calls == []
    assert asyncio.run(repo.get(job.id)).status == VideoJobStatus.FAILED


def test_unknown_job_resolves_to_failure(repo, storage, settings, generator):
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    result = asyncio.run(orchestrator.run_generation(uuid4()))

    assert not result.success
    assert result.error == "Video job not found"


def test_empty_prompt_uses_product_subject(repo, storage, settings, generator, make_job):
    job = make_job(prompt="   ", style_id="unknown-style")
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    result = asyncio.run(orchestrator.run_generation(job.id))

    intro = result.segments[0].prompt
    assert intro.startswith("Close-up hero shot of product,")
    assert intro.endswith(settings.default_style_prompt)


def test_rerun_overwrites_segments_and_retry_after_failure(repo, storage, settings, make_job, make_generator):
    failing = make_generator(fail_roles={SegmentRole.INTRO})
    job = make_job()
    asyncio.run(build_orchestrator(repo, failing, storage, settings).run_generation(job.id))
    assert asyncio.run(repo.get(job.id)).status == VideoJobStatus.FAILED

    working = make_generator()
    orchestrator = build_orchestrator(repo, working, storage, settings)
    assert asyncio.run(orchestrator.run_generation(job.id)).success
    assert asyncio.run(orchestrator.run_generation(job.id)).success

    stored = asyncio.run(repo.get(job.id))
    assert stored.status == VideoJobStatus.EDITING
    assert stored.generation_attempt == 3
    assert stored.error_message is None
    assert len(stored.segments) == 3


def test_superseded_attempt_does_not_write(repo, storage, settings, generator, make_job):
    job = make_job()
    started = []

    async def duplicate_request(job_id, role):
        if role == SegmentRole.INTRO and not started:
            started.append(await repo.begin_generation(job_id))

    generator.before_return = duplicate_request
    orchestrator = build_orchestrator(repo, generator, storage, settings)

    result = asyncio.run(orchestrator.run_generation(job.id))

    assert not result.success
    assert "superseded" in result.error
    stored = asyncio.run(repo.get(job.id))
    assert stored.status == VideoJobStatus.GENERATING
    assert stored.generation_attempt == 2
    assert stored.segments is None


def test_status_changes_are_pushed_to_listeners(repo, storage, settings, generator, notifier, make_job):
    job = make_job()
    seen = []
    unsubscribe = notifier.subscribe(lambda snapshot: seen.append(snapshot.status))

    asyncio.run(build_orchestrator(repo, generator, storage, settings).run_generation(job.id))
    unsubscribe()
    asyncio.run(repo.set_status(job.id, VideoJobStatus.FAILED, error_message="stop"))

    assert seen == [VideoJobStatus.GENERATING, VideoJobStatus.EDITING]


def test_failed_role_cancels_roles_still_running(repo, storage, settings, make_job, make_generator):
    generator = make_generator(
        fail_roles={SegmentRole.INTRO},
        role_delays={SegmentRole.INTRO: 0.01, SegmentRole.MAIN: 0.2, SegmentRole.OUTRO: 0.2},
    )
    job = make_job()

    result = asyncio.run(build_orchestrator(repo, generator, storage, settings).run_generation(job.id))

    assert not result.success
    assert generator.finished == []
    assert generator.in_flight == 0
    assert not storage.exists(f"jobs/{job.id}/segments/main.mp4")


def test_blank_failure_message_still_fails_the_job(repo, storage, settings, make_job, make_generator):
    generator = make_generator(fail_roles={SegmentRole.OUTRO}, error_message="   ")
    job = make_job()

    result = asyncio.run(build_orchestrator(repo, generator, storage, settings).run_generation(job.id))

    assert result.error == "GenerationFailure"
    stored = asyncio.run(repo.get(job.id))
    assert stored.status == VideoJobStatus.FAILED
    assert stored.error_message == "GenerationFailure"


def remote_job(repo, url):
    job = VideoJob(id=uuid4(), prompt="Spicy Ramen Bowl", style_id="vibrant", source_images=[url])
    return asyncio.run(repo.save(job))


def test_http_source_image_is_fetched(repo, storage, settings, generator, photo):
    seen = []

    def cdn(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, content=photo, headers={"content-type": "image/png"})

    job = remote_job(repo, "https://cdn.example/ramen.png")
    orchestrator = GenerationOrchestrator(
        repo=repo,
        generator=generator,
        storage=storage,
        settings=settings,
        http_transport=httpx.MockTransport(cdn),
    )

    result = asyncio.run(orchestrator.run_generation(job.id))

    assert result.success
    assert seen == ["https://cdn.example/ramen.png"]
    assert all(call["image"] == photo for call in generator.calls)
    assert all(call["mime_type"] == "image/png" for call in generator.calls)


def test_unreachable_http_source_image_is_invalid_input(repo, storage, settings, generator):
    job = remote_job(repo, "https://cdn.example/gone.png")
    orchestrator = GenerationOrchestrator(
        repo=repo,
        generator=generator,
        storage=storage,
        settings=settings,
        http_transport=httpx.MockTransport(lambda request: httpx.Response(404)),
    )

    result = asyncio.run(orchestrator.run_generation(job.id))

    assert result.error_kind == "invalid_input"
    assert "HTTP 404" in result.error
    assert generator.calls == []
    assert asyncio.run(repo.get(job.id)).status == VideoJobStatus.FAILED
