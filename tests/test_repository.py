import asyncio
from uuid import uuid4

import pytest

from app.errors import InvalidTransition, JobNotFound, PersistenceFailure
from app.models.domain import Segment, SegmentRole, VideoJobStatus


def segments(*roles):
    return [Segment(role=role, clip_ref=f"jobs/x/{role.value}.mp4", prompt=f"{role.value} prompt") for role in roles]


FULL_SET = (SegmentRole.INTRO, SegmentRole.MAIN, SegmentRole.OUTRO)


def test_rejects_skipping_generation(repo, make_job):
    job = make_job()

    with pytest.raises(InvalidTransition):
        asyncio.run(repo.set_segments(job.id, segments(*FULL_SET), VideoJobStatus.EDITING))

    assert asyncio.run(repo.get(job.id)).status == VideoJobStatus.QUEUED


def test_failed_status_requires_message(repo, make_job):
    job = make_job()

    with pytest.raises(PersistenceFailure):
        asyncio.run(repo.set_status(job.id, VideoJobStatus.FAILED))

    stored = asyncio.run(repo.set_status(job.id, VideoJobStatus.FAILED, error_message="No input images found"))
    assert stored.error_message == "No input images found"


def test_partial_segment_sets_are_never_stored(repo, make_job):
    job = make_job()
    asyncio.run(repo.begin_generation(job.id))

    with pytest.raises(PersistenceFailure):
        asyncio.run(repo.set_segments(job.id, segments(SegmentRole.INTRO, SegmentRole.MAIN), VideoJobStatus.EDITING))
    with pytest.raises(PersistenceFailure):
        asyncio.run(
            repo.set_segments(
                job.id,
                segments(SegmentRole.OUTRO, SegmentRole.MAIN, SegmentRole.INTRO),
                VideoJobStatus.EDITING,
            )
        )

    stored = asyncio.run(repo.get(job.id))
    assert stored.segments is None
    assert stored.status == VideoJobStatus.GENERATING


def test_leaving_failed_clears_error_message(repo, make_job):
    job = make_job()
    asyncio.run(repo.set_status(job.id, VideoJobStatus.FAILED, error_message="boom"))

    attempt = asyncio.run(repo.begin_generation(job.id))

    stored = asyncio.run(repo.get(job.id))
    assert attempt == 1
    assert stored.status == VideoJobStatus.GENERATING
    assert stored.error_message is None


def test_completed_requires_final_video(repo, make_job):
    job = make_job()
    asyncio.run(repo.begin_generation(job.id))
    asyncio.run(repo.set_segments(job.id, segments(*FULL_SET), VideoJobStatus.EDITING))

    with pytest.raises(InvalidTransition):
        asyncio.run(repo.set_final_video(job.id, "jobs/x/final.mp4"))

    asyncio.run(repo.set_status(job.id, VideoJobStatus.READY_TO_RENDER))
    stored = asyncio.run(repo.set_final_video(job.id, "jobs/x/final.mp4"))
    assert stored.status == VideoJobStatus.COMPLETED
    assert stored.final_video_ref == "jobs/x/final.mp4"

    reopened = asyncio.run(repo.set_status(job.id, VideoJobStatus.READY_TO_RENDER))
    assert reopened.final_video_ref is None


def test_reads_are_copies(repo, make_job):
    job = make_job()

    copy = asyncio.run(repo.get(job.id))
    copy.prompt = "changed"

    assert asyncio.run(repo.get(job.id)).prompt == job.prompt


def test_unknown_job(repo):
    with pytest.raises(JobNotFound):
        asyncio.run(repo.set_status(uuid4(), VideoJobStatus.GENERATING))
    assert asyncio.run(repo.get(uuid4())) is None


def test_list_is_newest_first_and_limited(repo, make_job):
    for idx in range(3):
        make_job(prompt=f"job {idx}")

    items = asyncio.run(repo.list())
    assert len(items) == 3
    stamps = [item.created_at for item in items]
    assert stamps == sorted(stamps, reverse=True)
    assert len(asyncio.run(repo.list(limit=1))) == 1
