from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from pydantic import ValidationError

from app.errors import InvalidTransition, JobNotFound, PersistenceFailure, StaleGenerationAttempt
from app.events.publisher import JobNotifier
from app.models.domain import (
    OverlaySpecification,
    Segment,
    VideoJob,
    VideoJobStatus,
    VideoJobStatusHistory,
    can_transition,
)


class VideoJobRepository:
    """In-memory job store.

    Every write is a single-record update applied under the lock: the new
    record is revalidated as a whole, so a write that would break a job
    invariant or skip a status transition is rejected and nothing changes.
    Readers always get deep copies.
    """

    def __init__(self, notifier: JobNotifier | None = None) -> None:
        self._jobs: Dict[UUID, VideoJob] = {}
        self._lock = Lock()
        self._notifier = notifier

    async def save(self, job: VideoJob) -> VideoJob:
        try:
            stored = VideoJob.model_validate(job.model_dump())
        except ValidationError as exc:
            raise PersistenceFailure(_validation_message(exc)) from exc
        with self._lock:
            self._jobs[stored.id] = stored
        self._notify(stored)
        return stored.model_copy(deep=True)

    async def get(self, job_id: UUID) -> VideoJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    async def list(self, limit: int | None = None) -> List[VideoJob]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda job: job.created_at, reverse=True)
            if limit is not None:
                jobs = jobs[:limit]
            return [job.model_copy(deep=True) for job in jobs]

    async def set_status(
        self,
        job_id: UUID,
        status: VideoJobStatus,
        error_message: str | None = None,
        message: str | None = None,
        attempt: int | None = None,
    ) -> VideoJob:
        changes: dict[str, Any] = {}
        if status == VideoJobStatus.FAILED:
            changes["error_message"] = error_message
        return self._apply(
            job_id,
            changes,
            status=status,
            message=message or error_message,
            check=_attempt_check(attempt),
        )

    async def begin_generation(self, job_id: UUID) -> int:
        """Moves the job to generating and returns the new attempt number."""
        updated = self._apply(
            job_id,
            {},
            status=VideoJobStatus.GENERATING,
            message="Generating scenes",
            bump_attempt=True,
        )
        return updated.generation_attempt

    async def set_segments(
        self,
        job_id: UUID,
        segments: List[Segment],
        status: VideoJobStatus,
        attempt: int | None = None,
    ) -> VideoJob:
        return self._apply(
            job_id,
            {"segments": list(segments)},
            status=status,
            message=f"Stored {len(segments)} generated scenes",
            check=_attempt_check(attempt),
        )

    async def set_overlay_spec(
        self,
        job_id: UUID,
        spec: OverlaySpecification,
        status: VideoJobStatus | None = None,
        attempt: int | None = None,
    ) -> VideoJob:
        return self._apply(
            job_id,
            {"overlay_spec": spec},
            status=status,
            message="Overlay updated",
            check=_attempt_check(attempt),
        )

    async def set_final_video(
        self,
        job_id: UUID,
        ref: str,
        status: VideoJobStatus = VideoJobStatus.COMPLETED,
    ) -> VideoJob:
        return self._apply(job_id, {"final_video_ref": ref}, status=status, message="Rendered video attached")

    def _apply(
        self,
        job_id: UUID,
        changes: dict[str, Any],
        status: VideoJobStatus | None = None,
        message: str | None = None,
        check: Optional[Callable[[VideoJob], None]] = None,
        bump_attempt: bool = False,
    ) -> VideoJob:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFound(job_id)
            if check is not None:
                check(current)
            payload = current.model_dump()
            payload.update(changes)
            if bump_attempt:
                payload["generation_attempt"] = current.generation_attempt + 1
            if status is not None:
                if not can_transition(current.status, status):
                    raise InvalidTransition(current.status.value, status.value)
                payload["status"] = status
                if status != VideoJobStatus.FAILED:
                    payload["error_message"] = None
                if status != VideoJobStatus.COMPLETED:
                    payload["final_video_ref"] = None
                history = VideoJobStatusHistory(status=status, message=message or status.value)
                payload["status_history"] = [*payload["status_history"], history.model_dump()]
            payload["updated_at"] = datetime.utcnow()
            try:
                updated = VideoJob.model_validate(payload)
            except ValidationError as exc:
                raise PersistenceFailure(_validation_message(exc)) from exc
            self._jobs[job_id] = updated
        self._notify(updated)
        return updated.model_copy(deep=True)

    def _notify(self, job: VideoJob) -> None:
        if self._notifier is not None:
            self._notifier.notify(job.model_copy(deep=True))


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "job update rejected"
    return f"job update rejected: {errors[0].get('msg')}"


def _attempt_check(attempt: int | None) -> Optional[Callable[[VideoJob], None]]:
    if attempt is None:
        return None

    def check(current: VideoJob) -> None:
        if current.generation_attempt != attempt:
            raise StaleGenerationAttempt(attempt, current.generation_attempt)

    return check
