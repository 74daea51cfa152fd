from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    NOT_READY = "not_ready"
    GENERATION_FAILURE = "generation_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    NO_PLAYABLE_MEDIA = "no_playable_media"


class VideoJobError(Exception):
    """Base class for failures the job pipeline records on the job."""

    kind: ErrorKind = ErrorKind.GENERATION_FAILURE


class InvalidInput(VideoJobError):
    kind = ErrorKind.INVALID_INPUT


class NotReady(VideoJobError):
    kind = ErrorKind.NOT_READY


class GenerationFailure(VideoJobError):
    kind = ErrorKind.GENERATION_FAILURE


class PersistenceFailure(VideoJobError):
    kind = ErrorKind.PERSISTENCE_FAILURE


class NoPlayableMedia(VideoJobError):
    kind = ErrorKind.NO_PLAYABLE_MEDIA


class JobNotFound(PersistenceFailure):
    def __init__(self, job_id: object) -> None:
        super().__init__("Video job not found")
        self.job_id = job_id


class InvalidTransition(PersistenceFailure):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move job from {current} to {target}")
        self.current = current
        self.target = target


class StaleGenerationAttempt(PersistenceFailure):
    """Raised when a newer generation attempt owns the job."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"generation attempt {expected} superseded by attempt {actual}")
        self.expected = expected
        self.actual = actual


class FrameOutOfRange(ValueError):
    def __init__(self, frame: int, total: int) -> None:
        super().__init__(f"frame {frame} is outside the timeline [0, {total})")
        self.frame = frame
        self.total = total
