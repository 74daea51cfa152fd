from __future__ import annotations

import json
import logging
from threading import Lock
from typing import Any, Callable, List

from kafka import KafkaProducer

from app.models.domain import VideoJob

JobListener = Callable[[VideoJob], None]


class JobEventPublisher:
    """Publishes job snapshots to Kafka so downstream services can react in real time."""

    def __init__(self, bootstrap_servers: str, topic: str, logger: logging.Logger | None = None) -> None:
        if not bootstrap_servers:
            raise ValueError("bootstrap_servers is required")
        if not topic:
            raise ValueError("topic is required")
        self._topic = topic
        self._logger = logger or logging.getLogger(__name__)
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            value_serializer=lambda payload: json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            linger_ms=5,
        )

    def publish_job(self, job: VideoJob, extras: dict[str, Any] | None = None) -> None:
        payload: dict[str, Any] = {"job": job.model_dump(mode="json")}
        if extras:
            payload.update(extras)
        try:
            self._producer.send(self._topic, payload)
        except Exception:
            self._logger.warning(
                "failed to publish job event",
                extra={"job_id": str(job.id), "topic": self._topic},
                exc_info=True,
            )

    def close(self) -> None:
        try:
            self._producer.flush()
            self._producer.close()
        except Exception:
            self._logger.debug("job event publisher close failed", exc_info=True)


class JobNotifier:
    """Fans every stored job snapshot out to in-process listeners and, when configured, Kafka."""

    def __init__(self, publisher: JobEventPublisher | None = None, logger: logging.Logger | None = None) -> None:
        self._publisher = publisher
        self._listeners: List[JobListener] = []
        self._lock = Lock()
        self._logger = logger or logging.getLogger(__name__)

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify(self, job: VideoJob) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(job)
            except Exception:
                self._logger.warning("job listener failed", extra={"job_id": str(job.id)}, exc_info=True)
        if self._publisher is not None:
            self._publisher.publish_job(job, extras={"status": job.status.value})

    def close(self) -> None:
        if self._publisher is not None:
            self._publisher.close()
