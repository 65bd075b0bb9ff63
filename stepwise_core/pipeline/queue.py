from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from stepwise_core.config import Config
from stepwise_core.errors import RecoverableError, ValidationError
from stepwise_core.logging import get_logger

try:
    import redis
except ImportError:  # pragma: no cover - optional dependency for redis backend
    redis = None

logger = get_logger(__name__)

JOB_RUN = "run"
JOB_RESUME = "resume"


@dataclass(frozen=True)
class Job:
    kind: str
    module_id: str
    run_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {
                "kind": self.kind,
                "module_id": self.module_id,
                "run_id": self.run_id,
                "payload": self.payload,
            },
            ensure_ascii=True,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Job":
        try:
            data = json.loads(raw)
            return cls(
                kind=str(data["kind"]),
                module_id=str(data["module_id"]),
                run_id=str(data["run_id"]),
                payload=dict(data.get("payload") or {}),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed job payload: {exc}") from exc


JobHandler = Callable[[Job], None]


class JobQueue(Protocol):
    def enqueue(self, job: Job) -> None: ...


def _run_handler(handler: JobHandler, job: Job) -> None:
    try:
        handler(job)
    except Exception:
        logger.exception(
            "Job handler raised",
            extra={"module_id": job.module_id, "run_id": job.run_id, "stage": job.kind},
        )


class LocalJobQueue:
    """In-process queue; ``workers=0`` runs each job inline on enqueue."""

    def __init__(self, handler: JobHandler, workers: int = 2) -> None:
        self.handler = handler
        self._executor = (
            ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stepwise-job")
            if workers > 0
            else None
        )

    def enqueue(self, job: Job) -> None:
        if self._executor is None:
            _run_handler(self.handler, job)
            return
        self._executor.submit(_run_handler, self.handler, job)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


class RedisJobQueue:
    """Broker-backed queue: a Redis list consumed by ``run_worker``."""

    def __init__(self, client, key: str) -> None:
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str) -> "RedisJobQueue":
        if redis is None:
            raise RecoverableError("redis package is required for QUEUE_BACKEND=redis")
        return cls(redis.Redis.from_url(url), key)

    def enqueue(self, job: Job) -> None:
        try:
            self.client.rpush(self.key, job.to_json())
        except Exception as exc:
            raise RecoverableError(f"Failed to enqueue job: {exc}") from exc

    def pop(self, timeout_s: int = 5) -> Job | None:
        item = self.client.blpop([self.key], timeout=timeout_s)
        if not item:
            return None
        _, raw = item
        return Job.from_json(raw)


def run_worker(
    queue: RedisJobQueue,
    handler: JobHandler,
    *,
    stop: threading.Event | None = None,
    poll_timeout_s: int = 5,
    max_jobs: int | None = None,
) -> int:
    """Consume jobs until ``stop`` is set or ``max_jobs`` were handled."""
    handled = 0
    while stop is None or not stop.is_set():
        if max_jobs is not None and handled >= max_jobs:
            break
        try:
            job = queue.pop(poll_timeout_s)
        except ValidationError as exc:
            logger.warning("Dropping malformed job", extra={"error_message": str(exc)})
            continue
        if job is None:
            continue
        _run_handler(handler, job)
        handled += 1
    return handled


def build_job_queue(config: Config, handler: JobHandler) -> JobQueue:
    if config.queue_backend == "redis":
        return RedisJobQueue.from_url(config.redis_url or "", config.queue_key)
    return LocalJobQueue(handler, workers=config.queue_workers)
