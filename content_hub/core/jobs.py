from __future__ import annotations

import asyncio
import enum
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache, partial
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field
from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry
from rq.job import Job
from rq.registry import FailedJobRegistry

from .config import Settings, get_settings
from .errors import QueueUnavailable
from .logging import get_logger


class JobType(str, enum.Enum):
    PROCESS_IMAGE = "process-image"
    PROCESS_VIDEO = "process-video"
    PROCESS_DOCUMENT = "process-document"
    PROCESS_AUDIO = "process-audio"


QUEUE_FOR_JOB_TYPE: dict[JobType, str] = {
    JobType.PROCESS_IMAGE: "images",
    JobType.PROCESS_VIDEO: "videos",
    JobType.PROCESS_DOCUMENT: "documents",
    JobType.PROCESS_AUDIO: "audio",
}

QUEUE_NAMES: tuple[str, ...] = tuple(QUEUE_FOR_JOB_TYPE.values())

# Lower numbers win, as in most broker priority schemes.
HIGHEST_PRIORITY = 1


class ProcessingPayload(BaseModel):
    asset_id: str = Field(..., min_length=1)
    file_key: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)


@dataclass(slots=True)
class EnqueueOptions:
    priority: int | None = None
    delay_s: float | None = None


@dataclass(slots=True)
class JobHandle:
    id: str
    queue_name: str
    job_type: JobType
    enqueued: bool = True

    @classmethod
    def synthetic(cls, queue_name: str, job_type: JobType) -> "JobHandle":
        """Placeholder returned when nothing reached the queue."""
        return cls(id=f"noop-{uuid4().hex}", queue_name=queue_name, job_type=job_type, enqueued=False)


@dataclass(slots=True)
class FailedJob:
    id: str
    queue_name: str
    job_type: str | None
    payload: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    error: str | None = None


@dataclass(slots=True)
class RetryPolicy:
    max_attempts: int
    delays: list[float]

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(max_attempts=settings.job_max_attempts, delays=settings.retry_delays())

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (2-based; the first attempt never waits)."""
        if attempt <= 1 or not self.delays:
            return 0.0
        index = min(attempt - 2, len(self.delays) - 1)
        return self.delays[index]


class QueueClient(ABC):
    """Durable at-least-once work queue keyed by queue name and job type."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.retry_policy = RetryPolicy.from_settings(settings)
        self.logger = get_logger(component="queue_client", backend=type(self).__name__)
        self._available = False
        self._last_connect_attempt: float | None = None

    @property
    def available(self) -> bool:
        return self._available

    @abstractmethod
    def connect(self) -> bool: ...

    def ensure_available(self, *, force: bool = False) -> bool:
        """Re-check a disconnected backend, at most once per ``queue_reconnect_interval_s``.

        ``force`` pings even when the client already believes it is connected.
        """
        if self._available and not force:
            return True
        now = time.monotonic()
        if (
            not force
            and self._last_connect_attempt is not None
            and now - self._last_connect_attempt < self.settings.queue_reconnect_interval_s
        ):
            return False
        self._last_connect_attempt = now
        was_available = self._available
        available = self.connect()
        if available and not was_available:
            self.logger.info("queue_backend_connected")
        return available

    @abstractmethod
    async def enqueue(
        self,
        queue_name: str,
        job_type: JobType,
        payload: ProcessingPayload,
        options: EnqueueOptions | None = None,
    ) -> JobHandle: ...

    @abstractmethod
    def failed_jobs(self, queue_name: str) -> list[FailedJob]: ...

    def close(self) -> None:
        self._available = False


class InlineQueueClient(QueueClient):
    """Runs jobs in worker threads of the current process, for development and tests.

    Applies the same retry schedule as the Redis backend and bounds each queue with
    a semaphore sized from ``queue_concurrency``. ``enqueue`` returns once the job
    has succeeded or exhausted its attempts.
    """

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self._slots: dict[str, asyncio.Semaphore] = {}
        self._failed: dict[str, list[FailedJob]] = {}
        self.progress: dict[str, float] = {}

    def connect(self) -> bool:
        self._available = True
        return True

    def _slot(self, queue_name: str) -> asyncio.Semaphore:
        if queue_name not in self._slots:
            self._slots[queue_name] = asyncio.Semaphore(self.settings.concurrency_for(queue_name))
        return self._slots[queue_name]

    async def enqueue(
        self,
        queue_name: str,
        job_type: JobType,
        payload: ProcessingPayload,
        options: EnqueueOptions | None = None,
    ) -> JobHandle:
        if not self._available:
            raise QueueUnavailable("inline queue client is not connected")
        options = options or EnqueueOptions()
        handle = JobHandle(id=uuid4().hex, queue_name=queue_name, job_type=job_type)
        if options.delay_s:
            await asyncio.sleep(options.delay_s)
        async with self._slot(queue_name):
            await self._run_with_retries(handle, payload.model_dump(mode="json"))
        return handle

    async def _run_with_retries(self, handle: JobHandle, payload: dict[str, Any]) -> None:
        from content_hub.workers.tasks import run_job

        max_attempts = self.retry_policy.max_attempts
        last_error: BaseException | None = None
        for attempt in range(1, max_attempts + 1):
            delay = self.retry_policy.delay_for(attempt)
            if delay:
                await asyncio.sleep(delay)
            try:
                await asyncio.to_thread(
                    run_job,
                    handle.job_type.value,
                    payload,
                    job_id=handle.id,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    on_progress=partial(self._record_progress, handle.id),
                )
                self.progress.pop(handle.id, None)
                return
            except Exception as exc:
                last_error = exc
                self.logger.warning(
                    "job_attempt_failed",
                    job_id=handle.id,
                    queue=handle.queue_name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(exc),
                )

        self._failed.setdefault(handle.queue_name, []).append(
            FailedJob(
                id=handle.id,
                queue_name=handle.queue_name,
                job_type=handle.job_type.value,
                payload=payload,
                attempts=max_attempts,
                error=str(last_error) if last_error else None,
            )
        )
        self.logger.error("job_moved_to_failed", job_id=handle.id, queue=handle.queue_name)

    def _record_progress(self, job_id: str, fraction: float) -> None:
        self.progress[job_id] = fraction

    def failed_jobs(self, queue_name: str) -> list[FailedJob]:
        return list(self._failed.get(queue_name, []))


class RQQueueClient(QueueClient):
    """Redis Queue backend. Workers are started per queue by ``content_hub.workers.pool``."""

    def __init__(self, settings: Settings, connection: Redis | None = None):
        super().__init__(settings)
        self.connection = connection or Redis.from_url(
            settings.redis_url,
            socket_connect_timeout=settings.queue_connect_timeout_s,
            socket_timeout=settings.queue_connect_timeout_s,
        )
        self._queues: dict[str, Queue] = {}

    def connect(self) -> bool:
        try:
            self.connection.ping()
        except RedisError as exc:
            self._available = False
            self.logger.warning("queue_backend_disconnected", error=str(exc), redis_url=self.settings.redis_url)
            return False
        self._available = True
        return True

    def queue(self, queue_name: str) -> Queue:
        if queue_name not in self._queues:
            self._queues[queue_name] = Queue(
                queue_name,
                connection=self.connection,
                default_timeout=self.settings.job_timeout_s,
            )
        return self._queues[queue_name]

    async def enqueue(
        self,
        queue_name: str,
        job_type: JobType,
        payload: ProcessingPayload,
        options: EnqueueOptions | None = None,
    ) -> JobHandle:
        if not self._available:
            raise QueueUnavailable(f"queue backend unavailable: {self.settings.redis_url}")
        options = options or EnqueueOptions()
        try:
            job = await asyncio.to_thread(self._enqueue_sync, queue_name, job_type, payload, options)
        except RedisError as exc:
            self._available = False
            raise QueueUnavailable(str(exc)) from exc
        return JobHandle(id=job.id, queue_name=queue_name, job_type=job_type)

    def _enqueue_sync(
        self,
        queue_name: str,
        job_type: JobType,
        payload: ProcessingPayload,
        options: EnqueueOptions,
    ) -> Job:
        from content_hub.workers.tasks import run_job

        max_attempts = self.retry_policy.max_attempts
        retry = None
        if max_attempts > 1:
            retry = Retry(max=max_attempts - 1, interval=[int(math.ceil(delay)) for delay in self.retry_policy.delays])
        job_options: dict[str, Any] = {
            "args": (job_type.value, payload.model_dump(mode="json")),
            "kwargs": {"max_attempts": max_attempts},
            "job_timeout": self.settings.job_timeout_s,
            "result_ttl": 0,
            "failure_ttl": -1,
            "retry": retry,
            "description": f"{job_type.value}:{payload.asset_id}",
        }
        queue = self.queue(queue_name)
        if options.delay_s:
            return queue.enqueue_in(timedelta(seconds=options.delay_s), run_job, **job_options)
        at_front = options.priority is not None and options.priority <= HIGHEST_PRIORITY
        return queue.enqueue(run_job, at_front=at_front, **job_options)

    def failed_jobs(self, queue_name: str) -> list[FailedJob]:
        registry = FailedJobRegistry(queue=self.queue(queue_name))
        try:
            jobs = Job.fetch_many(registry.get_job_ids(), connection=self.connection)
        except RedisError as exc:
            raise QueueUnavailable(str(exc)) from exc
        failed: list[FailedJob] = []
        for job in jobs:
            if job is None:
                continue
            latest = job.latest_result()
            args = list(job.args or ())
            failed.append(
                FailedJob(
                    id=job.id,
                    queue_name=queue_name,
                    job_type=args[0] if args else None,
                    payload=args[1] if len(args) > 1 else {},
                    attempts=self.retry_policy.max_attempts,
                    error=latest.exc_string if latest is not None else None,
                )
            )
        return failed

    def close(self) -> None:
        super().close()
        self.connection.close()


def queue_for(job_type: JobType) -> str:
    return QUEUE_FOR_JOB_TYPE[job_type]


def build_queue_client(settings: Settings) -> QueueClient:
    backend = settings.normalized_job_backend
    if backend == "inline":
        client: QueueClient = InlineQueueClient(settings)
    elif backend == "rq":
        client = RQQueueClient(settings)
    else:
        raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")
    client.ensure_available(force=True)
    return client


@lru_cache()
def get_queue_client() -> QueueClient:
    return build_queue_client(get_settings())


__all__ = [
    "JobType",
    "QUEUE_FOR_JOB_TYPE",
    "QUEUE_NAMES",
    "ProcessingPayload",
    "EnqueueOptions",
    "JobHandle",
    "FailedJob",
    "RetryPolicy",
    "QueueClient",
    "InlineQueueClient",
    "RQQueueClient",
    "queue_for",
    "build_queue_client",
    "get_queue_client",
]
