from __future__ import annotations

from redis import Redis
from rq.worker_pool import WorkerPool

from content_hub.core.config import Settings, get_settings
from content_hub.core.jobs import QUEUE_NAMES
from content_hub.core.logging import configure_logging, get_logger, level_from_name


def build_worker_pool(queue_name: str, settings: Settings) -> WorkerPool:
    """One pool per queue, sized by ``queue_concurrency`` so heavy queues stay narrow."""
    if queue_name not in QUEUE_NAMES:
        raise ValueError(f"Unknown queue: {queue_name}")
    connection = Redis.from_url(settings.redis_url)
    return WorkerPool([queue_name], connection=connection, num_workers=settings.concurrency_for(queue_name))


def start_worker_pool(queue_name: str, *, burst: bool = False, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    configure_logging(level_from_name(settings.log_level), settings.log_format)
    pool = build_worker_pool(queue_name, settings)
    get_logger(component="worker_pool").info(
        "worker_pool_starting",
        queue=queue_name,
        workers=settings.concurrency_for(queue_name),
        burst=burst,
    )
    pool.start(burst=burst, logging_level=settings.log_level.upper())


__all__ = ["build_worker_pool", "start_worker_pool"]
