from __future__ import annotations

import asyncio
from typing import Any, Callable
from uuid import uuid4

from redis.exceptions import RedisError
from rq import get_current_job
from rq.job import Job

from content_hub.core.config import get_settings
from content_hub.core.db import session_scope
from content_hub.core.jobs import JobType, ProcessingPayload
from content_hub.core.logging import configure_logging, get_logger, level_from_name
from content_hub.core.storage import get_blob_store
from content_hub.db.repository import AssetRepository
from content_hub.processing import pipeline_for
from content_hub.processing.context import JobContext
from content_hub.processing.results import Err

logger = get_logger(component="worker")


def _rq_progress(job: Job) -> Callable[[float], None]:
    def report(fraction: float) -> None:
        job.meta["progress"] = round(fraction, 3)
        try:
            job.save_meta()
        except RedisError as exc:
            logger.warning("job_progress_not_saved", job_id=job.id, error=str(exc))

    return report


def run_job(
    job_type: str,
    payload: dict[str, Any],
    *,
    job_id: str | None = None,
    attempt: int | None = None,
    max_attempts: int = 1,
    on_progress: Callable[[float], None] | None = None,
) -> dict[str, Any]:
    """Entry-point executed by the job backend (RQ or inline).

    Raises the pipeline's error when the job did not succeed, so the backend counts the
    attempt as failed and applies its retry schedule.
    """
    settings = get_settings()
    configure_logging(level_from_name(settings.log_level), settings.log_format)

    current = get_current_job()
    if current is not None:
        job_id = job_id or current.id
        if attempt is None:
            attempt = max_attempts - (current.retries_left or 0)
        if on_progress is None:
            on_progress = _rq_progress(current)

    context = JobContext(
        job_id=job_id or uuid4().hex,
        job_type=JobType(job_type),
        attempt=max(attempt or 1, 1),
        max_attempts=max_attempts,
        on_progress=on_progress,
    )
    data = ProcessingPayload.model_validate(payload)
    blob_store = get_blob_store(settings)

    async def _runner():
        async with session_scope(settings) as session:
            pipeline = pipeline_for(context.job_type)(settings, blob_store, AssetRepository(session), context)
            return await pipeline.run(data)

    result = asyncio.run(_runner())
    if isinstance(result, Err):
        raise result.error
    return result.value.as_dict()


__all__ = ["run_job"]
