from __future__ import annotations

import asyncio

from fastapi import APIRouter

from content_hub.api import deps
from content_hub.core.errors import QueueUnavailable
from content_hub.core.jobs import QUEUE_NAMES
from content_hub.db.models import Asset

from . import schemas


router = APIRouter(tags=["system"])


def _summary(asset: Asset) -> schemas.AssetSummary:
    return schemas.AssetSummary(
        asset_id=asset.id,
        mime_type=asset.mime_type,
        processing_status=asset.processing_status,
        processing_error=asset.processing_error,
        created_at=asset.created_at,
        updated_at=asset.updated_at,
    )


@router.get("/health", response_model=schemas.HealthResponse, summary="Liveness probe")
async def health(queue_client: deps.QueueDependency) -> schemas.HealthResponse:
    available = await asyncio.to_thread(queue_client.ensure_available, force=True)
    return schemas.HealthResponse(queue_available=available)


@router.get("/system/jobs", response_model=schemas.JobsOverviewResponse, summary="Processing overview")
async def jobs_overview(
    repository: deps.RepositoryDependency,
    queue_client: deps.QueueDependency,
    settings: deps.SettingsDependency,
) -> schemas.JobsOverviewResponse:
    counts = await repository.count_by_status()
    stuck = await repository.list_stuck(settings.stuck_after_s)
    recent = await repository.list_recent(limit=20)

    failed: dict[str, int] = {}
    if await asyncio.to_thread(queue_client.ensure_available):
        try:
            for queue_name in QUEUE_NAMES:
                failed[queue_name] = len(await asyncio.to_thread(queue_client.failed_jobs, queue_name))
        except QueueUnavailable:
            failed = {}

    return schemas.JobsOverviewResponse(
        queue_available=queue_client.available,
        status_counts=counts,
        stuck_assets=[_summary(asset) for asset in stuck],
        recent=[_summary(asset) for asset in recent],
        failed_jobs=failed,
    )


__all__ = ["router"]
