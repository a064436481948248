from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from content_hub.api import deps
from content_hub.core.errors import AssetNotFound, InvalidTransition

from . import schemas


router = APIRouter(prefix="/assets", tags=["assets"])


@router.get("/{asset_id}/processing", response_model=schemas.AssetProcessingResponse)
async def get_processing_state(
    asset_id: str,
    repository: deps.RepositoryDependency,
) -> schemas.AssetProcessingResponse:
    asset = await repository.get_asset(asset_id)
    if asset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="asset_not_found")
    variants = await repository.list_variants(asset_id)
    metadata = await repository.get_metadata(asset_id)
    return schemas.AssetProcessingResponse(
        asset_id=asset.id,
        mime_type=asset.mime_type,
        file_key=asset.file_key,
        processing_status=asset.processing_status,
        processing_error=asset.processing_error,
        width=asset.width,
        height=asset.height,
        duration=asset.duration,
        thumbnail_key=asset.thumbnail_key,
        preview_key=asset.preview_key,
        updated_at=asset.updated_at,
        variants=[schemas.VariantModel.model_validate(variant) for variant in variants],
        metadata=schemas.MetadataModel.model_validate(metadata) if metadata else None,
    )


@router.post(
    "/{asset_id}/reprocess",
    response_model=schemas.ReprocessResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reprocess_asset(
    asset_id: str,
    dispatcher: deps.DispatcherDependency,
    repository: deps.RepositoryDependency,
) -> schemas.ReprocessResponse:
    try:
        handle = await dispatcher.reprocess(asset_id)
    except AssetNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="asset_not_found") from exc
    except InvalidTransition as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="asset_processing_in_progress") from exc

    asset = await repository.get_asset(asset_id)
    if asset is None:  # pragma: no cover - deleted concurrently
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="asset_not_found")
    return schemas.ReprocessResponse(
        asset_id=asset_id,
        job_id=handle.id if handle else None,
        queue=handle.queue_name if handle else None,
        enqueued=bool(handle and handle.enqueued),
        processing_status=asset.processing_status,
    )


__all__ = ["router"]
