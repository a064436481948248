from __future__ import annotations

import asyncio
import enum

from sqlalchemy.ext.asyncio import AsyncSession

from content_hub.core.errors import AssetNotFound, QueueUnavailable
from content_hub.core.jobs import EnqueueOptions, JobHandle, JobType, ProcessingPayload, QueueClient, queue_for
from content_hub.core.logging import get_logger
from content_hub.db.models import ProcessingStatus
from content_hub.db.repository import AssetRepository
from content_hub.processing.results import Err
from content_hub.processing.state import ProcessingStateMachine


class AssetCategory(str, enum.Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"
    AUDIO = "AUDIO"
    MODEL_3D = "MODEL_3D"
    DESIGN = "DESIGN"


# Types accepted by the upload flow, per category.
ALLOWED_MIME_TYPES: dict[AssetCategory, frozenset[str]] = {
    AssetCategory.IMAGE: frozenset(
        {
            "image/jpeg",
            "image/jpg",
            "image/png",
            "image/gif",
            "image/webp",
            "image/svg+xml",
            "image/tiff",
            "image/bmp",
        }
    ),
    AssetCategory.VIDEO: frozenset(
        {
            "video/mp4",
            "video/mpeg",
            "video/quicktime",
            "video/x-msvideo",
            "video/x-ms-wmv",
            "video/webm",
            "video/ogg",
        }
    ),
    AssetCategory.DOCUMENT: frozenset(
        {
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/vnd.ms-excel",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            "application/vnd.ms-powerpoint",
            "application/vnd.openxmlformats-officedocument.presentationml.presentation",
            "text/plain",
            "text/csv",
        }
    ),
    AssetCategory.AUDIO: frozenset(
        {
            "audio/mpeg",
            "audio/mp3",
            "audio/wav",
            "audio/wave",
            "audio/ogg",
            "audio/aac",
            "audio/flac",
            "audio/webm",
        }
    ),
    AssetCategory.MODEL_3D: frozenset(
        {
            "model/gltf+json",
            "model/gltf-binary",
            "application/octet-stream",
            "model/obj",
            "model/fbx",
            "application/x-fbx",
        }
    ),
    AssetCategory.DESIGN: frozenset(
        {
            "application/postscript",
            "image/vnd.adobe.photoshop",
            "application/x-photoshop",
            "application/photoshop",
            "application/psd",
            "image/x-photoshop",
            "image/psd",
            "application/x-sketch",
            "application/zip",
        }
    ),
}

_PREFIX_FALLBACKS = (
    ("image/", AssetCategory.IMAGE),
    ("video/", AssetCategory.VIDEO),
    ("audio/", AssetCategory.AUDIO),
)

JOB_TYPE_FOR_CATEGORY: dict[AssetCategory, JobType] = {
    AssetCategory.IMAGE: JobType.PROCESS_IMAGE,
    AssetCategory.VIDEO: JobType.PROCESS_VIDEO,
    AssetCategory.DOCUMENT: JobType.PROCESS_DOCUMENT,
    AssetCategory.AUDIO: JobType.PROCESS_AUDIO,
}


def asset_category_for_mime(mime_type: str | None) -> AssetCategory | None:
    if not mime_type:
        return None
    normalized = mime_type.split(";", 1)[0].strip().lower()
    for category, mime_types in ALLOWED_MIME_TYPES.items():
        if normalized in mime_types:
            return category
    for prefix, category in _PREFIX_FALLBACKS:
        if normalized.startswith(prefix):
            return category
    return None


def job_type_for_category(category: AssetCategory | str | None) -> JobType | None:
    if category is None:
        return None
    try:
        return JOB_TYPE_FOR_CATEGORY.get(AssetCategory(category))
    except ValueError:
        return None


class JobDispatcher:
    """The one place upload completion hands an asset to background processing.

    Queue trouble never reaches the caller: the asset simply stays PENDING until the
    queue recovers or an operator reprocesses it.
    """

    def __init__(self, queue_client: QueueClient, session: AsyncSession):
        self.queue_client = queue_client
        self.repository = AssetRepository(session)
        self.state = ProcessingStateMachine(self.repository)
        self.logger = get_logger(component="job_dispatcher")

    async def dispatch(self, job_type: JobType, payload: ProcessingPayload, priority: int | None = None) -> JobHandle:
        queue_name = queue_for(job_type)
        if not await asyncio.to_thread(self.queue_client.ensure_available):
            self.logger.warning(
                "queue_unavailable_dispatch_skipped",
                asset_id=payload.asset_id,
                job_type=job_type.value,
                queue=queue_name,
            )
            return JobHandle.synthetic(queue_name, job_type)
        try:
            handle = await self.queue_client.enqueue(queue_name, job_type, payload, EnqueueOptions(priority=priority))
        except QueueUnavailable as exc:
            self.logger.warning(
                "queue_unavailable_dispatch_skipped",
                asset_id=payload.asset_id,
                job_type=job_type.value,
                queue=queue_name,
                error=str(exc),
            )
            return JobHandle.synthetic(queue_name, job_type)
        self.logger.info("job_dispatched", asset_id=payload.asset_id, job_id=handle.id, queue=queue_name)
        return handle

    async def dispatch_processing_job(self, category: AssetCategory | str | None, payload: ProcessingPayload) -> None:
        """Called once at upload completion. Never raises."""
        try:
            await self._dispatch_for_category(category, payload)
        except Exception:
            self.logger.exception("dispatch_failed", asset_id=payload.asset_id, category=str(category))

    async def reprocess(self, asset_id: str, priority: int | None = None) -> JobHandle | None:
        """Explicit operator re-dispatch: reset a settled asset to PENDING and queue it again."""
        asset = await self.repository.get_asset(asset_id)
        if asset is None:
            raise AssetNotFound(asset_id)
        reset = await self.state.reset_for_reprocessing(asset_id)
        if isinstance(reset, Err):
            raise reset.error
        self.logger.info("asset_reset_for_reprocessing", asset_id=asset_id, previous=asset.processing_status.value)
        payload = ProcessingPayload(asset_id=asset.id, file_key=asset.file_key, mime_type=asset.mime_type)
        return await self._dispatch_for_category(asset_category_for_mime(asset.mime_type), payload, priority)

    async def _dispatch_for_category(
        self,
        category: AssetCategory | str | None,
        payload: ProcessingPayload,
        priority: int | None = None,
    ) -> JobHandle | None:
        asset = await self.repository.get_asset(payload.asset_id)
        if asset is None:
            self.logger.warning("dispatch_asset_missing", asset_id=payload.asset_id)
            return None
        if asset.processing_status != ProcessingStatus.PENDING:
            self.logger.info(
                "dispatch_skipped_not_pending",
                asset_id=payload.asset_id,
                status=asset.processing_status.value,
            )
            return None

        job_type = job_type_for_category(category)
        if job_type is None:
            await self.state.complete_without_processing(payload.asset_id)
            self.logger.info("asset_completed_without_processing", asset_id=payload.asset_id, category=str(category))
            return None
        return await self.dispatch(job_type, payload, priority)


__all__ = [
    "AssetCategory",
    "ALLOWED_MIME_TYPES",
    "JOB_TYPE_FOR_CATEGORY",
    "JobDispatcher",
    "asset_category_for_mime",
    "job_type_for_category",
]
