from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, TypeVar

from content_hub.core.config import Settings
from content_hub.core.errors import (
    BlobNotFound,
    BlobStoreError,
    ContentHubError,
    InputError,
    InvalidTransition,
    ProcessingError,
    ToolTimeout,
    TransientProcessingError,
)
from content_hub.core.jobs import JobType, ProcessingPayload
from content_hub.core.logging import get_logger
from content_hub.core.storage import BlobStore, fetch_url_bytes
from content_hub.db.models import ProcessingStatus, VariantType
from content_hub.db.repository import AssetRepository

from .context import JobContext, PipelineOutcome, VariantRecord
from .results import Err, Ok, Result
from .state import ProcessingStateMachine

T = TypeVar("T")

StepResult = Result[T, ProcessingError]


def as_processing_error(exc: BaseException) -> ProcessingError:
    """Classify a failure as permanent or transient for the retry policy."""
    if isinstance(exc, ProcessingError):
        return exc
    if isinstance(exc, BlobNotFound):
        error: ProcessingError = InputError(f"Original not found: {exc.key}")
    elif isinstance(exc, BlobStoreError):
        error = TransientProcessingError(f"Blob store error: {exc}")
    elif isinstance(exc, InvalidTransition):
        error = ProcessingError(str(exc), permanent=True)
    elif isinstance(exc, ValueError):
        error = InputError(str(exc))
    else:
        error = TransientProcessingError(f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error


class Pipeline(ABC):
    """Shared orchestration for a processing job.

    ``run`` moves the asset to PROCESSING, delegates to ``process`` and settles the
    outcome. Subclasses implement ``process`` as a sequence of steps that each return
    ``Ok`` or ``Err``; the first ``Err`` ends the job.
    """

    job_type: ClassVar[JobType]

    def __init__(
        self,
        settings: Settings,
        blob_store: BlobStore,
        repository: AssetRepository,
        context: JobContext,
    ):
        self.settings = settings
        self.blob_store = blob_store
        self.repository = repository
        self.context = context
        self.state = ProcessingStateMachine(repository)
        self.logger = get_logger(
            component="pipeline",
            job_type=self.job_type.value,
            job_id=context.job_id,
            attempt=context.attempt,
        )

    async def run(self, payload: ProcessingPayload) -> StepResult[PipelineOutcome]:
        self.logger = self.logger.bind(asset_id=payload.asset_id)
        started = await self.state.mark_processing(payload.asset_id)
        if isinstance(started, Err):
            return self._not_started(payload, started.error)

        self.logger.info("asset_processing_started", mime_type=payload.mime_type)
        deadline_s = self.settings.pipeline_deadline_s
        try:
            result = await asyncio.wait_for(self.process(payload), timeout=deadline_s)
        except asyncio.TimeoutError:
            self.logger.error("asset_processing_deadline_exceeded", deadline_s=deadline_s)
            # The cancelled step may have left a write half-done.
            await self.repository.session.rollback()
            result = Err(ToolTimeout(f"Processing exceeded its {deadline_s:g}s deadline"))
        except Exception as exc:
            self.logger.exception("asset_processing_crashed")
            result = Err(as_processing_error(exc))

        if isinstance(result, Ok):
            self.logger.info("asset_processing_completed", variants=len(result.value.variants))
            return result
        return await self._settle_failure(payload, result.error)

    @abstractmethod
    async def process(self, payload: ProcessingPayload) -> StepResult[PipelineOutcome]: ...

    def _not_started(self, payload: ProcessingPayload, error: ContentHubError) -> StepResult[PipelineOutcome]:
        if isinstance(error, InvalidTransition) and error.current == ProcessingStatus.COMPLETED:
            self.logger.info("asset_already_completed")
            return Ok(PipelineOutcome(payload.asset_id, ProcessingStatus.COMPLETED, skipped=True))
        if isinstance(error, InvalidTransition) and error.current == ProcessingStatus.FAILED:
            self.logger.warning("asset_already_failed")
            return Err(ProcessingError(f"asset {payload.asset_id} already failed", permanent=True))
        return Err(as_processing_error(error))

    async def _settle_failure(self, payload: ProcessingPayload, error: ProcessingError) -> StepResult[PipelineOutcome]:
        if error.permanent or self.context.is_final_attempt:
            await self.state.mark_failed(payload.asset_id, error.message)
            self.logger.error(
                "asset_processing_failed",
                error=error.message,
                permanent=error.permanent,
                max_attempts=self.context.max_attempts,
            )
        else:
            await self.state.record_attempt_error(payload.asset_id, error.message)
            self.logger.warning(
                "asset_processing_attempt_failed",
                error=error.message,
                max_attempts=self.context.max_attempts,
            )
        return Err(error)

    async def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> StepResult[T]:
        """Run blocking work off the event loop and capture its failure as an ``Err``."""
        try:
            return Ok(await asyncio.to_thread(func, *args, **kwargs))
        except (ContentHubError, OSError, ValueError) as exc:
            return Err(as_processing_error(exc))

    async def retrieval_url(self, file_key: str) -> StepResult[str]:
        return await self.call(self.blob_store.get_retrieval_url, file_key, self.settings.blob_url_expiry_s)

    async def fetch_original(self, file_key: str) -> StepResult[bytes]:
        url = await self.retrieval_url(file_key)
        if isinstance(url, Err):
            return url
        return await self.call(fetch_url_bytes, url.value, timeout_s=self.settings.fetch_timeout_s)

    async def store_variant(
        self,
        asset_id: str,
        variant_type: VariantType,
        file_key: str,
        body: bytes,
        *,
        content_type: str,
        width: int,
        height: int,
        format: str,
        quality: int | None = None,
        duration: float | None = None,
    ) -> StepResult[VariantRecord]:
        """Upload one rendition and record it; the row is only written after the upload succeeded."""
        uploaded = await self.call(self.blob_store.upload_bytes, file_key, body, content_type)
        if isinstance(uploaded, Err):
            return uploaded
        await self.repository.create_variant(
            asset_id=asset_id,
            variant_type=variant_type,
            file_key=file_key,
            width=width,
            height=height,
            file_size=len(body),
            format=format,
            quality=quality,
            duration=duration,
        )
        self.logger.info("variant_stored", variant_type=variant_type.value, file_key=file_key, file_size=len(body))
        return Ok(
            VariantRecord(
                variant_type=variant_type,
                file_key=file_key,
                width=width,
                height=height,
                file_size=len(body),
                format=format,
                duration=duration,
            )
        )

    async def record_media_facts(self, asset_id: str, **fields: Any) -> None:
        """Persist dimensions/duration while the asset is still PROCESSING."""
        values = {name: value for name, value in fields.items() if value is not None}
        if values:
            await self.repository.update_asset_processing(
                asset_id, expected=(ProcessingStatus.PROCESSING,), **values
            )

    async def finish(
        self,
        payload: ProcessingPayload,
        variants: list[VariantRecord],
        *,
        thumbnail_key: str | None,
        preview_key: str | None,
        width: int | None = None,
        height: int | None = None,
        duration: float | None = None,
    ) -> StepResult[PipelineOutcome]:
        completed = await self.state.mark_completed(
            payload.asset_id,
            thumbnail_key=thumbnail_key,
            preview_key=preview_key,
            width=width,
            height=height,
            duration=duration,
        )
        if isinstance(completed, Err):
            return Err(as_processing_error(completed.error))
        return Ok(PipelineOutcome(payload.asset_id, ProcessingStatus.COMPLETED, variants=variants))


__all__ = ["Pipeline", "StepResult", "as_processing_error"]
