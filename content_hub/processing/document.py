from __future__ import annotations

import hashlib

from content_hub.core.jobs import JobType, ProcessingPayload

from .base import Pipeline, StepResult
from .context import PipelineOutcome
from .results import Err


class DocumentPipeline(Pipeline):
    job_type = JobType.PROCESS_DOCUMENT

    async def process(self, payload: ProcessingPayload) -> StepResult[PipelineOutcome]:
        original = await self.fetch_original(payload.file_key)
        if isinstance(original, Err):
            return original
        body = original.value
        digest = await self.call(lambda: hashlib.sha256(body).hexdigest())
        if isinstance(digest, Err):
            return digest

        await self.repository.create_metadata(
            payload.asset_id,
            custom_fields={
                "mimeType": payload.mime_type,
                "sizeBytes": len(body),
                "sha256": digest.value,
            },
        )
        return await self.finish(payload, [], thumbnail_key=None, preview_key=None)


__all__ = ["DocumentPipeline"]
