from __future__ import annotations

from typing import Any

from content_hub.core.errors import AssetNotFound, ContentHubError, InvalidTransition
from content_hub.core.logging import get_logger
from content_hub.db.models import ProcessingStatus
from content_hub.db.repository import AssetRepository

from .results import Err, Ok, Result

PENDING = ProcessingStatus.PENDING
PROCESSING = ProcessingStatus.PROCESSING
COMPLETED = ProcessingStatus.COMPLETED
FAILED = ProcessingStatus.FAILED

# Source states each transition accepts. Terminal targets list themselves so that
# a redelivered job repeating the same call is a no-op.
ALLOWED_SOURCES: dict[str, tuple[ProcessingStatus, ...]] = {
    "mark_processing": (PENDING, PROCESSING),
    "mark_completed": (PROCESSING, COMPLETED),
    "mark_failed": (PENDING, PROCESSING, FAILED),
    "record_attempt_error": (PROCESSING,),
    "complete_without_processing": (PENDING, COMPLETED),
    "reset_for_reprocessing": (PENDING, COMPLETED, FAILED),
}

TransitionResult = Result[ProcessingStatus, ContentHubError]


class ProcessingStateMachine:
    """PENDING -> PROCESSING -> COMPLETED | FAILED, one direction only.

    Every transition is a conditional update on the current status, so two deliveries
    of the same job cannot move a terminal asset backwards. Going back to PENDING is
    only possible through ``reset_for_reprocessing``, which the explicit re-dispatch
    path calls.
    """

    def __init__(self, repository: AssetRepository):
        self.repository = repository
        self.logger = get_logger(component="processing_state")

    async def mark_processing(self, asset_id: str) -> TransitionResult:
        return await self._transition("mark_processing", asset_id, PROCESSING)

    async def mark_completed(
        self,
        asset_id: str,
        *,
        thumbnail_key: str | None,
        preview_key: str | None,
        width: int | None = None,
        height: int | None = None,
        duration: float | None = None,
    ) -> TransitionResult:
        fields: dict[str, Any] = {
            "thumbnail_key": thumbnail_key,
            "preview_key": preview_key,
            "processing_error": None,
        }
        for name, value in (("width", width), ("height", height), ("duration", duration)):
            if value is not None:
                fields[name] = value
        return await self._transition("mark_completed", asset_id, COMPLETED, **fields)

    async def mark_failed(self, asset_id: str, error_message: str) -> TransitionResult:
        return await self._transition("mark_failed", asset_id, FAILED, processing_error=error_message or "Unknown error")

    async def record_attempt_error(self, asset_id: str, error_message: str) -> TransitionResult:
        """Keep the asset PROCESSING but expose the error of an attempt that will be retried."""
        return await self._transition(
            "record_attempt_error", asset_id, PROCESSING, processing_error=error_message or "Unknown error"
        )

    async def complete_without_processing(self, asset_id: str) -> TransitionResult:
        return await self._transition("complete_without_processing", asset_id, COMPLETED)

    async def reset_for_reprocessing(self, asset_id: str) -> TransitionResult:
        return await self._transition("reset_for_reprocessing", asset_id, PENDING, processing_error=None)

    async def _transition(
        self,
        name: str,
        asset_id: str,
        target: ProcessingStatus,
        **fields: Any,
    ) -> TransitionResult:
        changed = await self.repository.update_asset_processing(
            asset_id,
            target,
            expected=ALLOWED_SOURCES[name],
            **fields,
        )
        if changed:
            self.logger.debug("asset_transition", asset_id=asset_id, transition=name, status=target.value)
            return Ok(target)

        asset = await self.repository.get_asset(asset_id)
        if asset is None:
            return Err(AssetNotFound(asset_id))
        self.logger.info(
            "asset_transition_rejected",
            asset_id=asset_id,
            transition=name,
            current=asset.processing_status.value,
            target=target.value,
        )
        return Err(InvalidTransition(asset_id, asset.processing_status, target))


__all__ = ["ProcessingStateMachine", "ALLOWED_SOURCES", "TransitionResult"]
