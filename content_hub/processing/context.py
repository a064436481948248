from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from content_hub.core.jobs import JobType
from content_hub.db.models import ProcessingStatus, VariantType

ProgressCallback = Callable[[float], None]


@dataclass(slots=True)
class JobContext:
    """Delivery facts for one attempt of a job."""

    job_id: str
    job_type: JobType
    attempt: int = 1
    max_attempts: int = 1
    on_progress: ProgressCallback | None = None

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def report_progress(self, fraction: float) -> None:
        if self.on_progress is None:
            return
        self.on_progress(max(0.0, min(1.0, fraction)))


@dataclass(slots=True)
class VariantRecord:
    variant_type: VariantType
    file_key: str
    width: int
    height: int
    file_size: int
    format: str
    duration: float | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "variant_type": self.variant_type.value,
            "file_key": self.file_key,
            "width": self.width,
            "height": self.height,
            "file_size": self.file_size,
            "format": self.format,
            "duration": self.duration,
        }


@dataclass(slots=True)
class PipelineOutcome:
    asset_id: str
    status: ProcessingStatus
    variants: list[VariantRecord] = field(default_factory=list)
    skipped: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "status": self.status.value,
            "skipped": self.skipped,
            "variants": [variant.as_dict() for variant in self.variants],
        }


__all__ = ["JobContext", "PipelineOutcome", "ProgressCallback", "VariantRecord"]
