from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from content_hub.db.models import ProcessingStatus, VariantType


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    queue_available: bool = Field(default=False, description="Whether the job queue backend is reachable.")


class VariantModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    variant_type: VariantType
    file_key: str
    width: int
    height: int
    file_size: int
    format: str
    quality: Optional[int] = None
    duration: Optional[float] = None


class MetadataModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    color_space: Optional[str] = None
    dpi: Optional[int] = None
    bit_depth: Optional[int] = None
    frame_rate: Optional[float] = None
    bit_rate: Optional[int] = None
    codec: Optional[str] = None
    custom_fields: Optional[Dict[str, Any]] = None


class AssetProcessingResponse(BaseModel):
    asset_id: str
    mime_type: str
    file_key: str
    processing_status: ProcessingStatus
    processing_error: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    thumbnail_key: Optional[str] = None
    preview_key: Optional[str] = None
    updated_at: Optional[datetime] = None
    variants: List[VariantModel] = Field(default_factory=list)
    metadata: Optional[MetadataModel] = None


class AssetSummary(BaseModel):
    asset_id: str
    mime_type: str
    processing_status: ProcessingStatus
    processing_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class JobsOverviewResponse(BaseModel):
    queue_available: bool
    status_counts: Dict[ProcessingStatus, int]
    stuck_assets: List[AssetSummary] = Field(default_factory=list, description="PENDING assets older than the stuck threshold.")
    recent: List[AssetSummary] = Field(default_factory=list)
    failed_jobs: Dict[str, int] = Field(default_factory=dict, description="Jobs kept as failed, per queue.")


class ReprocessResponse(BaseModel):
    asset_id: str
    job_id: Optional[str] = None
    queue: Optional[str] = None
    enqueued: bool
    processing_status: ProcessingStatus


__all__ = [
    "HealthResponse",
    "VariantModel",
    "MetadataModel",
    "AssetProcessingResponse",
    "AssetSummary",
    "JobsOverviewResponse",
    "ReprocessResponse",
]
