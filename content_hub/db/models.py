from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import BIGINT
from sqlalchemy.orm import Mapped, mapped_column, relationship

from content_hub.core.db import Base


class ProcessingStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


class VariantType(str, enum.Enum):
    THUMBNAIL = "THUMBNAIL"
    PREVIEW = "PREVIEW"
    WEB_OPTIMIZED = "WEB_OPTIMIZED"
    MOBILE = "MOBILE"


def _new_asset_id() -> str:
    return uuid4().hex


class Asset(Base):
    __tablename__ = "assets"
    __table_args__ = (Index("ix_assets_processing_status_updated_at", "processing_status", "updated_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_asset_id)
    file_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    thumbnail_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    preview_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        Enum(ProcessingStatus), default=ProcessingStatus.PENDING, nullable=False
    )
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    variants: Mapped[List["AssetVariant"]] = relationship(back_populates="asset", cascade="all, delete-orphan")
    technical_metadata: Mapped[Optional["AssetMetadata"]] = relationship(back_populates="asset", uselist=False)


class AssetVariant(Base):
    __tablename__ = "asset_variants"
    __table_args__ = (UniqueConstraint("asset_id", "variant_type", name="uq_asset_variants_asset_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), nullable=False)
    variant_type: Mapped[VariantType] = mapped_column(Enum(VariantType), nullable=False)
    file_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    file_size: Mapped[int] = mapped_column(BIGINT, nullable=False)
    format: Mapped[str] = mapped_column(String(32), nullable=False)
    quality: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    asset: Mapped[Asset] = relationship(back_populates="variants")


class AssetMetadata(Base):
    __tablename__ = "asset_metadata"

    asset_id: Mapped[str] = mapped_column(ForeignKey("assets.id", ondelete="CASCADE"), primary_key=True)
    color_space: Mapped[str | None] = mapped_column(String(64), nullable=True)
    dpi: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bit_depth: Mapped[int | None] = mapped_column(Integer, nullable=True)
    frame_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    bit_rate: Mapped[int | None] = mapped_column(BIGINT, nullable=True)
    codec: Mapped[str | None] = mapped_column(String(64), nullable=True)
    custom_fields: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    asset: Mapped[Asset] = relationship(back_populates="technical_metadata")


__all__ = [
    "Asset",
    "AssetVariant",
    "AssetMetadata",
    "ProcessingStatus",
    "VariantType",
]
