from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Asset, AssetMetadata, AssetVariant, ProcessingStatus, VariantType

ASSET_PROCESSING_FIELDS = frozenset(
    {"width", "height", "duration", "thumbnail_key", "preview_key", "processing_error"}
)
METADATA_FIELDS = frozenset({"color_space", "dpi", "bit_depth", "frame_rate", "bit_rate", "codec", "custom_fields"})


class AssetRepository:
    """Reads and writes the asset fields owned by the processing core."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_asset(self, *, file_key: str, mime_type: str, asset_id: str | None = None) -> Asset:
        asset = Asset(file_key=file_key, mime_type=mime_type, processing_status=ProcessingStatus.PENDING)
        if asset_id:
            asset.id = asset_id
        self.session.add(asset)
        await self.session.commit()
        await self.session.refresh(asset)
        return asset

    async def get_asset(self, asset_id: str) -> Asset | None:
        return await self.session.get(Asset, asset_id, populate_existing=True)

    async def update_asset_processing(
        self,
        asset_id: str,
        status: ProcessingStatus | None = None,
        *,
        expected: Iterable[ProcessingStatus] | None = None,
        **fields: Any,
    ) -> bool:
        """Partial update of processing fields.

        When ``expected`` is given the row only changes if its current status is one of
        those values, which makes the write a compare-and-set. Returns whether a row matched.
        """
        unknown = set(fields) - ASSET_PROCESSING_FIELDS
        if unknown:
            raise ValueError(f"Unsupported asset fields: {sorted(unknown)}")
        values = dict(fields)
        if status is not None:
            values["processing_status"] = status
        if not values:
            return False

        stmt = update(Asset).where(Asset.id == asset_id)
        if expected is not None:
            stmt = stmt.where(Asset.processing_status.in_(list(expected)))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        result = await self.session.execute(stmt)
        await self.session.commit()
        return bool(result.rowcount)

    async def create_variant(
        self,
        *,
        asset_id: str,
        variant_type: VariantType,
        file_key: str,
        width: int,
        height: int,
        file_size: int,
        format: str,
        quality: int | None = None,
        duration: float | None = None,
    ) -> AssetVariant:
        values = {
            "file_key": file_key,
            "width": width,
            "height": height,
            "file_size": file_size,
            "format": format,
            "quality": quality,
            "duration": duration,
        }
        variant = await self._find_variant(asset_id, variant_type)
        if variant is None:
            variant = AssetVariant(asset_id=asset_id, variant_type=variant_type, **values)
            self.session.add(variant)
            try:
                await self.session.commit()
            except IntegrityError:
                # A redelivered job inserted the same variant first.
                await self.session.rollback()
                variant = await self._find_variant(asset_id, variant_type)
                if variant is None:
                    raise
                for name, value in values.items():
                    setattr(variant, name, value)
                await self.session.commit()
        else:
            for name, value in values.items():
                setattr(variant, name, value)
            await self.session.commit()
        await self.session.refresh(variant)
        return variant

    async def _find_variant(self, asset_id: str, variant_type: VariantType) -> AssetVariant | None:
        stmt = select(AssetVariant).where(
            AssetVariant.asset_id == asset_id,
            AssetVariant.variant_type == variant_type,
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def list_variants(self, asset_id: str) -> Sequence[AssetVariant]:
        stmt = select(AssetVariant).where(AssetVariant.asset_id == asset_id).order_by(AssetVariant.id)
        return (await self.session.execute(stmt)).scalars().all()

    async def create_metadata(self, asset_id: str, **fields: Any) -> AssetMetadata:
        """Insert the technical metadata row once; an existing row is returned untouched."""
        unknown = set(fields) - METADATA_FIELDS
        if unknown:
            raise ValueError(f"Unsupported metadata fields: {sorted(unknown)}")
        existing = await self.get_metadata(asset_id)
        if existing is not None:
            return existing
        metadata = AssetMetadata(asset_id=asset_id, **fields)
        self.session.add(metadata)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            existing = await self.get_metadata(asset_id)
            if existing is None:
                raise
            return existing
        return metadata

    async def get_metadata(self, asset_id: str) -> AssetMetadata | None:
        return await self.session.get(AssetMetadata, asset_id, populate_existing=True)

    async def count_by_status(self) -> dict[ProcessingStatus, int]:
        stmt = select(Asset.processing_status, func.count()).group_by(Asset.processing_status)
        rows = (await self.session.execute(stmt)).all()
        counts = {status: 0 for status in ProcessingStatus}
        for status, count in rows:
            counts[status] = int(count)
        return counts

    async def list_stuck(self, older_than_s: int, *, limit: int = 50) -> Sequence[Asset]:
        """PENDING assets that never advanced, e.g. because the queue was down at dispatch time."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_s)
        stmt = (
            select(Asset)
            .where(Asset.processing_status == ProcessingStatus.PENDING, Asset.created_at < cutoff)
            .order_by(Asset.created_at)
            .limit(limit)
        )
        return (await self.session.execute(stmt)).scalars().all()

    async def list_recent(self, *, limit: int = 20) -> Sequence[Asset]:
        stmt = (
            select(Asset)
            .where(Asset.processing_status != ProcessingStatus.PENDING)
            .order_by(Asset.updated_at.desc())
            .limit(limit)
        )
        return (await self.session.execute(stmt)).scalars().all()


__all__ = ["AssetRepository", "ASSET_PROCESSING_FIELDS", "METADATA_FIELDS"]
